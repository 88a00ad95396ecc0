"""Shared pytest fixtures."""

import logging

import pytest

from meterway.utils.logging import ROOT_LOGGER


@pytest.fixture
def root_logger():
    """The ``meterway`` logger, restored after the test."""
    logger = logging.getLogger(ROOT_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate
