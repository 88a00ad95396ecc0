"""Usage recording and usage summaries.

The recorder is the only writer of usage records. It is best effort: a
failed write is logged and never reaches the caller.
"""

from datetime import date, datetime, timezone

from ..storage.base import UsageStore
from ..types import (
    ConversationUsage,
    DailyUsage,
    LLMProvider,
    ModelUsage,
    ProviderUsage,
    RequestType,
    TokenUsageRecord,
    UsageContext,
    UsageSummary,
)
from ..utils.logging import StructuredLogger
from .pricing import calculate_cost


class UsageRecorder:
    """Writes one usage record per logical request.

    Example:
        recorder = UsageRecorder(store)
        await recorder.record(
            UsageContext(user_id="user-1"),
            LLMProvider.OPENAI,
            "gpt-4o",
            prompt_tokens=120,
            completion_tokens=48,
        )
    """

    def __init__(self, store: UsageStore):
        self._store = store
        self._log = StructuredLogger("usage")

    @property
    def store(self) -> UsageStore:
        return self._store

    async def record(
        self,
        context: UsageContext,
        provider: LLMProvider,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        request_type: RequestType = RequestType.CHAT,
    ) -> TokenUsageRecord | None:
        """Price and persist a usage record.

        Returns:
            The written record, or None if the write failed.
        """
        try:
            record = TokenUsageRecord(
                user_id=context.user_id,
                project_id=context.project_id,
                agent_id=context.agent_id,
                conversation_id=context.conversation_id,
                provider=provider,
                model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                estimated_cost=calculate_cost(provider, model, prompt_tokens, completion_tokens),
                request_type=request_type,
            )
            await self._store.append_usage(record)
        except Exception as e:
            self._log.error(
                "Failed to record token usage",
                user_id=context.user_id,
                provider=provider.value,
                model=model,
                request_type=request_type.value,
                error=e,
            )
            return None

        self._log.info(
            "Token usage recorded",
            user_id=record.user_id,
            provider=provider.value,
            model=model,
            tokens=record.total_tokens,
            cost=f"{record.estimated_cost:.6f}",
            request_type=request_type.value,
        )
        return record

    async def summarize(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> UsageSummary:
        """Summarize a user's usage over an optional time window."""
        records = await self._store.list_usage(user_id, start, end)
        return summarize_usage(records)

    async def daily_stats(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[DailyUsage]:
        """Per-day usage of a user, broken down by provider and model."""
        return daily_usage(await self._store.list_usage(user_id, start, end))

    async def project_stats(self, user_id: str, project_id: str) -> list[DailyUsage]:
        """Per-day usage of one project."""
        return daily_usage(await self._store.list_usage(user_id, project_id=project_id))

    async def agent_stats(self, user_id: str, agent_id: str) -> list[DailyUsage]:
        """Per-day usage of one agent."""
        return daily_usage(await self._store.list_usage(user_id, agent_id=agent_id))

    async def conversation_stats(self, user_id: str, conversation_id: str) -> ConversationUsage:
        """Totals of one conversation."""
        records = await self._store.list_usage(user_id, conversation_id=conversation_id)
        totals = ConversationUsage()
        for record in records:
            totals.request_count += 1
            totals.prompt_tokens += record.prompt_tokens
            totals.completion_tokens += record.completion_tokens
            totals.total_tokens += record.total_tokens
            totals.total_cost += record.estimated_cost
        return totals


def summarize_usage(records: list[TokenUsageRecord]) -> UsageSummary:
    """Aggregate records by provider and model."""
    summary = UsageSummary()

    for record in records:
        summary.total_tokens += record.total_tokens
        summary.total_cost += record.estimated_cost
        summary.prompt_tokens += record.prompt_tokens
        summary.completion_tokens += record.completion_tokens

        provider = summary.by_provider.setdefault(record.provider.value, ProviderUsage())
        provider.tokens += record.total_tokens
        provider.cost += record.estimated_cost
        provider.prompt_tokens += record.prompt_tokens
        provider.completion_tokens += record.completion_tokens

        model = provider.models.setdefault(record.model, ModelUsage())
        model.tokens += record.total_tokens
        model.cost += record.estimated_cost
        model.requests += 1
        model.prompt_tokens += record.prompt_tokens
        model.completion_tokens += record.completion_tokens

    return summary


def _usage_day(record: TokenUsageRecord) -> date:
    created_at = record.created_at
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(timezone.utc)
    return created_at.date()


def daily_usage(records: list[TokenUsageRecord]) -> list[DailyUsage]:
    """Aggregate records per UTC day, provider and model.

    Newest day first, then by provider and model.
    """
    rows: dict[tuple[date, str, str], DailyUsage] = {}

    for record in records:
        day = _usage_day(record)
        key = (day, record.provider.value, record.model)
        row = rows.get(key)
        if row is None:
            row = rows[key] = DailyUsage(
                provider=record.provider, model=record.model, usage_date=day
            )
        row.request_count += 1
        row.prompt_tokens += record.prompt_tokens
        row.completion_tokens += record.completion_tokens
        row.total_tokens += record.total_tokens
        row.total_cost += record.estimated_cost

    return sorted(
        rows.values(),
        key=lambda r: (-r.usage_date.toordinal(), r.provider.value, r.model),
    )
