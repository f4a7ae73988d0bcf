"""Per-invocation telemetry and the running aggregate a caller keeps across a batch"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone

from taskmaster.config.catalog import ModelCatalog
from taskmaster.provider.types import Usage

logger = logging.getLogger(__name__)


@dataclass
class TelemetryData:
    """What one AI call cost"""

    timestamp: str
    user_id: str | None
    command_name: str | None
    output_type: str | None
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    currency: str = "USD"

    @classmethod
    def from_usage(
        cls,
        catalog: ModelCatalog,
        provider: str,
        model: str,
        usage: Usage,
        user_id: str | None = None,
        command_name: str | None = None,
        output_type: str | None = None,
    ) -> "TelemetryData":
        cost, currency = catalog.calculate_cost(provider, model, usage.input_tokens, usage.output_tokens)
        return cls(
            timestamp=datetime.now(timezone.utc).isoformat(),
            user_id=user_id,
            command_name=command_name,
            output_type=output_type,
            provider=provider,
            model=model,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            total_tokens=usage.total_tokens,
            total_cost=cost,
            currency=currency,
        )

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "userId": self.user_id,
            "commandName": self.command_name,
            "outputType": self.output_type,
            "providerName": self.provider,
            "modelUsed": self.model,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
            "currency": self.currency,
        }


@dataclass
class TelemetryAggregate:
    """Running totals over a batch of invocations"""

    total_cost: float = 0.0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_tokens: int = 0
    provider_counts: Counter = field(default_factory=Counter)
    successful: int = 0
    failed: int = 0
    skipped: int = 0

    def add(self, data: TelemetryData | None) -> None:
        """Fold one call's telemetry in; None (no call made) is ignored"""
        if data is None:
            return
        self.total_cost = round(self.total_cost + data.total_cost, 6)
        self.total_input_tokens += data.input_tokens
        self.total_output_tokens += data.output_tokens
        self.total_tokens += data.total_tokens
        self.provider_counts[data.provider] += 1

    def record_success(self, data: TelemetryData | None = None) -> None:
        self.successful += 1
        self.add(data)

    def record_failure(self, data: TelemetryData | None = None) -> None:
        self.failed += 1
        self.add(data)

    def record_skip(self) -> None:
        self.skipped += 1

    def merge(self, other: "TelemetryAggregate") -> "TelemetryAggregate":
        """Combine two aggregates into a new one; neither input changes"""
        return TelemetryAggregate(
            total_cost=round(self.total_cost + other.total_cost, 6),
            total_input_tokens=self.total_input_tokens + other.total_input_tokens,
            total_output_tokens=self.total_output_tokens + other.total_output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            provider_counts=self.provider_counts + other.provider_counts,
            successful=self.successful + other.successful,
            failed=self.failed + other.failed,
            skipped=self.skipped + other.skipped,
        )

    def to_dict(self) -> dict:
        return {
            "totalCost": self.total_cost,
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalTokens": self.total_tokens,
            "providerCounts": dict(self.provider_counts),
            "successfulFiles": self.successful,
            "failedFiles": self.failed,
            "skippedFiles": self.skipped,
        }
