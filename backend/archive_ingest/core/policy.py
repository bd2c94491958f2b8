"""Ingest policy knobs handed to the services explicitly."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from archive_ingest.core.config import Settings, get_settings


@dataclass(frozen=True)
class IngestPolicy:
    dedup_scope: Literal["import", "global"] = "import"
    retry_ceiling: int = 3
    auto_retry_failed: bool = False
    quarantine_tolerance: int = 0
    complete_without_expected: bool = False
    rollup_on_transition: bool = True
    single_active_attempt: bool = True
    claim_max_rounds: int = 3
    stall_threshold_seconds: int = 3600
    stall_recovery: Literal["requeue", "manual"] = "manual"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "IngestPolicy":
        settings = settings or get_settings()
        return cls(
            dedup_scope=settings.dedup_scope,
            retry_ceiling=settings.retry_ceiling,
            auto_retry_failed=settings.auto_retry_failed,
            quarantine_tolerance=settings.quarantine_tolerance,
            complete_without_expected=settings.complete_without_expected,
            rollup_on_transition=settings.rollup_on_transition,
            single_active_attempt=settings.single_active_attempt,
            claim_max_rounds=settings.claim_max_rounds,
            stall_threshold_seconds=settings.stall_threshold_seconds,
            stall_recovery=settings.stall_recovery,
        )


def get_policy() -> IngestPolicy:
    """FastAPI dependency; overridden in tests."""
    return IngestPolicy.from_settings()
