"""Shared Pydantic schemas for subtitle translation jobs."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from common.config import settings
from common.subtitle_parser import SubtitleEntry

# Minimums accepted from job input
MIN_BASE_DELAY_MS = 100
MIN_QUOTA_DELAY_MS = 1000


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Terminal status of a translation job."""

    COMPLETED = "completed"  # every batch translated
    PARTIAL = "partial"  # some batches fell back to original text
    FAILED = "failed"  # no batch could be translated
    CANCELLED = "cancelled"


class JobEventType(str, Enum):
    """Types of events emitted while a job runs."""

    BATCH_STARTED = "batch.started"
    RETRY_SCHEDULED = "batch.retry_scheduled"
    BATCH_SPLIT = "batch.split"
    BATCH_COMPLETED = "batch.completed"
    BATCH_FAILED = "batch.failed"
    PROGRESS = "job.progress"
    JOB_CANCELLED = "job.cancelled"


class TranslationJobConfig(BaseModel):
    """
    Validated input for one translation job.

    Delays are in milliseconds, as entered by the user. The API key is
    opaque and only checked for presence.
    """

    api_key: str = Field(..., min_length=1, repr=False, description="API key")
    target_language: str = Field(
        default="Persian (Farsi)",
        min_length=1,
        description="Target language name, free text (e.g. 'Persian (Farsi)')",
    )
    base_delay_ms: int = Field(
        default=4000,
        ge=MIN_BASE_DELAY_MS,
        description="Base delay for backoff, mismatch retries and pacing",
    )
    quota_delay_ms: int = Field(
        default=60000,
        ge=MIN_QUOTA_DELAY_MS,
        description="Fixed wait after a quota (429) rejection",
    )
    chunk_count: int = Field(
        default=10, ge=1, description="Number of batches to split entries into"
    )
    max_transient_attempts: int = Field(
        default=5, ge=1, description="Attempt budget for transient (503) failures"
    )
    max_mismatch_retries: int = Field(
        default=2, ge=0, description="Extra attempts after a segment count mismatch"
    )
    pace_between_batches: bool = Field(
        default=True,
        description="Wait base_delay after a successful batch before the next one",
    )

    @field_validator("api_key", "target_language")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        """Reject values that only contain whitespace."""
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @property
    def base_delay(self) -> float:
        """Base delay in seconds."""
        return self.base_delay_ms / 1000.0

    @property
    def quota_delay(self) -> float:
        """Quota delay in seconds."""
        return self.quota_delay_ms / 1000.0

    @classmethod
    def from_settings(cls, **overrides: Any) -> "TranslationJobConfig":
        """
        Build a job config using settings as defaults.

        Args:
            **overrides: Field values that take precedence over settings
                (None values are ignored)

        Returns:
            TranslationJobConfig instance

        Raises:
            pydantic.ValidationError: If the resulting values are invalid
        """
        values: Dict[str, Any] = {
            "api_key": settings.get_api_key() or "",
            "target_language": settings.translation_target_language,
            "base_delay_ms": settings.translation_base_delay_ms,
            "quota_delay_ms": settings.translation_quota_delay_ms,
            "chunk_count": settings.translation_chunk_count,
            "max_transient_attempts": settings.translation_max_transient_attempts,
            "max_mismatch_retries": settings.translation_max_mismatch_retries,
            "pace_between_batches": settings.translation_pace_between_batches,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class TranslationRequest(BaseModel):
    """One remote translation request for a batch."""

    target_language: str = Field(..., description="Target language name")
    combined_text: str = Field(
        ..., description="Entry texts joined with the segment delimiter"
    )
    api_key: str = Field(..., repr=False, description="API key")
    segment_count: int = Field(..., ge=1, description="Number of joined segments")


class TranslationEvent(BaseModel):
    """Event emitted by the translation engine for presentation adapters."""

    event_type: JobEventType = Field(..., description="Type of event")
    batch_label: Optional[str] = Field(
        None, description="Label of the batch the event refers to (e.g. '3', '3.2')"
    )
    timestamp: datetime = Field(
        default_factory=_utc_now, description="When the event occurred"
    )
    payload: Dict[str, Any] = Field(
        default_factory=dict, description="Event payload data"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "event_type": "job.progress",
                "batch_label": "2",
                "timestamp": "2024-01-01T00:00:00Z",
                "payload": {
                    "batches_completed": 2,
                    "batches_total": 3,
                    "percentage": 67,
                    "entries_completed": 7,
                    "entries_total": 10,
                },
            }
        }


class BatchFailure(BaseModel):
    """A batch that could not be translated."""

    batch_index: int = Field(..., ge=1, description="1-based original batch number")
    batch_label: str = Field(..., description="Batch label including sub-batch path")
    reason: str = Field(..., description="Why the batch failed")
    entry_count: int = Field(..., ge=1, description="Entries left untranslated")


class TranslationReport(BaseModel):
    """Failure report produced at the end of a job."""

    total_entries: int = Field(default=0, ge=0)
    translated_entries: int = Field(default=0, ge=0)
    total_batches: int = Field(default=0, ge=0)
    failed_batches: List[BatchFailure] = Field(default_factory=list)
    not_attempted_batches: List[BatchFailure] = Field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_batches or self.not_attempted_batches)

    def summary(self) -> str:
        """One-line human readable summary."""
        text = f"Translated {self.translated_entries} of {self.total_entries} entries"
        if self.failed_batches:
            failed = ", ".join(
                f"batch {failure.batch_label} - {failure.reason}"
                for failure in self.failed_batches
            )
            text += f". Failed: {failed}"
        if self.not_attempted_batches:
            labels = ", ".join(f.batch_label for f in self.not_attempted_batches)
            text += f". Not attempted: {labels}"
        return text


class JobResult(BaseModel):
    """Final output of a translation job."""

    status: JobStatus
    document: str = Field(..., description="Reconstructed SRT text")
    entries: List[SubtitleEntry] = Field(default_factory=list)
    report: TranslationReport


# ============================================================================
# Event Factory Functions
# ============================================================================


def calculate_percentage(completed: int, total: int) -> int:
    """Rounded completion percentage (0-100); 100 for an empty job."""
    if total <= 0:
        return 100
    return min(100, round(completed * 100 / total))


def create_progress_event(
    batches_completed: int,
    batches_total: int,
    entries_completed: int,
    entries_total: int,
    batch_label: Optional[str] = None,
) -> TranslationEvent:
    """
    Factory function for creating a PROGRESS event.

    Args:
        batches_completed: Batches that reached a terminal outcome
        batches_total: Current number of batches (grows on adaptive split)
        entries_completed: Entries covered by terminal batches
        entries_total: Entries in the job
        batch_label: Batch that just finished

    Returns:
        TranslationEvent with event_type set to PROGRESS

    Example:
        >>> event = create_progress_event(1, 4, 3, 10)
        >>> event.payload["percentage"]
        25
    """
    return TranslationEvent(
        event_type=JobEventType.PROGRESS,
        batch_label=batch_label,
        payload={
            "batches_completed": batches_completed,
            "batches_total": batches_total,
            "percentage": calculate_percentage(batches_completed, batches_total),
            "entries_completed": entries_completed,
            "entries_total": entries_total,
        },
    )


def create_retry_scheduled_event(
    batch_label: str,
    state: str,
    attempt: int,
    delay_seconds: float,
    reason: str,
) -> TranslationEvent:
    """
    Factory function for creating a RETRY_SCHEDULED event.

    Adapters use delay_seconds to render a countdown.
    """
    return TranslationEvent(
        event_type=JobEventType.RETRY_SCHEDULED,
        batch_label=batch_label,
        payload={
            "state": state,
            "attempt": attempt,
            "delay_seconds": delay_seconds,
            "reason": reason,
        },
    )
