"""Sequential orchestration of batch translation for one subtitle job."""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from pydantic import ValidationError

from common.schemas import (
    BatchFailure,
    JobEventType,
    JobResult,
    JobStatus,
    TranslationEvent,
    TranslationJobConfig,
    TranslationReport,
    create_progress_event,
)
from common.subtitle_parser import SRTParser, SubtitleEntry
from translator.batcher import Batch, resplit_batch, split_into_batches
from translator.cancellation import CancellationToken
from translator.errors import JobValidationError
from translator.retry_controller import (
    BatchOutcome,
    BatchRetryController,
    BatchState,
    SleepFunc,
)
from translator.translation_service import (
    BaseTranslationClient,
    create_translation_client,
)

logger = logging.getLogger(__name__)

# Sub-batches created when the final batch keeps mismatching
ADAPTIVE_SPLIT_COUNT = 2

REASON_NOT_ATTEMPTED = "not attempted"


@dataclass
class RunState:
    """Job-local state for one translation run. Never shared between jobs."""

    total_entries: int
    batches_total: int
    batches_completed: int = 0
    completed_entries: int = 0
    translated_entry_count: int = 0
    succeeded_batches: int = 0
    translated_entries: List[SubtitleEntry] = field(default_factory=list)
    failed_batches: List[BatchFailure] = field(default_factory=list)
    not_attempted_batches: List[BatchFailure] = field(default_factory=list)


def build_job_config(**values: Any) -> TranslationJobConfig:
    """
    Build and validate a job config from user input, falling back to settings.

    Args:
        **values: TranslationJobConfig fields; None means "use the default"

    Returns:
        Validated TranslationJobConfig

    Raises:
        JobValidationError: If any value is missing or out of range
    """
    try:
        return TranslationJobConfig.from_settings(**values)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise JobValidationError(
            f"Invalid translation job configuration: {'; '.join(problems)}",
            problems=problems,
        ) from e


def _failure_for(batch: Batch, reason: str) -> BatchFailure:
    return BatchFailure(
        batch_index=batch.index,
        batch_label=batch.label,
        reason=reason,
        entry_count=batch.size,
    )


class TranslationOrchestrator:
    """
    Drives batches through the retry controller, one at a time.

    Batch i+1 starts only after batch i reached a terminal state. Failed
    batches contribute their original entries, so the output always covers
    every input entry in the original order.
    """

    def __init__(
        self,
        client: BaseTranslationClient,
        config: TranslationJobConfig,
        on_event: Optional[Callable[[TranslationEvent], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Translation client
            config: Validated job configuration
            on_event: Callback receiving progress, retry and failure events
            cancel_token: External cancellation signal
            sleep: Wait primitive (defaults to cancel_token.sleep)
        """
        self.client = client
        self.config = config
        self.cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep or self.cancel_token.sleep
        self._on_event = on_event
        self.controller = BatchRetryController(
            client=client,
            config=config,
            cancel_token=self.cancel_token,
            sleep=self._sleep,
            on_event=self._emit,
        )

    def _emit(self, event: TranslationEvent) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except Exception as e:
            # Event callbacks never interrupt the job
            logger.warning(f"⚠️  Event callback failed for {event.event_type}: {e}")

    def _emit_progress(self, state: RunState, batch: Batch) -> None:
        self._emit(
            create_progress_event(
                batches_completed=state.batches_completed,
                batches_total=state.batches_total,
                entries_completed=state.completed_entries,
                entries_total=state.total_entries,
                batch_label=batch.label,
            )
        )

    def _record_outcome(self, state: RunState, outcome: BatchOutcome) -> None:
        batch = outcome.batch
        state.translated_entries.extend(outcome.entries)
        state.batches_completed += 1
        state.completed_entries += batch.size

        if outcome.succeeded:
            state.succeeded_batches += 1
            state.translated_entry_count += batch.size
            self._emit(
                TranslationEvent(
                    event_type=JobEventType.BATCH_COMPLETED,
                    batch_label=batch.label,
                    payload={"entries": batch.size, "attempts": outcome.attempts},
                )
            )
        else:
            reason = outcome.reason or "unknown error"
            state.failed_batches.append(_failure_for(batch, reason))
            logger.error(
                f"❌ Batch {batch.label} failed ({reason}); keeping original text "
                f"for {batch.size} entries"
            )
            self._emit(
                TranslationEvent(
                    event_type=JobEventType.BATCH_FAILED,
                    batch_label=batch.label,
                    payload={
                        "reason": reason,
                        "entries": batch.size,
                        "attempts": outcome.attempts,
                    },
                )
            )

        self._emit_progress(state, batch)

    def _mark_not_attempted(self, state: RunState, batches: List[Batch]) -> None:
        for batch in batches:
            state.translated_entries.extend(batch.entries)
            state.not_attempted_batches.append(_failure_for(batch, REASON_NOT_ATTEMPTED))

    def _final_status(self, state: RunState, cancelled: bool) -> JobStatus:
        if cancelled:
            return JobStatus.CANCELLED
        if not state.failed_batches:
            return JobStatus.COMPLETED
        if state.succeeded_batches == 0:
            return JobStatus.FAILED
        return JobStatus.PARTIAL

    async def run(self, entries: List[SubtitleEntry]) -> JobResult:
        """
        Translate parsed entries batch by batch.

        Args:
            entries: Parsed subtitle entries

        Returns:
            JobResult with the reconstructed document, entries, report and status
        """
        batches = split_into_batches(entries, self.config.chunk_count)
        pending: Deque[Batch] = deque(batches)
        state = RunState(total_entries=len(entries), batches_total=len(batches))
        cancelled = False

        logger.info(
            f"🚀 Starting translation of {len(entries)} entries in {len(batches)} "
            f"batches to {self.config.target_language}"
        )

        while pending:
            if self.cancel_token.is_cancelled:
                cancelled = True
                break

            batch = pending.popleft()
            is_last_batch = not pending
            self._emit(
                TranslationEvent(
                    event_type=JobEventType.BATCH_STARTED,
                    batch_label=batch.label,
                    payload={
                        "entries": batch.size,
                        "batches_completed": state.batches_completed,
                        "batches_total": state.batches_total,
                    },
                )
            )

            outcome = await self.controller.run(batch, is_last_batch=is_last_batch)

            if outcome.state == BatchState.CANCELLED:
                pending.appendleft(batch)
                cancelled = True
                break

            if outcome.state == BatchState.SPLIT_REQUESTED:
                sub_batches = resplit_batch(batch, ADAPTIVE_SPLIT_COUNT)
                pending.extendleft(reversed(sub_batches))
                state.batches_total += len(sub_batches) - 1
                self._emit(
                    TranslationEvent(
                        event_type=JobEventType.BATCH_SPLIT,
                        batch_label=batch.label,
                        payload={
                            "reason": outcome.reason,
                            "sub_batches": [sub.label for sub in sub_batches],
                            "batches_total": state.batches_total,
                        },
                    )
                )
                continue

            self._record_outcome(state, outcome)

            if (
                outcome.succeeded
                and pending
                and self.config.pace_between_batches
                and not self.cancel_token.is_cancelled
            ):
                logger.debug(
                    f"Pacing {self.config.base_delay:.2f}s before next batch"
                )
                if await self._sleep(self.config.base_delay):
                    cancelled = True
                    break

        if cancelled:
            self._mark_not_attempted(state, list(pending))
            logger.warning(
                f"🛑 Translation cancelled: {len(state.not_attempted_batches)} "
                f"batches not attempted"
            )
            self._emit(
                TranslationEvent(
                    event_type=JobEventType.JOB_CANCELLED,
                    payload={
                        "reason": self.cancel_token.reason,
                        "not_attempted": [
                            f.batch_label for f in state.not_attempted_batches
                        ],
                    },
                )
            )

        report = TranslationReport(
            total_entries=state.total_entries,
            translated_entries=state.translated_entry_count,
            total_batches=state.batches_total,
            failed_batches=state.failed_batches,
            not_attempted_batches=state.not_attempted_batches,
        )
        status = self._final_status(state, cancelled)
        logger.info(f"🏁 Translation finished with status {status.value}: {report.summary()}")

        return JobResult(
            status=status,
            document=SRTParser.format(state.translated_entries),
            entries=state.translated_entries,
            report=report,
        )


def validate_job_inputs(content: Optional[str], config: TranslationJobConfig) -> List[SubtitleEntry]:
    """
    Check raw content and parse it before any network work.

    Args:
        content: Raw SRT content
        config: Validated job configuration

    Returns:
        Parsed entries

    Raises:
        JobValidationError: If the content is missing or has no subtitle entries
    """
    if content is None or not content.strip():
        raise JobValidationError("Subtitle content is missing or empty")

    entries = SRTParser.parse(content)
    if not entries:
        raise JobValidationError("No subtitle entries found in content")

    logger.debug(
        f"Validated job: {len(entries)} entries, chunk_count={config.chunk_count}"
    )
    return entries


async def translate_srt(
    content: Optional[str],
    config: TranslationJobConfig,
    client: Optional[BaseTranslationClient] = None,
    on_event: Optional[Callable[[TranslationEvent], None]] = None,
    cancel_token: Optional[CancellationToken] = None,
    sleep: Optional[SleepFunc] = None,
) -> JobResult:
    """
    Run one complete translation job: validate, parse, translate, serialize.

    Once validation passes the job always returns a full document; batches
    that could not be translated keep their original text.

    Args:
        content: Raw SRT content
        config: Validated job configuration
        client: Translation client; the configured provider is used when None
        on_event: Callback receiving engine events
        cancel_token: External cancellation signal
        sleep: Wait primitive (mainly for tests)

    Returns:
        JobResult

    Raises:
        JobValidationError: If the input is invalid (before any network call)
    """
    entries = validate_job_inputs(content, config)

    owns_client = client is None
    client = client or create_translation_client()
    try:
        orchestrator = TranslationOrchestrator(
            client=client,
            config=config,
            on_event=on_event,
            cancel_token=cancel_token,
            sleep=sleep,
        )
        return await orchestrator.run(entries)
    finally:
        if owns_client:
            await client.aclose()
