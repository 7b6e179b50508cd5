"""Bounded-retry state machine wrapping a single batch translation."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from common.schemas import (
    TranslationEvent,
    TranslationJobConfig,
    create_retry_scheduled_event,
)
from common.subtitle_parser import SubtitleEntry
from translator.batcher import Batch
from translator.cancellation import CancellationToken
from translator.errors import (
    FatalApiError,
    QuotaExceededError,
    SegmentCountMismatchError,
    TransientServerError,
)
from translator.translation_service import BaseTranslationClient

logger = logging.getLogger(__name__)

REASON_MAX_RETRIES = "max retries exceeded"
REASON_REPEATED_QUOTA = "repeated quota exhaustion"
REASON_MISMATCH_PERSISTED = "segment count mismatch persisted"

SleepFunc = Callable[[float], Awaitable[bool]]
EventCallback = Callable[[TranslationEvent], None]


class BatchState(str, Enum):
    """States of one batch's retry state machine."""

    PENDING = "pending"
    ATTEMPTING = "attempting"
    SUCCESS = "success"
    RETRYABLE = "retryable"
    QUOTA_WAIT = "quota_wait"
    MISMATCH = "mismatch"
    FATAL = "fatal"
    SPLIT_REQUESTED = "split_requested"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RetryPolicy:
    """Delays (seconds) and attempt limits for one job."""

    base_delay: float
    quota_delay: float
    max_transient_attempts: int = 5
    max_mismatch_retries: int = 2

    @classmethod
    def from_job_config(cls, config: TranslationJobConfig) -> "RetryPolicy":
        return cls(
            base_delay=config.base_delay,
            quota_delay=config.quota_delay,
            max_transient_attempts=config.max_transient_attempts,
            max_mismatch_retries=config.max_mismatch_retries,
        )

    def transient_delay(self, failure_count: int) -> float:
        """
        Exponential backoff after the n-th transient failure (n starts at 1).

        Args:
            failure_count: Number of transient failures so far on this batch

        Returns:
            base_delay * 2^failure_count
        """
        return self.base_delay * (2**failure_count)


@dataclass
class BatchOutcome:
    """Terminal result of running one batch through the state machine."""

    batch: Batch
    state: BatchState
    entries: List[SubtitleEntry]
    reason: Optional[str] = None
    attempts: int = 0
    history: List[BatchState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state == BatchState.SUCCESS


class BatchRetryController:
    """
    Runs one batch to a terminal state, applying a recovery policy per error class.

    Transient (503) failures back off exponentially within a bounded
    attempt budget. A quota (429) failure waits a fixed quota delay and is
    retried once; a second consecutive quota failure is fatal. A segment
    count mismatch is retried a small number of times with a flat delay,
    then either requests an adaptive split (final batch with more than one
    entry) or fails. Anything else is fatal immediately.

    Fatal batches fall back to their original entries; the controller never
    raises for per-batch errors.
    """

    def __init__(
        self,
        client: BaseTranslationClient,
        config: TranslationJobConfig,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Optional[SleepFunc] = None,
        on_event: Optional[EventCallback] = None,
    ):
        """
        Initialize the controller.

        Args:
            client: Translation client issuing one remote call per attempt
            config: Validated job configuration
            cancel_token: Cancellation signal checked around every wait
            sleep: Wait primitive returning True when cancelled; defaults to
                cancel_token.sleep
            on_event: Callback receiving RETRY_SCHEDULED events
        """
        self.client = client
        self.config = config
        self.policy = RetryPolicy.from_job_config(config)
        self.cancel_token = cancel_token or CancellationToken()
        self._sleep = sleep or self.cancel_token.sleep
        self._on_event = on_event

    def _emit(self, event: TranslationEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    async def _wait(
        self, batch: Batch, state: BatchState, attempt: int, delay: float, reason: str
    ) -> bool:
        """
        Announce and perform a wait. Returns True if the job was cancelled.
        """
        self._emit(
            create_retry_scheduled_event(
                batch_label=batch.label,
                state=state.value,
                attempt=attempt,
                delay_seconds=delay,
                reason=reason,
            )
        )
        if self.cancel_token.is_cancelled:
            return True
        cancelled = await self._sleep(delay)
        return bool(cancelled) or self.cancel_token.is_cancelled

    async def run(self, batch: Batch, is_last_batch: bool = False) -> BatchOutcome:
        """
        Drive one batch from PENDING to a terminal state.

        Args:
            batch: Batch to translate
            is_last_batch: Whether this is the final batch of the sequence;
                only the final batch may request an adaptive split

        Returns:
            BatchOutcome in SUCCESS, FATAL, SPLIT_REQUESTED or CANCELLED state
        """
        history: List[BatchState] = [BatchState.PENDING]
        attempts = 0
        transient_failures = 0
        mismatch_failures = 0
        consecutive_quota_failures = 0

        def finish(
            state: BatchState,
            reason: Optional[str] = None,
            entries: Optional[List[SubtitleEntry]] = None,
        ) -> BatchOutcome:
            history.append(state)
            return BatchOutcome(
                batch=batch,
                state=state,
                entries=entries if entries is not None else list(batch.entries),
                reason=reason,
                attempts=attempts,
                history=history,
            )

        while True:
            if self.cancel_token.is_cancelled:
                return finish(BatchState.CANCELLED, "not attempted")

            attempts += 1
            history.append(BatchState.ATTEMPTING)
            logger.info(
                f"🔄 Translating batch {batch.label} ({batch.size} entries), attempt {attempts}"
            )

            try:
                translations = await self.client.translate_batch(
                    batch, self.config.target_language, self.config.api_key
                )
                translated_entries = batch.apply_translations(translations)

            except TransientServerError as e:
                history.append(BatchState.RETRYABLE)
                transient_failures += 1
                consecutive_quota_failures = 0
                if transient_failures >= self.policy.max_transient_attempts:
                    logger.error(
                        f"❌ Max retries ({self.policy.max_transient_attempts}) exceeded "
                        f"for batch {batch.label}. Last error: {e}"
                    )
                    return finish(BatchState.FATAL, REASON_MAX_RETRIES)

                delay = self.policy.transient_delay(transient_failures)
                logger.warning(
                    f"⚠️  Transient error in batch {batch.label}: {e}. "
                    f"Retry {transient_failures}/{self.policy.max_transient_attempts - 1} "
                    f"in {delay:.2f}s..."
                )
                if await self._wait(
                    batch, BatchState.RETRYABLE, attempts, delay, str(e)
                ):
                    return finish(BatchState.CANCELLED, "cancelled during backoff")

            except QuotaExceededError as e:
                history.append(BatchState.QUOTA_WAIT)
                consecutive_quota_failures += 1
                if consecutive_quota_failures > 1:
                    logger.error(
                        f"❌ Repeated quota exhaustion for batch {batch.label}: {e}. "
                        f"Not retrying."
                    )
                    return finish(BatchState.FATAL, REASON_REPEATED_QUOTA)

                delay = self.policy.quota_delay
                logger.warning(
                    f"⏳ Quota exceeded for batch {batch.label}. "
                    f"Waiting {delay:.0f}s before retrying..."
                )
                if await self._wait(
                    batch, BatchState.QUOTA_WAIT, attempts, delay, str(e)
                ):
                    return finish(BatchState.CANCELLED, "cancelled during quota wait")

            except SegmentCountMismatchError as e:
                history.append(BatchState.MISMATCH)
                mismatch_failures += 1
                consecutive_quota_failures = 0
                if mismatch_failures > self.policy.max_mismatch_retries:
                    if is_last_batch and batch.size > 1:
                        logger.warning(
                            f"✂️  Segment count mismatch persisted for final batch "
                            f"{batch.label}; requesting adaptive split"
                        )
                        return finish(BatchState.SPLIT_REQUESTED, str(e))

                    logger.error(
                        f"❌ Segment count mismatch persisted for batch {batch.label} "
                        f"after {self.policy.max_mismatch_retries} retries: {e}"
                    )
                    return finish(BatchState.FATAL, REASON_MISMATCH_PERSISTED)

                delay = self.policy.base_delay
                logger.warning(
                    f"⚠️  {e}. Retry {mismatch_failures}/"
                    f"{self.policy.max_mismatch_retries} in {delay:.2f}s..."
                )
                if await self._wait(
                    batch, BatchState.MISMATCH, attempts, delay, str(e)
                ):
                    return finish(BatchState.CANCELLED, "cancelled during mismatch retry")

            except FatalApiError as e:
                logger.error(f"❌ Fatal API error in batch {batch.label}: {e}")
                return finish(BatchState.FATAL, str(e))

            except Exception as e:
                logger.error(
                    f"❌ Unexpected error translating batch {batch.label}: {e}",
                    exc_info=True,
                )
                return finish(BatchState.FATAL, f"unexpected error: {e}")

            else:
                logger.info(
                    f"✅ Batch {batch.label} translated ({batch.size} entries, "
                    f"{attempts} attempt(s))"
                )
                return finish(BatchState.SUCCESS, entries=translated_entries)
