"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

# Add src directory to Python path for imports
project_root = Path(__file__).parent.parent
src_path = project_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from common.schemas import TranslationJobConfig  # noqa: E402
from common.subtitle_parser import SubtitleEntry  # noqa: E402
from translator.batcher import Batch  # noqa: E402
from translator.translation_service import BaseTranslationClient  # noqa: E402

TEST_DELIMITER = "<<<SEGMENT>>>"

# Script action that makes the fake client drop one segment from its reply
MISMATCH = "mismatch"

ScriptAction = Union[None, str, Exception]


def make_entries(count: int) -> List[SubtitleEntry]:
    """Build count entries with realistic ids and timings."""
    return [
        SubtitleEntry(
            sequence_id=str(i),
            timing=f"00:00:{i:02d},000 --> 00:00:{i:02d},900",
            text=f"Line number {i}",
        )
        for i in range(1, count + 1)
    ]


def make_srt(count: int) -> str:
    """Build SRT content with count entries."""
    return "\n\n".join(
        f"{entry.sequence_id}\n{entry.timing}\n{entry.text}"
        for entry in make_entries(count)
    )


def flatten_batches(batches: List[Batch]) -> List[SubtitleEntry]:
    """Concatenate batch entries in order."""
    return [entry for batch in batches for entry in batch.entries]


class RecordingSleep:
    """Sleep stand-in that records requested delays and never waits."""

    def __init__(self, cancel_after: Optional[int] = None, token=None):
        self.delays: List[float] = []
        self.cancel_after = cancel_after
        self.token = token

    async def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        if self.cancel_after is not None and len(self.delays) >= self.cancel_after:
            if self.token is not None:
                self.token.cancel("test cancellation")
            return True
        return False


class ScriptedTranslationClient(BaseTranslationClient):
    """
    Translation client that answers from a per-batch script.

    script maps a batch label to a list of actions consumed one per attempt:
    an Exception instance is raised, MISMATCH returns a reply with the wrong
    segment count, any other string is returned as the raw reply, None (or
    an exhausted list) returns a proper translation.
    Replies go through the real delimiter splitting.
    """

    provider_name = "scripted"

    def __init__(self, script: Optional[Dict[str, List[ScriptAction]]] = None):
        super().__init__(delimiter=TEST_DELIMITER, timeout=1.0)
        self.script = {label: list(actions) for label, actions in (script or {}).items()}
        self.calls: List[str] = []
        self._current_label: Optional[str] = None

    async def translate_batch(
        self, batch: Batch, target_language: str, api_key: str
    ) -> List[str]:
        self.calls.append(batch.label)
        self._current_label = batch.label
        return await super().translate_batch(batch, target_language, api_key)

    async def _send(self, request, prompt: str) -> str:
        actions = self.script.get(self._current_label) or []
        action = actions.pop(0) if actions else None
        if isinstance(action, Exception):
            raise action
        if isinstance(action, str) and action != MISMATCH:
            return action

        segments = request.combined_text.split(self.joiner)
        translated = [f"[{request.target_language}] {segment}" for segment in segments]
        if action == MISMATCH:
            translated = translated[:-1] if len(translated) > 1 else translated * 2
        return self.joiner.join(translated)


@pytest.fixture
def sample_srt_content():
    """Provide SRT content with single and multi-line entries."""
    return """1
00:00:01,000 --> 00:00:04,000
Welcome to this video

2
00:00:04,500 --> 00:00:08,000
Today we're going to learn
something new

3
00:00:08,500 --> 00:00:12,000
<i>Let's get started!</i>
"""


@pytest.fixture
def ten_entries():
    return make_entries(10)


@pytest.fixture
def job_config():
    """Job config with the smallest allowed delays."""
    return TranslationJobConfig(
        api_key="test-api-key",
        target_language="Spanish",
        base_delay_ms=100,
        quota_delay_ms=1000,
        chunk_count=3,
    )


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture(autouse=True)
def restore_engine_loggers():
    """Undo handler/propagation changes made by setup_logging()."""
    import logging

    names = ["common", "translator", "test_service", "srt-translate"]
    saved = {}
    for name in names:
        target = logging.getLogger(name)
        saved[name] = (list(target.handlers), target.propagate, target.level)
    yield
    for name, (handlers, propagate, level) in saved.items():
        target = logging.getLogger(name)
        target.handlers[:] = handlers
        target.propagate = propagate
        target.setLevel(level)
