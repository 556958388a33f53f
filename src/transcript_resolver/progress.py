"""
Progress events for media download and transcription.

Progress is UX only: nothing here affects control flow. Callers that do not
care pass nothing and get NULL_PROGRESS, so call sites never check for a sink.
"""

import re
import time
from dataclasses import dataclass
from typing import Optional

from transcript_resolver.shared import tprint as print, format_bytes


@dataclass(frozen=True)
class MediaDownloadStart:
    url: str
    service: str
    media_url: str
    total_bytes: Optional[int]
    kind: str = "transcript-media-download-start"


@dataclass(frozen=True)
class MediaDownloadProgress:
    url: str
    service: str
    downloaded_bytes: int
    total_bytes: Optional[int]
    kind: str = "transcript-media-download-progress"


@dataclass(frozen=True)
class MediaDownloadDone:
    url: str
    service: str
    downloaded_bytes: int
    total_bytes: Optional[int]
    kind: str = "transcript-media-download-done"


@dataclass(frozen=True)
class WhisperStart:
    url: str
    service: str
    provider_hint: str
    model_id: Optional[str]
    total_duration_seconds: Optional[float]
    parts: Optional[int]
    kind: str = "transcript-whisper-start"


@dataclass(frozen=True)
class WhisperProgress:
    """Engine progress. part_index/parts are set only when media was chunked."""
    part_index: Optional[int]
    parts: Optional[int]
    processed_duration_seconds: Optional[float]
    total_duration_seconds: Optional[float]
    url: str = ""
    service: str = ""
    kind: str = "transcript-whisper-progress"


class ProgressSink:
    """Receives progress events. The base class ignores everything."""

    def emit(self, event) -> None:
        pass


NULL_PROGRESS = ProgressSink()


class CallbackProgress(ProgressSink):
    """Adapts a plain callable to a ProgressSink."""

    def __init__(self, callback):
        self._callback = callback

    def emit(self, event) -> None:
        self._callback(event)


class TaggedProgress(ProgressSink):
    """Stamps url/service onto engine progress events before forwarding them."""

    def __init__(self, inner: ProgressSink, url: str, service: str):
        self._inner = inner
        self._url = url
        self._service = service

    def emit(self, event) -> None:
        if isinstance(event, WhisperProgress) and not event.url:
            event = WhisperProgress(
                part_index=event.part_index,
                parts=event.parts,
                processed_duration_seconds=event.processed_duration_seconds,
                total_duration_seconds=event.total_duration_seconds,
                url=self._url,
                service=self._service,
            )
        self._inner.emit(event)


def as_progress_sink(progress) -> ProgressSink:
    """Accept a sink, a plain callable, or None."""
    if progress is None:
        return NULL_PROGRESS
    if isinstance(progress, ProgressSink):
        return progress
    return CallbackProgress(progress)


_WHISPER_PROGRESS_PATTERN = re.compile(r"progress\s*=\s*(\d{1,3})%", re.IGNORECASE)


def parse_whisper_progress(line: str) -> Optional[int]:
    """Parse a whisper.cpp ``--print-progress`` line into a 0-100 percentage.

    Returns None for anything that is not a progress line.
    """
    match = _WHISPER_PROGRESS_PATTERN.search(line)
    if not match:
        return None
    return max(0, min(100, int(match.group(1))))


def _format_seconds(seconds: float) -> str:
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


_PROVIDER_LABELS = {
    "cpp": "Whisper.cpp",
    "openai->fal": "Whisper/OpenAI→FAL",
    "openai": "Whisper/OpenAI",
    "fal": "Whisper/FAL",
}


class TranscriptProgressPrinter(ProgressSink):
    """Renders progress events as an in-place terminal status line.

    Updates closer together than ``min_interval`` seconds are dropped, except
    start and done events.
    """

    def __init__(self, min_interval: float = 0.1, clock=time.monotonic):
        self._clock = clock
        self._min_interval = min_interval
        self._last_render = None
        self._started_at = None
        self._label = "Whisper"
        self.last_line = ""

    def _elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return max(0.0, self._clock() - self._started_at)

    def _render(self, line: str, force: bool = False) -> None:
        now = self._clock()
        if not force and self._last_render is not None and now - self._last_render < self._min_interval:
            return
        self._last_render = now
        self.last_line = line
        print(f"\r  {line}\033[K", end="")

    def emit(self, event) -> None:
        if isinstance(event, MediaDownloadStart):
            self._started_at = self._clock()
            self._render("Downloading audio…", force=True)
        elif isinstance(event, MediaDownloadProgress):
            elapsed = self._elapsed()
            total = f"/{format_bytes(event.total_bytes)}" if event.total_bytes else ""
            rate = ""
            if elapsed > 0 and event.downloaded_bytes > 0:
                rate = f", {format_bytes(int(event.downloaded_bytes / elapsed))}/s"
            self._render(f"Downloading audio ({event.service}, "
                         f"{format_bytes(event.downloaded_bytes)}{total}, {elapsed:.1f}s{rate})")
        elif isinstance(event, MediaDownloadDone):
            self._render(f"Downloaded {format_bytes(event.downloaded_bytes)}", force=True)
        elif isinstance(event, WhisperStart):
            self._started_at = self._clock()
            self._label = _PROVIDER_LABELS.get(event.provider_hint, "Whisper")
            model = f", {event.model_id}" if event.model_id else ""
            duration = (f", {_format_seconds(event.total_duration_seconds)}"
                        if event.total_duration_seconds else "")
            self._render(f"Transcribing ({self._label}{model}{duration})…", force=True)
        elif isinstance(event, WhisperProgress):
            parts = []
            if event.processed_duration_seconds is not None and event.total_duration_seconds:
                parts.append(f"{_format_seconds(event.processed_duration_seconds)}/"
                             f"{_format_seconds(event.total_duration_seconds)}")
            if event.part_index is not None and event.parts:
                parts.append(f"{event.part_index}/{event.parts}")
            parts.append(f"{self._elapsed():.1f}s")
            self._render(f"Transcribing (media, {self._label}, {', '.join(parts)})")

    def stop(self) -> None:
        if self.last_line:
            print("\r\033[K", end="")
