"""Data models for transcript resolution results, segments, and diagnostics."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class TranscriptSource(str, Enum):
    """Where a transcript came from. Values are stable; add members, never rename."""
    YOUTUBEI = "youtubei"
    CAPTION_TRACKS = "captionTracks"
    APIFY = "apify"
    YT_DLP = "yt-dlp"
    PODCAST_TRANSCRIPT = "podcastTranscript"
    EMBEDDED = "embedded"
    VTT = "vtt"
    TIMEDTEXT = "timedtext"
    JSON_TRANSCRIPT = "json-transcript"
    PLAIN_TEXT = "plain-text"
    WHISPER = "whisper"
    UNAVAILABLE = "unavailable"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TranscriptSegment:
    """A timestamped span of transcript text."""
    start_ms: int
    end_ms: Optional[int]
    text: str

    def to_dict(self) -> dict:
        return {"startMs": self.start_ms, "endMs": self.end_ms, "text": self.text}


@dataclass(frozen=True)
class ProviderContext:
    """Input for one resolution attempt."""
    url: str
    html: Optional[str] = None
    resource_key: Optional[str] = None  # Provider-specific canonical id (e.g. video id)


@dataclass
class ProviderResult:
    """Outcome of a provider's attempt chain.

    ``text is None`` with ``source == UNAVAILABLE`` is a normal result: the
    chain ran and found nothing. ``source is None`` means nothing was tried.
    """
    text: Optional[str]
    source: Optional[TranscriptSource]
    segments: Optional[list] = None
    metadata: dict = field(default_factory=dict)
    attempted_providers: list = field(default_factory=list)
    notes: Optional[str] = None


@dataclass
class WhisperTranscriptionResult:
    """Outcome of the transcription engine. ``notes`` accumulates regardless of outcome."""
    text: Optional[str]
    provider: Optional[str]  # "openai" | "fal" | "whisper.cpp" | None
    error: Optional[Exception] = None
    notes: list = field(default_factory=list)


class Diagnostics:
    """Records provider attempts and notes during a single resolution call."""

    def __init__(self):
        self.attempted_providers: list[TranscriptSource] = []
        self._notes: list[str] = []
        self.provider: Optional[TranscriptSource] = None
        self.text_provided = False

    def attempt(self, source: TranscriptSource) -> None:
        self.attempted_providers.append(source)

    def note(self, message: str) -> None:
        if message:
            self._notes.append(message)

    def extend_notes(self, messages) -> None:
        for message in messages:
            self.note(message)

    @property
    def notes(self) -> list[str]:
        return list(self._notes)

    def notes_text(self) -> Optional[str]:
        """Notes joined with '; ', or None when there are none."""
        return "; ".join(self._notes) if self._notes else None

    def result(self, text: Optional[str], source: Optional[TranscriptSource],
               segments: Optional[list] = None, metadata: Optional[dict] = None) -> ProviderResult:
        """Build a ProviderResult from the accumulated attempts and notes."""
        return ProviderResult(
            text=text,
            source=source,
            segments=segments,
            metadata=metadata or {},
            attempted_providers=list(self.attempted_providers),
            notes=self.notes_text(),
        )

    def finish(self, result: ProviderResult) -> None:
        """Adopt the final provider result's summary fields."""
        self.provider = result.source
        self.attempted_providers = list(result.attempted_providers)
        if result.notes and not self._notes:
            self._notes = [result.notes]
        self.text_provided = bool(result.text)

    def to_dict(self) -> dict:
        return {
            "provider": str(self.provider) if self.provider else None,
            "attemptedProviders": [str(p) for p in self.attempted_providers],
            "notes": self.notes_text(),
            "textProvided": self.text_provided,
        }


@dataclass
class TranscriptResolution:
    """What resolve_transcript_for_link hands back to callers."""
    text: Optional[str]
    source: Optional[TranscriptSource]
    diagnostics: Diagnostics
    segments: Optional[list] = None
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "source": str(self.source) if self.source else None,
            "segments": [s.to_dict() for s in self.segments] if self.segments is not None else None,
            "metadata": self.metadata,
            "diagnostics": self.diagnostics.to_dict(),
        }
