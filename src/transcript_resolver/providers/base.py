"""Provider interface and per-call fetch options."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from transcript_resolver.models import ProviderContext, ProviderResult
from transcript_resolver.progress import NULL_PROGRESS, ProgressSink, as_progress_sink
from transcript_resolver.shared import TranscriptConfig

YOUTUBE_TRANSCRIPT_MODES = ("auto", "web", "apify", "yt-dlp")
MEDIA_TRANSCRIPT_MODES = ("auto", "prefer")

USER_AGENT = ("Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
              "(KHTML, like Gecko) Chrome/124.0 Safari/537.36")


def default_session():
    import requests
    session = requests.Session()
    session.headers["User-Agent"] = USER_AGENT
    return session


@dataclass
class ProviderFetchOptions:
    """Configuration for one resolution call.

    ``session`` is any requests.Session-compatible object; tests pass a mock.
    """
    config: TranscriptConfig = field(default_factory=TranscriptConfig)
    session: Any = None
    youtube_transcript_mode: str = "auto"
    media_transcript_mode: str = "auto"
    timestamps: bool = False
    progress: ProgressSink = NULL_PROGRESS

    def __post_init__(self):
        if self.youtube_transcript_mode not in YOUTUBE_TRANSCRIPT_MODES:
            raise ValueError(f"Unknown YouTube transcript mode: {self.youtube_transcript_mode}")
        if self.media_transcript_mode not in MEDIA_TRANSCRIPT_MODES:
            raise ValueError(f"Unknown media transcript mode: {self.media_transcript_mode}")
        if self.session is None:
            self.session = default_session()
        self.progress = as_progress_sink(self.progress)


class TranscriptProvider(ABC):
    """One strategy family for obtaining a transcript."""

    id: str = ""

    @abstractmethod
    def can_handle(self, context: ProviderContext) -> bool:
        ...

    @abstractmethod
    def fetch_transcript(self, context: ProviderContext,
                         options: ProviderFetchOptions) -> ProviderResult:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} id={self.id!r}>"
