"""
Transcript provider registry.

The provider set is fixed: YouTube, podcast, and the generic fallback. The
first specialized provider that claims a URL wins; otherwise generic does.
"""

from typing import Optional

from transcript_resolver.models import Diagnostics, ProviderContext, TranscriptResolution
from transcript_resolver.providers.base import ProviderFetchOptions, TranscriptProvider
from transcript_resolver.providers.generic import GenericProvider
from transcript_resolver.providers.podcast import PodcastProvider
from transcript_resolver.providers.youtube import YouTubeProvider, extract_youtube_video_id, is_youtube_url
from transcript_resolver.shared import ProviderRegistryError, vprint

GENERIC_PROVIDER_ID = "generic"

PROVIDERS: tuple = (YouTubeProvider(), PodcastProvider(), GenericProvider())


def extract_resource_key(url: str) -> Optional[str]:
    """Provider-specific canonical id for a URL (currently the YouTube video id)."""
    if is_youtube_url(url):
        return extract_youtube_video_id(url)
    return None


def select_provider(context: ProviderContext, providers=PROVIDERS) -> TranscriptProvider:
    """First specialized provider that can handle the context, else generic."""
    generic = next((p for p in providers if p.id == GENERIC_PROVIDER_ID), None)
    for provider in providers:
        if provider.id != GENERIC_PROVIDER_ID and provider.can_handle(context):
            return provider
    if generic is not None:
        return generic
    raise ProviderRegistryError("Generic transcript provider is not registered")


def resolve_transcript_for_link(url: str, html: Optional[str] = None,
                                options: Optional[ProviderFetchOptions] = None,
                                providers=PROVIDERS) -> TranscriptResolution:
    """Resolve a transcript for a URL or local media path.

    Configuration errors (an explicit mode missing its credentials) raise;
    "no transcript" is an ordinary result with source ``unavailable``.
    """
    options = options or ProviderFetchOptions()
    normalized_url = url.strip()
    context = ProviderContext(url=normalized_url, html=html,
                              resource_key=extract_resource_key(normalized_url))
    provider = select_provider(context, providers)
    vprint(options.config, f"  Transcript provider: {provider.id}")

    result = provider.fetch_transcript(context, options)

    diagnostics = Diagnostics()
    diagnostics.finish(result)
    return TranscriptResolution(
        text=result.text,
        source=result.source,
        diagnostics=diagnostics,
        segments=result.segments,
        metadata=result.metadata,
    )


__all__ = [
    "GenericProvider", "PodcastProvider", "YouTubeProvider",
    "PROVIDERS", "ProviderFetchOptions", "TranscriptProvider",
    "extract_resource_key", "resolve_transcript_for_link", "select_provider",
]
