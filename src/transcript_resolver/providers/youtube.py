"""
YouTube transcript provider.

Attempt chain: youtubei -> captionTracks -> apify -> yt-dlp -> unavailable.
The transcript mode narrows which steps are eligible:

    auto     youtubei (when the page has an innertube config), captionTracks,
             apify (when a token is set), yt-dlp (when binary and a key are set)
    web      youtubei, captionTracks
    apify    apify only
    yt-dlp   yt-dlp only; missing binary or keys is a configuration error
"""

import re
from typing import Optional
from urllib.parse import parse_qs, urlparse

from transcript_resolver.captions import normalize_transcript_text, segments_to_text
from transcript_resolver.models import Diagnostics, ProviderContext, ProviderResult, TranscriptSource
from transcript_resolver.providers.apify import fetch_transcript_with_apify
from transcript_resolver.providers.base import ProviderFetchOptions, TranscriptProvider
from transcript_resolver.providers.youtube_web import (
    extract_youtubei_transcript_config,
    fetch_transcript_from_caption_tracks,
    fetch_transcript_from_transcript_endpoint,
)
from transcript_resolver.providers.ytdlp import fetch_transcript_with_ytdlp
from transcript_resolver.shared import TranscriptConfigError, vprint, wrap_error

YOUTUBE_URL_PATTERN = re.compile(r"youtube\.com|youtu\.be", re.IGNORECASE)
_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
_PATH_ID_PREFIXES = ("embed", "shorts", "live", "v", "e")


def is_youtube_url(url: str) -> bool:
    return bool(YOUTUBE_URL_PATTERN.search(url or ""))


def extract_youtube_video_id(url: str) -> Optional[str]:
    """Video id from watch, youtu.be, embed, shorts, and live URLs."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    candidate = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.strip("/").split("/")[0]
    elif host.endswith("youtube.com") or host.endswith("youtube-nocookie.com"):
        query_id = parse_qs(parsed.query).get("v")
        if query_id:
            candidate = query_id[0]
        else:
            parts = [p for p in parsed.path.split("/") if p]
            if len(parts) >= 2 and parts[0] in _PATH_ID_PREFIXES:
                candidate = parts[1]
    if candidate and _VIDEO_ID_PATTERN.match(candidate):
        return candidate
    return None


class YouTubeProvider(TranscriptProvider):
    id = "youtube"

    def can_handle(self, context: ProviderContext) -> bool:
        return is_youtube_url(context.url)

    def fetch_transcript(self, context: ProviderContext,
                         options: ProviderFetchOptions) -> ProviderResult:
        config = options.config
        mode = options.youtube_transcript_mode
        has_ytdlp_credentials = config.has_transcription_credentials
        can_run_ytdlp = bool(config.yt_dlp_path and has_ytdlp_credentials)

        if mode == "yt-dlp" and not config.yt_dlp_path:
            raise TranscriptConfigError("Missing YT_DLP_PATH for --youtube yt-dlp")
        if mode == "yt-dlp" and not has_ytdlp_credentials:
            raise TranscriptConfigError("Missing OPENAI_API_KEY or FAL_KEY for --youtube yt-dlp")

        diagnostics = Diagnostics()
        video_id = (context.resource_key or extract_youtube_video_id(context.url) or "").strip()
        if not video_id:
            return diagnostics.result(None, None)

        session = options.session
        timeout = config.http_timeout

        def done(segments, source, **metadata):
            text = (segments_to_text(segments, options.timestamps)
                    if segments else None)
            return diagnostics.result(text, source, segments=segments,
                                      metadata={"provider": str(source), **metadata})

        if mode in ("auto", "web"):
            innertube = extract_youtubei_transcript_config(context.html)
            if innertube is not None:
                diagnostics.attempt(TranscriptSource.YOUTUBEI)
                try:
                    segments = fetch_transcript_from_transcript_endpoint(
                        session, innertube, context.url, timeout)
                except Exception as e:
                    segments = None
                    diagnostics.note(f"youtubei failed: {e}")
                if segments:
                    return done(segments, TranscriptSource.YOUTUBEI)

            diagnostics.attempt(TranscriptSource.CAPTION_TRACKS)
            try:
                segments = fetch_transcript_from_caption_tracks(session, video_id)
            except Exception as e:
                segments = None
                diagnostics.note(f"captionTracks failed: {e}")
            if segments:
                return done(segments, TranscriptSource.CAPTION_TRACKS)

        if mode == "apify" or (mode == "auto" and config.apify_api_token):
            diagnostics.attempt(TranscriptSource.APIFY)
            if not config.apify_api_token:
                diagnostics.note("apify skipped: APIFY_API_TOKEN is not set")
            else:
                try:
                    text, segments = fetch_transcript_with_apify(
                        session, config.apify_api_token, config.apify_actor,
                        context.url, config.transcription_timeout)
                except Exception as e:
                    text, segments = None, None
                    diagnostics.note(f"apify failed: {e}")
                if segments:
                    return done(segments, TranscriptSource.APIFY)
                if text:
                    return diagnostics.result(normalize_transcript_text(text), TranscriptSource.APIFY,
                                              metadata={"provider": "apify"})

        if mode == "yt-dlp" or (mode == "auto" and can_run_ytdlp):
            diagnostics.attempt(TranscriptSource.YT_DLP)
            vprint(config, f"  Falling back to yt-dlp for {context.url}")
            result = fetch_transcript_with_ytdlp(context.url, options)
            diagnostics.extend_notes(result.notes)
            if result.text:
                return diagnostics.result(
                    result.text, TranscriptSource.YT_DLP, segments=None,
                    metadata={"provider": "yt-dlp", "transcriptionProvider": result.provider})
            if mode == "yt-dlp" and result.error:
                raise wrap_error("yt-dlp transcription failed", result.error)
            if result.error:
                diagnostics.note(f"yt-dlp failed: {result.error}")

        diagnostics.attempt(TranscriptSource.UNAVAILABLE)
        return diagnostics.result(None, TranscriptSource.UNAVAILABLE,
                                  metadata={"provider": "youtube", "reason": "no_transcript_available"})
