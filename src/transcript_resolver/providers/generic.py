"""
Generic transcript provider, the registry's fallback.

Order: caption files (a direct or local .vtt/.srt, or an HTML ``<track>``), then
Whisper on direct media links and local files (and, in ``prefer`` media mode,
on audio/video embedded in the page), then unavailable.
"""

import html as html_module
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from transcript_resolver.captions import parse_transcript_payload, segments_to_text
from transcript_resolver.models import Diagnostics, ProviderContext, ProviderResult, TranscriptSource
from transcript_resolver.providers.base import ProviderFetchOptions, TranscriptProvider
from transcript_resolver.providers.media import attempt_whisper, is_direct_media_url, local_path_from_url

CAPTION_EXTENSIONS = (".vtt", ".srt")

_TRACK_PATTERN = re.compile(r"<track\b([^>]*)>", re.IGNORECASE)
_MEDIA_TAG_PATTERN = re.compile(r"<(audio|video|source)\b([^>]*)>", re.IGNORECASE)
_META_PATTERN = re.compile(r"<meta\b([^>]*)>", re.IGNORECASE)
_ATTR_PATTERN = re.compile(r"([\w:-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")


def _attrs(raw: str) -> dict:
    return {k.lower(): html_module.unescape(a or b) for k, a, b in _ATTR_PATTERN.findall(raw)}


def find_caption_tracks(html: Optional[str], base_url: str) -> list:
    """Caption/subtitle ``<track>`` URLs, English and default tracks first."""
    if not html:
        return []
    tracks = []
    for match in _TRACK_PATTERN.finditer(html):
        attrs = _attrs(match.group(1))
        kind = attrs.get("kind", "subtitles").lower()
        if kind not in ("captions", "subtitles") or not attrs.get("src"):
            continue
        preferred = attrs.get("srclang", "").lower().startswith("en") or "default" in match.group(1).lower()
        tracks.append((0 if preferred else 1, urljoin(base_url, attrs["src"])))
    return [url for _, url in sorted(tracks, key=lambda t: t[0])]


def find_embedded_media(html: Optional[str], base_url: str) -> Optional[str]:
    """First ``<audio>``/``<video>``/``<source>`` src, else og:audio / og:video."""
    if not html:
        return None
    for match in _MEDIA_TAG_PATTERN.finditer(html):
        src = _attrs(match.group(2)).get("src")
        if src and not src.startswith(("blob:", "data:")):
            return urljoin(base_url, src)
    for match in _META_PATTERN.finditer(html):
        attrs = _attrs(match.group(1))
        prop = (attrs.get("property") or attrs.get("name") or "").lower()
        if prop in ("og:audio", "og:audio:url", "og:audio:secure_url",
                    "og:video", "og:video:url", "og:video:secure_url") and attrs.get("content"):
            return urljoin(base_url, attrs["content"])
    return None


def _is_local_source(url: str) -> bool:
    if urlparse(url).scheme == "file":
        return True
    path = local_path_from_url(url)
    return path is not None and path.is_file()


class GenericProvider(TranscriptProvider):
    id = "generic"

    def can_handle(self, context: ProviderContext) -> bool:
        return True

    def _fetch_captions(self, caption_url: str, options: ProviderFetchOptions,
                        diagnostics: Diagnostics):
        try:
            response = options.session.get(caption_url, timeout=options.config.http_timeout)
            response.raise_for_status()
        except Exception as e:
            diagnostics.note(f"caption fetch failed ({caption_url}): {e}")
            return None
        parsed = parse_transcript_payload(response.text, response.headers.get("content-type"), caption_url)
        return parsed if parsed.text else None

    def _read_local_captions(self, caption_path, diagnostics: Diagnostics):
        try:
            body = caption_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            diagnostics.note(f"caption read failed ({caption_path}): {e}")
            return None
        parsed = parse_transcript_payload(body, None, caption_path.name)
        return parsed if parsed.text else None

    def _caption_result(self, parsed, source: TranscriptSource, caption_url: str,
                        options: ProviderFetchOptions, diagnostics: Diagnostics) -> ProviderResult:
        text = segments_to_text(parsed.segments, options.timestamps) if parsed.segments else parsed.text
        return diagnostics.result(text, source, segments=parsed.segments,
                                  metadata={"provider": "generic", "captionUrl": caption_url,
                                            "format": str(parsed.source)})

    def fetch_transcript(self, context: ProviderContext,
                         options: ProviderFetchOptions) -> ProviderResult:
        diagnostics = Diagnostics()
        url = context.url
        path = urlparse(url).path.lower()

        if path.endswith(CAPTION_EXTENSIONS) and urlparse(url).scheme in ("http", "https"):
            diagnostics.attempt(TranscriptSource.VTT)
            parsed = self._fetch_captions(url, options, diagnostics)
            if parsed is not None:
                return self._caption_result(parsed, TranscriptSource.VTT, url, options, diagnostics)

        local_path = local_path_from_url(url)
        is_caption_file = local_path is not None and local_path.suffix.lower() in CAPTION_EXTENSIONS
        if is_caption_file and local_path.is_file():
            diagnostics.attempt(TranscriptSource.VTT)
            parsed = self._read_local_captions(local_path, diagnostics)
            if parsed is not None:
                return self._caption_result(parsed, TranscriptSource.VTT, str(local_path),
                                            options, diagnostics)

        track_urls = find_caption_tracks(context.html, url)
        if track_urls:
            diagnostics.attempt(TranscriptSource.EMBEDDED)
            for track_url in track_urls:
                parsed = self._fetch_captions(track_url, options, diagnostics)
                if parsed is not None:
                    return self._caption_result(parsed, TranscriptSource.EMBEDDED, track_url,
                                                options, diagnostics)

        if is_caption_file:
            # caption files are never sent to Whisper
            media_url = None
        elif _is_local_source(url) or is_direct_media_url(url):
            media_url = url
        elif options.media_transcript_mode == "prefer":
            media_url = find_embedded_media(context.html, url)
        if media_url:
            result = attempt_whisper(diagnostics, media_url, options, url, "generic")
            if result is not None:
                return result

        diagnostics.attempt(TranscriptSource.UNAVAILABLE)
        return diagnostics.result(None, TranscriptSource.UNAVAILABLE,
                                  metadata={"provider": "generic", "reason": "no_transcript_available"})
