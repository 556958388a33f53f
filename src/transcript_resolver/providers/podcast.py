"""
Podcast transcript provider.

Handles RSS/Atom feeds, known podcast hosts, and episode pages that carry
PodcastEpisode JSON-LD. Order: published transcript (podcastTranscript),
then Whisper on the episode audio, then unavailable.
"""

import html as html_module
import json
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin, urlparse

from transcript_resolver.captions import parse_transcript_payload, segments_to_text
from transcript_resolver.models import Diagnostics, ProviderContext, ProviderResult, TranscriptSource
from transcript_resolver.providers.base import ProviderFetchOptions, TranscriptProvider
from transcript_resolver.providers.media import attempt_whisper
from transcript_resolver.shared import vprint

PODCAST_HOSTS = (
    "podcasts.apple.com", "open.spotify.com", "anchor.fm", "podbean.com", "buzzsprout.com",
    "simplecast.com", "transistor.fm", "megaphone.fm", "libsyn.com", "podcasts.google.com",
    "overcast.fm", "pca.st", "pocketcasts.com", "castbox.fm", "podtrac.com", "captivate.fm",
)

_FEED_PATH_PATTERN = re.compile(r"(\.rss|\.xml|/feed/?|/rss/?)$", re.IGNORECASE)
_ITEM_PATTERN = re.compile(r"<(item|entry)\b[^>]*>(.*?)</\1>", re.DOTALL | re.IGNORECASE)
_TRANSCRIPT_TAG_PATTERN = re.compile(r"<podcast:transcript\b([^>]*)/?>", re.IGNORECASE)
_ENCLOSURE_PATTERN = re.compile(r"<enclosure\b([^>]*)/?>", re.IGNORECASE)
_ATOM_ENCLOSURE_PATTERN = re.compile(r"<link\b([^>]*\brel\s*=\s*[\"']enclosure[\"'][^>]*)/?>", re.IGNORECASE)
_ATTR_PATTERN = re.compile(r"([\w:-]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")
_JSON_LD_PATTERN = re.compile(
    r"<script\b[^>]*type\s*=\s*[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
    re.DOTALL | re.IGNORECASE)

# Lower rank wins
_TRANSCRIPT_TYPE_RANK = (
    ("json", 0), ("vtt", 1), ("srt", 2), ("subrip", 2), ("html", 3), ("text", 4),
)


@dataclass(frozen=True)
class TranscriptLink:
    url: str
    media_type: str = ""


@dataclass
class EpisodeInfo:
    """Transcript candidates and audio found for one episode."""
    transcript_links: list
    inline_transcript: Optional[str] = None
    audio_url: Optional[str] = None
    audio_type: Optional[str] = None


def _attrs(raw: str) -> dict:
    return {k.lower(): html_module.unescape(a or b) for k, a, b in _ATTR_PATTERN.findall(raw)}


def is_feed(content: Optional[str]) -> bool:
    if not content:
        return False
    head = content.lstrip()[:2048].lower()
    return "<rss" in head or ("<feed" in head and "xmlns" in head) or (
        "<enclosure" in content.lower() and "<item" in content.lower())


def _transcript_rank(link: TranscriptLink) -> int:
    hint = f"{link.media_type} {urlparse(link.url).path}".lower()
    for marker, rank in _TRANSCRIPT_TYPE_RANK:
        if marker in hint:
            return rank
    return len(_TRANSCRIPT_TYPE_RANK)


def rank_transcript_links(links: list) -> list:
    """JSON > VTT > SRT > HTML > text; ties keep document order."""
    return sorted(links, key=_transcript_rank)


def parse_feed_episode(feed: str, base_url: str = "") -> Optional[EpisodeInfo]:
    """Transcript tags and enclosure of the first (latest) feed item."""
    match = _ITEM_PATTERN.search(feed)
    if not match:
        return None
    item = match.group(2)
    links = []
    for tag in _TRANSCRIPT_TAG_PATTERN.finditer(item):
        attrs = _attrs(tag.group(1))
        if attrs.get("url"):
            links.append(TranscriptLink(urljoin(base_url, attrs["url"]), attrs.get("type", "")))

    audio_url = audio_type = None
    enclosure = _ENCLOSURE_PATTERN.search(item) or _ATOM_ENCLOSURE_PATTERN.search(item)
    if enclosure:
        attrs = _attrs(enclosure.group(1))
        href = attrs.get("url") or attrs.get("href")
        if href:
            audio_url = urljoin(base_url, href)
            audio_type = attrs.get("type")
    return EpisodeInfo(transcript_links=rank_transcript_links(links),
                       audio_url=audio_url, audio_type=audio_type)


def _json_ld_nodes(html: str):
    for block in _JSON_LD_PATTERN.findall(html):
        try:
            data = json.loads(block.strip())
        except json.JSONDecodeError:
            continue
        stack = [data]
        while stack:
            node = stack.pop(0)
            if isinstance(node, list):
                stack.extend(node)
            elif isinstance(node, dict):
                yield node
                if isinstance(node.get("@graph"), list):
                    stack.extend(node["@graph"])


def _is_episode(node: dict) -> bool:
    types = node.get("@type")
    types = types if isinstance(types, list) else [types]
    return any(t in ("PodcastEpisode", "RadioEpisode", "Episode") for t in types if isinstance(t, str))


def _media_url(value) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        for item in value:
            url = _media_url(item)
            if url:
                return url
    if isinstance(value, dict):
        for key in ("contentUrl", "url", "embedUrl"):
            if isinstance(value.get(key), str):
                return value[key]
    return None


def parse_json_ld_episode(html: Optional[str], base_url: str = "") -> Optional[EpisodeInfo]:
    """Transcript and audio from a PodcastEpisode JSON-LD block."""
    if not html:
        return None
    for node in _json_ld_nodes(html):
        if not _is_episode(node):
            continue
        links = []
        inline = None
        transcript = node.get("transcript")
        if isinstance(transcript, str):
            if re.match(r"^(https?:)?//|^/", transcript.strip()):
                links.append(TranscriptLink(urljoin(base_url, transcript.strip())))
            elif transcript.strip():
                inline = transcript.strip()
        elif isinstance(transcript, dict):
            url = _media_url(transcript)
            if url:
                links.append(TranscriptLink(urljoin(base_url, url), str(transcript.get("encodingFormat", ""))))
            elif isinstance(transcript.get("text"), str):
                inline = transcript["text"].strip() or None

        audio = node.get("associatedMedia") or node.get("audio")
        audio_url = _media_url(audio)
        audio_type = audio.get("encodingFormat") if isinstance(audio, dict) else None
        return EpisodeInfo(transcript_links=rank_transcript_links(links), inline_transcript=inline,
                           audio_url=urljoin(base_url, audio_url) if audio_url else None,
                           audio_type=audio_type)
    return None


class PodcastProvider(TranscriptProvider):
    id = "podcast"

    def can_handle(self, context: ProviderContext) -> bool:
        host = (urlparse(context.url).hostname or "").lower()
        if any(host == h or host.endswith("." + h) for h in PODCAST_HOSTS):
            return True
        if _FEED_PATH_PATTERN.search(urlparse(context.url).path or ""):
            return True
        if is_feed(context.html):
            return True
        return parse_json_ld_episode(context.html) is not None

    def _load_document(self, context: ProviderContext, options: ProviderFetchOptions,
                       diagnostics: Diagnostics) -> Optional[str]:
        if context.html:
            return context.html
        try:
            response = options.session.get(context.url, timeout=options.config.http_timeout)
            response.raise_for_status()
            return response.text
        except Exception as e:
            diagnostics.note(f"podcast page fetch failed: {e}")
            return None

    def _fetch_published_transcript(self, links: list, options: ProviderFetchOptions,
                                    diagnostics: Diagnostics):
        for link in links:
            try:
                response = options.session.get(link.url, timeout=options.config.http_timeout)
                response.raise_for_status()
            except Exception as e:
                diagnostics.note(f"podcast transcript fetch failed ({link.url}): {e}")
                continue
            parsed = parse_transcript_payload(
                response.text, link.media_type or response.headers.get("content-type"), link.url)
            if parsed.text:
                return parsed, link
        return None, None

    def fetch_transcript(self, context: ProviderContext,
                         options: ProviderFetchOptions) -> ProviderResult:
        diagnostics = Diagnostics()
        document = self._load_document(context, options, diagnostics)

        episode = None
        if document:
            episode = (parse_feed_episode(document, context.url) if is_feed(document)
                       else parse_json_ld_episode(document, context.url))

        if episode and (episode.transcript_links or episode.inline_transcript):
            diagnostics.attempt(TranscriptSource.PODCAST_TRANSCRIPT)
            parsed, link = self._fetch_published_transcript(episode.transcript_links, options, diagnostics)
            if parsed is not None:
                text = (segments_to_text(parsed.segments, options.timestamps)
                        if parsed.segments else parsed.text)
                return diagnostics.result(text, TranscriptSource.PODCAST_TRANSCRIPT,
                                          segments=parsed.segments,
                                          metadata={"provider": "podcast", "transcriptUrl": link.url,
                                                    "format": str(parsed.source)})
            if episode.inline_transcript:
                return diagnostics.result(episode.inline_transcript, TranscriptSource.PODCAST_TRANSCRIPT,
                                          segments=None, metadata={"provider": "podcast"})

        if episode and episode.audio_url:
            vprint(options.config, f"  Transcribing podcast audio: {episode.audio_url}")
            result = attempt_whisper(diagnostics, episode.audio_url, options, context.url, "podcast")
            if result is not None:
                return result

        diagnostics.attempt(TranscriptSource.UNAVAILABLE)
        return diagnostics.result(None, TranscriptSource.UNAVAILABLE,
                                  metadata={"provider": "podcast", "reason": "no_transcript_available"})
