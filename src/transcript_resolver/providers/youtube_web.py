"""
YouTube web transcript strategies: the youtubei transcript endpoint and
caption tracks.

youtubei scrapes the innertube config the watch page ships (ytcfg) and calls
the get_transcript endpoint the web player uses. Caption tracks are listed
and fetched through youtube-transcript-api.
"""

import json
import re
from dataclasses import dataclass
from typing import Optional

from youtube_transcript_api import CouldNotRetrieveTranscript, YouTubeTranscriptApi

from transcript_resolver.captions import normalize_transcript_text, order_segments, parse_timestamp
from transcript_resolver.models import TranscriptSegment
from transcript_resolver.shared import TranscriptError

YOUTUBEI_BASE_URL = "https://www.youtube.com/youtubei/v1"

_YTCFG_PATTERN = re.compile(r"ytcfg\.set\(\s*\{")
_TRANSCRIPT_PARAMS_PATTERN = re.compile(r'"getTranscriptEndpoint"\s*:\s*\{\s*"params"\s*:\s*"([^"]+)"')


@dataclass(frozen=True)
class YoutubeiTranscriptConfig:
    api_key: str
    context: dict
    params: str


def _balanced_json(text: str, start: int) -> Optional[str]:
    """Return the JSON object/array that opens at ``text[start]``."""
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _load_json_at(text: str, start: int):
    raw = _balanced_json(text, start)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def extract_youtubei_transcript_config(html: Optional[str]) -> Optional[YoutubeiTranscriptConfig]:
    """Pull the innertube key, context, and transcript params out of a watch page."""
    if not html:
        return None
    params_match = _TRANSCRIPT_PARAMS_PATTERN.search(html)
    if not params_match:
        return None

    api_key = None
    context = None
    for match in _YTCFG_PATTERN.finditer(html):
        cfg = _load_json_at(html, match.end() - 1)
        if not isinstance(cfg, dict):
            continue
        api_key = api_key or cfg.get("INNERTUBE_API_KEY")
        context = context or cfg.get("INNERTUBE_CONTEXT")
    if not isinstance(api_key, str) or not isinstance(context, dict):
        return None
    return YoutubeiTranscriptConfig(api_key=api_key, context=context, params=params_match.group(1))


def _walk(node, key: str):
    """Yield every value stored under ``key`` anywhere in a JSON tree."""
    if isinstance(node, dict):
        for k, v in node.items():
            if k == key:
                yield v
            yield from _walk(v, key)
    elif isinstance(node, list):
        for item in node:
            yield from _walk(item, key)


def _runs_text(snippet) -> str:
    if not isinstance(snippet, dict):
        return ""
    if isinstance(snippet.get("simpleText"), str):
        return snippet["simpleText"]
    runs = snippet.get("runs") or []
    return "".join(r.get("text", "") for r in runs if isinstance(r, dict))


def parse_youtubei_transcript(payload) -> list:
    """Segments from a get_transcript response (``transcriptSegmentRenderer`` nodes)."""
    segments = []
    for renderer in _walk(payload, "transcriptSegmentRenderer"):
        if not isinstance(renderer, dict):
            continue
        text = " ".join(_runs_text(renderer.get("snippet")).split())
        if not text:
            continue
        try:
            start_ms = int(renderer.get("startMs"))
        except (TypeError, ValueError):
            continue
        try:
            end_ms = int(renderer.get("endMs"))
        except (TypeError, ValueError):
            end_ms = None
        segments.append(TranscriptSegment(start_ms=start_ms, end_ms=end_ms, text=text))
    return order_segments(segments)


def fetch_transcript_from_transcript_endpoint(session, config: YoutubeiTranscriptConfig,
                                              original_url: str, timeout: float) -> Optional[list]:
    """POST to youtubei/v1/get_transcript. Returns segments, or None if empty."""
    response = session.post(
        f"{YOUTUBEI_BASE_URL}/get_transcript",
        params={"key": config.api_key, "prettyPrint": "false"},
        json={"context": config.context, "params": config.params},
        headers={"Referer": original_url, "Origin": "https://www.youtube.com"},
        timeout=timeout,
    )
    response.raise_for_status()
    segments = parse_youtubei_transcript(response.json())
    return segments or None


# ---------------------------------------------------------------------------
# Caption tracks
# ---------------------------------------------------------------------------

def select_caption_transcript(transcript_list):
    """Manual English, then auto-generated English, then whatever comes first."""
    transcripts = list(transcript_list)
    if not transcripts:
        return None

    def is_english(transcript):
        return str(transcript.language_code).lower().startswith("en")

    for transcript in transcripts:
        if is_english(transcript) and not transcript.is_generated:
            return transcript
    for transcript in transcripts:
        if is_english(transcript):
            return transcript
    return transcripts[0]


def snippets_to_segments(snippets) -> list:
    """Map fetched transcript snippets (seconds-based) to segments."""
    segments = []
    for snippet in snippets:
        text = normalize_transcript_text(snippet.text or "")
        start = parse_timestamp(snippet.start)
        if not text or start is None:
            continue
        duration = parse_timestamp(snippet.duration)
        segments.append(TranscriptSegment(
            start_ms=start, end_ms=start + duration if duration is not None else None, text=text))
    return order_segments(segments)


def fetch_transcript_from_caption_tracks(session, video_id: str) -> Optional[list]:
    """List the video's caption tracks and fetch the preferred one."""
    api = YouTubeTranscriptApi(http_client=session)
    try:
        transcript = select_caption_transcript(api.list(video_id))
        if transcript is None:
            return None
        fetched = transcript.fetch()
    except CouldNotRetrieveTranscript as e:
        raise TranscriptError(f"no caption tracks for {video_id} ({type(e).__name__})") from e
    return snippets_to_segments(fetched.snippets) or None
