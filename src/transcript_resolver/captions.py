"""
Caption and transcript payload parsing.

Turns WebVTT, SRT, JSON transcripts (generic, Podcasting 2.0, YouTube json3),
timedtext/TTML XML, and HTML/plain text into transcript text plus ordered
TranscriptSegment lists. Malformed cues are skipped, never fatal.
"""

import html as html_module
import json
import math
import re
from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Optional

from transcript_resolver.models import TranscriptSegment, TranscriptSource


@dataclass
class ParsedTranscript:
    """Parsed payload. ``segments is None`` means the payload is unsegmentable text."""
    text: Optional[str]
    segments: Optional[list]
    source: TranscriptSource


# ---------------------------------------------------------------------------
# Timestamps and text cleanup
# ---------------------------------------------------------------------------

_CLOCK_PATTERN = re.compile(r'^(?:(\d+):)?(\d{1,2}):(\d{1,2})(?:[.,](\d{1,3}))?$')
_TAG_PATTERN = re.compile(r'<[^>]+>')
_WHITESPACE = re.compile(r'\s+')


def parse_timestamp(value) -> Optional[int]:
    """Parse a caption timestamp to milliseconds.

    Accepts clock strings (``01:02:03.456``, ``02:03,456``, ``2:03``),
    TTML offsets (``12.5s``, ``1500ms``), and plain seconds (``12.5``).
    Returns None for anything unparseable.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value * 1000 if value >= 0 else None
    if isinstance(value, float):
        return _to_ms(value, 1000)
    text = str(value).strip()
    if not text:
        return None
    match = _CLOCK_PATTERN.match(text)
    if match:
        hours, minutes, seconds, fraction = match.groups()
        ms = int((fraction or "0").ljust(3, "0"))
        return ((int(hours or 0) * 60 + int(minutes)) * 60 + int(seconds)) * 1000 + ms
    if text.endswith("ms"):
        text, scale = text[:-2], 1
    elif text.endswith("s"):
        text, scale = text[:-1], 1000
    else:
        scale = 1000
    try:
        number = float(text)
    except ValueError:
        return None
    return _to_ms(number, scale)


def _to_ms(number: float, scale: int) -> Optional[int]:
    # inf and nan come through float() and JSON's Infinity/NaN
    if not math.isfinite(number) or number < 0:
        return None
    return int(round(number * scale))


def format_timestamp(ms: int) -> str:
    """Format milliseconds as ``m:ss`` (or ``h:mm:ss`` past an hour)."""
    total = max(0, int(ms)) // 1000
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def clean_caption_line(line: str) -> str:
    """Strip cue markup (``<c>``, ``<i>``, inline timestamps) and entities."""
    return html_module.unescape(_TAG_PATTERN.sub('', line)).strip()


def normalize_transcript_text(text: str) -> str:
    """Collapse whitespace and decode HTML entities."""
    return _WHITESPACE.sub(' ', html_module.unescape(text)).strip()


def order_segments(segments: list) -> list:
    """Stable sort by start time so start_ms is non-decreasing."""
    return sorted(segments, key=lambda s: s.start_ms)


def segments_to_text(segments: list, timestamps: bool = False) -> Optional[str]:
    """Join segment texts; with timestamps, one ``[m:ss] text`` line per segment."""
    if not segments:
        return None
    if timestamps:
        return "\n".join(f"[{format_timestamp(s.start_ms)}] {s.text}" for s in segments)
    return normalize_transcript_text(" ".join(s.text for s in segments)) or None


# ---------------------------------------------------------------------------
# WebVTT / SRT
# ---------------------------------------------------------------------------

_CUE_TIMING = re.compile(r'^\s*(\S+)\s+-->\s+(\S+)')


def parse_cue_blocks(content: str) -> list:
    """Parse WebVTT or SRT cue blocks into segments.

    Header blocks (WEBVTT, NOTE, STYLE, REGION), cue numbers, and blocks with
    unparseable timings are skipped. Consecutive identical cue texts (rolling
    auto-captions) are collapsed into one.
    """
    content = content.replace('\r\n', '\n').replace('\r', '\n').lstrip('\ufeff')
    segments = []
    for block in re.split(r'\n\s*\n', content):
        lines = [l for l in block.split('\n') if l.strip()]
        timing_idx = next((i for i, l in enumerate(lines) if '-->' in l), None)
        if timing_idx is None:
            continue
        match = _CUE_TIMING.match(lines[timing_idx])
        if not match:
            continue
        start = parse_timestamp(match.group(1))
        if start is None:
            continue
        end = parse_timestamp(match.group(2))
        text = " ".join(c for c in (clean_caption_line(l) for l in lines[timing_idx + 1:]) if c)
        if not text:
            continue
        if segments and segments[-1].text == text:
            continue
        segments.append(TranscriptSegment(start_ms=start, end_ms=end, text=text))
    return order_segments(segments)


# ---------------------------------------------------------------------------
# JSON transcripts
# ---------------------------------------------------------------------------

def _segment_from_mapping(item: dict) -> Optional[TranscriptSegment]:
    """Build a segment from one JSON object, or None if it is unusable.

    Seconds-based keys (start/end/startTime/endTime/dur) and millisecond keys
    (startMs/endMs, tStartMs/dDurationMs) are both recognized.
    """
    if not isinstance(item, dict):
        return None
    text = item.get("text", item.get("body", item.get("utf8")))
    if not isinstance(text, str):
        return None
    text = normalize_transcript_text(text)
    if not text:
        return None

    if "startMs" in item or "tStartMs" in item:
        start = _int_or_none(item.get("startMs", item.get("tStartMs")))
        end = _int_or_none(item.get("endMs"))
        duration = _int_or_none(item.get("dDurationMs"))
    else:
        start = parse_timestamp(item.get("start", item.get("startTime")))
        end = parse_timestamp(item.get("end", item.get("endTime")))
        duration = parse_timestamp(item.get("dur", item.get("duration")))
    if start is None:
        return None
    if end is None and duration is not None:
        end = start + duration
    return TranscriptSegment(start_ms=start, end_ms=end, text=text)


def _int_or_none(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return int(number) if math.isfinite(number) else None


def _json3_segments(payload: dict) -> list:
    """YouTube json3: events[] with tStartMs/dDurationMs and segs[].utf8."""
    segments = []
    for event in payload.get("events") or []:
        if not isinstance(event, dict) or not event.get("segs"):
            continue
        text = normalize_transcript_text("".join(
            seg.get("utf8", "") for seg in event["segs"] if isinstance(seg, dict)))
        start = _int_or_none(event.get("tStartMs"))
        if not text or start is None:
            continue
        duration = _int_or_none(event.get("dDurationMs"))
        segments.append(TranscriptSegment(
            start_ms=start, end_ms=start + duration if duration is not None else None, text=text))
    return segments


def parse_json_transcript(payload) -> Optional[list]:
    """Parse a decoded JSON transcript into segments.

    Returns None when the payload has no recognizable transcript shape.
    """
    if isinstance(payload, dict):
        if isinstance(payload.get("events"), list):
            return order_segments(_json3_segments(payload))
        for key in ("segments", "transcript", "data", "chunks"):
            if isinstance(payload.get(key), list):
                payload = payload[key]
                break
        else:
            return None
    if not isinstance(payload, list):
        return None
    segments = [s for s in (_segment_from_mapping(item) for item in payload) if s is not None]
    return order_segments(segments)


# ---------------------------------------------------------------------------
# XML captions (YouTube timedtext, TTML)
# ---------------------------------------------------------------------------

_TIMEDTEXT_PATTERN = re.compile(
    r'<text\b([^>]*)>(.*?)</text>', re.DOTALL | re.IGNORECASE)
_TTML_PATTERN = re.compile(r'<p\b([^>]*)>(.*?)</p>', re.DOTALL | re.IGNORECASE)
_ATTR_PATTERN = re.compile(r'([\w:-]+)\s*=\s*"([^"]*)"')


def parse_xml_captions(content: str) -> list:
    """Parse timedtext (``<text start dur>``) or TTML (``<p begin end>``) captions."""
    segments = []
    matches = _TIMEDTEXT_PATTERN.findall(content) or _TTML_PATTERN.findall(content)
    for raw_attrs, body in matches:
        attrs = dict(_ATTR_PATTERN.findall(raw_attrs))
        start = parse_timestamp(attrs.get("start", attrs.get("begin")))
        if start is None:
            continue
        end = parse_timestamp(attrs.get("end"))
        duration = parse_timestamp(attrs.get("dur"))
        if end is None and duration is not None:
            end = start + duration
        body = re.sub(r'<br\s*/?>', ' ', body, flags=re.IGNORECASE)
        # timedtext bodies are often double-escaped (&amp;#39;)
        text = normalize_transcript_text(html_module.unescape(_TAG_PATTERN.sub('', body)))
        if text:
            segments.append(TranscriptSegment(start_ms=start, end_ms=end, text=text))
    return order_segments(segments)


# ---------------------------------------------------------------------------
# HTML / plain text
# ---------------------------------------------------------------------------

class _TextExtractor(HTMLParser):
    """Collects visible text, skipping script/style/nav chrome."""

    SKIP = ('script', 'style', 'nav', 'header', 'footer')
    BREAKS = ('p', 'br', 'div', 'h1', 'h2', 'h3', 'h4', 'li')

    def __init__(self):
        super().__init__()
        self.parts = []
        self.skip_depth = 0

    def handle_starttag(self, tag, attrs):
        if tag in self.SKIP:
            self.skip_depth += 1
        elif tag in self.BREAKS:
            self.parts.append('\n')

    def handle_endtag(self, tag):
        if tag in self.SKIP and self.skip_depth:
            self.skip_depth -= 1
        elif tag in ('p', 'div'):
            self.parts.append('\n')

    def handle_data(self, data):
        if not self.skip_depth:
            self.parts.append(data)


def extract_text_from_html(content: str) -> str:
    """Extract readable text from an HTML transcript page."""
    extractor = _TextExtractor()
    extractor.feed(content)
    text = html_module.unescape(''.join(extractor.parts))
    text = re.sub(r'[ \t]+', ' ', text)
    text = re.sub(r'\n\s*\n+', '\n\n', text)
    return text.strip()


# ---------------------------------------------------------------------------
# Format detection
# ---------------------------------------------------------------------------

def _detect_format(body: str, content_type: str, url: str) -> str:
    ctype = content_type.lower().split(';')[0].strip()
    path = url.lower().split('?')[0].split('#')[0]
    if ctype == "text/vtt" or path.endswith(".vtt"):
        return "vtt"
    if ctype in ("application/x-subrip", "application/srt", "text/srt") or path.endswith(".srt"):
        return "srt"
    if ctype.endswith("json") or path.endswith((".json", ".json3")):
        return "json"
    if ctype in ("text/html", "application/xhtml+xml") or path.endswith((".html", ".htm")):
        return "html"
    if ctype.endswith("xml") or ctype == "application/ttml+xml" or path.endswith((".xml", ".ttml")):
        return "xml"

    head = body.lstrip()[:512]
    if head.startswith("WEBVTT"):
        return "vtt"
    if head[:1] in ("{", "["):
        return "json"
    if re.match(r'^\d+\s*\n\s*\d{1,2}:\d{2}:\d{2}[,.]\d{3}\s+-->', head):
        return "srt"
    lowered = head.lower()
    if lowered.startswith("<?xml") or "<transcript" in lowered or "<tt" in lowered or "<timedtext" in lowered:
        return "xml"
    if "<html" in lowered or "<body" in lowered or "<p>" in lowered:
        return "html"
    return "text"


def _plain(text: str) -> ParsedTranscript:
    cleaned = text.strip()
    return ParsedTranscript(text=cleaned or None, segments=None, source=TranscriptSource.PLAIN_TEXT)


def parse_transcript_payload(body: str, content_type: Optional[str] = None,
                             url: Optional[str] = None) -> ParsedTranscript:
    """Parse any supported transcript payload.

    The format is chosen by content type, then URL extension, then by
    sniffing the body. A structured format that yields no segments falls
    back to plain text so no content is lost.
    """
    fmt = _detect_format(body, content_type or "", url or "")

    if fmt in ("vtt", "srt"):
        segments = parse_cue_blocks(body)
        if segments:
            return ParsedTranscript(segments_to_text(segments), segments, TranscriptSource.VTT)
        return _plain(re.sub(r'^WEBVTT.*$', '', body, flags=re.MULTILINE))

    if fmt == "json":
        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            return _plain(body)
        segments = parse_json_transcript(payload)
        if segments:
            return ParsedTranscript(segments_to_text(segments), segments, TranscriptSource.JSON_TRANSCRIPT)
        if isinstance(payload, dict) and isinstance(payload.get("text"), str):
            return _plain(payload["text"])
        return ParsedTranscript(text=None, segments=[], source=TranscriptSource.JSON_TRANSCRIPT)

    if fmt == "xml":
        segments = parse_xml_captions(body)
        if segments:
            return ParsedTranscript(segments_to_text(segments), segments, TranscriptSource.TIMEDTEXT)
        return _plain(extract_text_from_html(body))

    if fmt == "html":
        return _plain(extract_text_from_html(body))

    return _plain(body)
