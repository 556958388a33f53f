"""
Reconciliation of streamed LLM text chunks.

Providers disagree on whether a streamed chunk is a delta (new tokens only)
or a cumulative snapshot (all text so far), and some resend earlier output.
merge_streaming_chunk stitches any mix of these into one text without
duplicating or dropping visible characters.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional

# Heuristic thresholds. Chosen empirically; override per call when tuning.
PREFIX_SCAN_LIMIT = 4096      # Max chars compared when measuring a common prefix
CUMULATIVE_MIN_RATIO = 0.9    # Common prefix must cover this share of previous text...
CUMULATIVE_SLACK_CHARS = 64   # ...or come within this many chars of its full length
OVERLAP_SCAN_LIMIT = 2048     # Largest suffix/prefix overlap tried when stitching

_LINE_ENDINGS = re.compile(r"\r\n?")


@dataclass(frozen=True)
class StreamMerge:
    next: str
    appended: str


def normalize_stream_text(text: str) -> str:
    """Convert \\r\\n and \\r line endings to \\n."""
    return _LINE_ENDINGS.sub("\n", text)


def common_prefix_length(a: str, b: str, limit: int = PREFIX_SCAN_LIMIT) -> int:
    """Length of the shared prefix of a and b, scanning at most limit chars."""
    max_len = min(len(a), len(b), limit)
    i = 0
    while i < max_len and a[i] == b[i]:
        i += 1
    return i


def merge_streaming_chunk(previous: str, chunk: str, *,
                          prefix_scan_limit: int = PREFIX_SCAN_LIMIT,
                          min_ratio: float = CUMULATIVE_MIN_RATIO,
                          slack_chars: int = CUMULATIVE_SLACK_CHARS,
                          overlap_limit: int = OVERLAP_SCAN_LIMIT) -> StreamMerge:
    """Merge a newly streamed chunk into the accumulated text.

    Returns the corrected accumulated text (``next``) and the part the
    renderer should append (``appended``). Rules, first match wins:

    1. empty chunk: nothing changes
    2. empty previous: the chunk is the text
    3. chunk extends previous (cumulative snapshot): append the suffix
    4. previous extends chunk (stale resend): nothing changes
    5. chunk at least as long and sharing a near-complete prefix
       (revised snapshot): take the chunk, append past the shared prefix
    6. a suffix of previous equals a prefix of chunk: stitch the overlap
    7. otherwise the chunk is a pure delta
    """
    if not chunk:
        return StreamMerge(previous, "")
    prev = normalize_stream_text(previous)
    new = normalize_stream_text(chunk)
    if not prev:
        return StreamMerge(new, new)
    if new.startswith(prev):
        return StreamMerge(new, new[len(prev):])
    if prev.startswith(new):
        return StreamMerge(prev, "")

    if len(new) >= len(prev):
        prefix_len = common_prefix_length(prev, new, prefix_scan_limit)
        if prefix_len > 0:
            min_prefix = max(len(prev) - slack_chars, int(len(prev) * min_ratio))
            if prefix_len >= min_prefix:
                return StreamMerge(new, new[prefix_len:])

    max_overlap = min(len(prev), len(new), overlap_limit)
    for size in range(max_overlap, 0, -1):
        if prev[-size:] == new[:size]:
            return StreamMerge(prev + new[size:], new[size:])

    return StreamMerge(prev + new, new)


class StreamAccumulator:
    """Owns the accumulated text of one stream and forwards only new text.

    ``write`` receives each non-empty ``appended`` piece, in order.
    """

    def __init__(self, write: Optional[Callable[[str], None]] = None):
        self.text = ""
        self.chunks = 0
        self._write = write

    def feed(self, chunk: str) -> str:
        merged = merge_streaming_chunk(self.text, chunk)
        self.text = merged.next
        self.chunks += 1
        if merged.appended and self._write is not None:
            self._write(merged.appended)
        return merged.appended


def is_streaming_timeout_error(error) -> bool:
    """True when an error (or message string) reports a timeout."""
    if not error:
        return False
    message = error if isinstance(error, str) else str(getattr(error, "message", None) or error)
    return re.search(r"timed out", message, re.IGNORECASE) is not None
