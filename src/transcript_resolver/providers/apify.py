"""YouTube transcripts through an Apify scraper actor (run-sync dataset items)."""

from typing import Optional

from transcript_resolver.captions import normalize_transcript_text, parse_json_transcript
from transcript_resolver.shared import TranscriptError

APIFY_BASE_URL = "https://api.apify.com/v2"


def _item_transcript(item) -> tuple[Optional[str], Optional[list]]:
    """Text and segments from one dataset item.

    Recognized shapes: ``data: [{start, dur, text}]``, a ``transcript`` string
    or list, or a ``text`` string.
    """
    if not isinstance(item, dict):
        return None, None
    for key in ("data", "transcript", "captions"):
        value = item.get(key)
        if isinstance(value, list):
            segments = parse_json_transcript(value)
            if segments:
                return " ".join(s.text for s in segments), segments
    for key in ("transcript", "text"):
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return normalize_transcript_text(value), None
    return None, None


def fetch_transcript_with_apify(session, token: Optional[str], actor: str, url: str,
                                timeout: float) -> tuple[Optional[str], Optional[list]]:
    """Run the actor synchronously and return (text, segments) from its first useful item."""
    if not token:
        return None, None
    response = session.post(
        f"{APIFY_BASE_URL}/acts/{actor}/run-sync-get-dataset-items",
        params={"token": token},
        json={"videoUrl": url},
        timeout=timeout,
    )
    if not response.ok:
        raise TranscriptError(f"Apify request failed ({response.status_code})")
    items = response.json()
    if not isinstance(items, list):
        return None, None
    for item in items:
        text, segments = _item_transcript(item)
        if text:
            return text, segments
    return None, None
