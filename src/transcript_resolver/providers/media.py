"""
Media acquisition for transcription: remote downloads and local files.

Remote media is streamed to a temp file with download progress events and a
hard size cap. Local files get the same empty/oversized checks. Both feed
the transcription engine through transcribe_media_source().
"""

import mimetypes
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

from transcript_resolver.ffmpeg import probe_media_duration_seconds
from transcript_resolver.models import Diagnostics, ProviderResult, TranscriptSource, WhisperTranscriptionResult
from transcript_resolver.progress import (
    MediaDownloadDone, MediaDownloadProgress, MediaDownloadStart, TaggedProgress, WhisperStart,
)
from transcript_resolver.shared import (
    MediaTooLargeError, TranscriptError,
    format_bytes, make_temp_path, unlink_quietly, vprint,
)
from transcript_resolver.whisper import (
    resolve_transcription_availability, transcribe_media_file_with_whisper,
)

MAX_MEDIA_BYTES = 500 * 1024 * 1024
DOWNLOAD_CHUNK_BYTES = 64 * 1024

AUDIO_EXTENSIONS = {
    ".mp3": "audio/mpeg", ".m4a": "audio/mp4", ".aac": "audio/aac", ".wav": "audio/wav",
    ".flac": "audio/flac", ".ogg": "audio/ogg", ".oga": "audio/ogg", ".opus": "audio/ogg",
    ".webm": "audio/webm",
}
VIDEO_EXTENSIONS = {
    ".mp4": "video/mp4", ".m4v": "video/mp4", ".mov": "video/quicktime",
    ".mkv": "video/x-matroska",
}
MEDIA_EXTENSIONS = {**AUDIO_EXTENSIONS, **VIDEO_EXTENSIONS}


def _url_path(url: str) -> str:
    return urlparse(url).path if "://" in url else url


def _extension(url: str) -> str:
    return Path(unquote(_url_path(url))).suffix.lower()


def is_direct_media_url(url: str) -> bool:
    """URL or path whose extension names an audio/video container."""
    return _extension(url) in MEDIA_EXTENSIONS


def guess_media_type(url: str, content_type: Optional[str] = None) -> str:
    """Best media type for a URL: a specific Content-Type wins over the extension."""
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype.startswith(("audio/", "video/")) or ctype in ("application/ogg", "application/mp4"):
        return ctype
    by_ext = MEDIA_EXTENSIONS.get(_extension(url))
    if by_ext:
        return by_ext
    guessed, _ = mimetypes.guess_type(_url_path(url))
    return guessed or "application/octet-stream"


def local_path_from_url(url: str) -> Optional[Path]:
    """Path for ``file://`` URLs and plain filesystem paths, else None."""
    parsed = urlparse(url)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    if parsed.scheme in ("http", "https"):
        return None
    # Windows drive letters parse as one-letter schemes
    if parsed.scheme and len(parsed.scheme) > 1:
        return None
    return Path(url).expanduser()


def check_local_media_file(path: Path, max_bytes: int = MAX_MEDIA_BYTES) -> int:
    """Validate a local media file and return its size.

    Raises TranscriptError for missing or empty files and MediaTooLargeError
    when the file exceeds ``max_bytes``.
    """
    path = Path(path)
    if not path.is_file():
        raise TranscriptError(f"Media file not found: {path}")
    size = path.stat().st_size
    if size == 0:
        raise TranscriptError(f"Media file is empty (0 bytes): {path}")
    if size > max_bytes:
        raise MediaTooLargeError(
            f"Media file is too large ({format_bytes(size)}). "
            f"Maximum supported size is {format_bytes(max_bytes)}.")
    return size


def download_media(session, url: str, dest: Path, options, page_url: str, service: str,
                   max_bytes: int = MAX_MEDIA_BYTES) -> tuple[int, str]:
    """Stream remote media to ``dest``. Returns (bytes written, media type).

    Raises MediaTooLargeError as soon as the declared or received size passes
    ``max_bytes``; partial files are removed.
    """
    config = options.config
    progress = options.progress
    response = session.get(url, stream=True, timeout=config.http_timeout, allow_redirects=True)
    try:
        response.raise_for_status()
        total = None
        try:
            total = int(response.headers.get("content-length") or 0) or None
        except (TypeError, ValueError):
            pass
        if total is not None and total > max_bytes:
            raise MediaTooLargeError(
                f"Remote media is too large ({format_bytes(total)}). "
                f"Maximum supported size is {format_bytes(max_bytes)}.")

        media_type = guess_media_type(url, response.headers.get("content-type"))
        progress.emit(MediaDownloadStart(url=page_url, service=service, media_url=url, total_bytes=total))
        downloaded = 0
        try:
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_BYTES):
                    if not chunk:
                        continue
                    downloaded += len(chunk)
                    if downloaded > max_bytes:
                        raise MediaTooLargeError(
                            f"Remote media exceeded {format_bytes(max_bytes)} while downloading "
                            f"({format_bytes(downloaded)} received).")
                    f.write(chunk)
                    progress.emit(MediaDownloadProgress(url=page_url, service=service,
                                                        downloaded_bytes=downloaded, total_bytes=total))
        except BaseException:
            unlink_quietly(dest)
            raise
        progress.emit(MediaDownloadDone(url=page_url, service=service,
                                        downloaded_bytes=downloaded, total_bytes=total))
        vprint(config, f"  Downloaded {format_bytes(downloaded)} from {url}")
        if downloaded == 0:
            unlink_quietly(dest)
            raise TranscriptError(f"Downloaded media is empty: {url}")
        return downloaded, media_type
    finally:
        response.close()


def transcribe_local_media(path: Path, media_type: str, options, page_url: str,
                           service: str) -> WhisperTranscriptionResult:
    """Run the transcription engine on a file already on disk."""
    config = options.config
    availability = resolve_transcription_availability(config)
    duration = probe_media_duration_seconds(config, path)
    options.progress.emit(WhisperStart(
        url=page_url, service=service,
        provider_hint=availability.provider_hint, model_id=availability.model_id,
        total_duration_seconds=duration, parts=None,
    ))
    return transcribe_media_file_with_whisper(
        path, media_type, path.name, config,
        total_duration_seconds=duration,
        progress=TaggedProgress(options.progress, page_url, service),
    )


def transcribe_media_source(media_url: str, options, page_url: str,
                            service: str) -> WhisperTranscriptionResult:
    """Transcribe a media URL or local path.

    Local files are validated and errors raised. Remote download failures
    come back as a result with ``error`` set so the caller can note them.
    """
    local_path = local_path_from_url(media_url)
    if local_path is not None:
        check_local_media_file(local_path)
        return transcribe_local_media(local_path, guess_media_type(str(local_path)),
                                      options, page_url, service)

    suffix = _extension(media_url) or ".bin"
    temp_file = make_temp_path("transcript-media-", suffix)
    try:
        try:
            _, media_type = download_media(options.session, media_url, temp_file, options,
                                           page_url, service)
        except TranscriptError as e:
            return WhisperTranscriptionResult(text=None, provider=None, error=e)
        except Exception as e:
            return WhisperTranscriptionResult(
                text=None, provider=None, error=TranscriptError(f"Media download failed: {e}"))
        return transcribe_local_media(temp_file, media_type, options, page_url, service)
    finally:
        unlink_quietly(temp_file)


def attempt_whisper(diagnostics: Diagnostics, media_url: str, options, page_url: str,
                    service: str) -> Optional[ProviderResult]:
    """Record a whisper attempt and return a result only when text came back."""
    diagnostics.attempt(TranscriptSource.WHISPER)
    result = transcribe_media_source(media_url, options, page_url, service)
    diagnostics.extend_notes(result.notes)
    if result.text:
        return diagnostics.result(
            result.text, TranscriptSource.WHISPER, segments=None,
            metadata={"provider": service, "mediaUrl": media_url,
                      "transcriptionProvider": result.provider})
    if result.error:
        diagnostics.note(f"whisper failed: {result.error}")
    return None
