"""
Whisper-family transcription engine.

Converts audio/video bytes or files to text, preferring local and free
resources over paid remote APIs:

1. whisper.cpp (``whisper-cli``) when the binary and a model are available
2. OpenAI ``whisper-1`` (24 MB upload cap; larger media is chunked via ffmpeg,
   or truncated with a note when ffmpeg is missing)
3. One OpenAI retry on MP3-transcoded bytes when OpenAI rejects the format
4. FAL ``fal-ai/wizper`` for audio/* media when OpenAI is missing or failed

Provider failures never raise: they come back as WhisperTranscriptionResult
with ``error`` set and the story of what happened in ``notes``.
"""

import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from transcript_resolver.ffmpeg import (
    is_ffmpeg_available, segment_audio, transcode_bytes_to_mp3, transcode_with_fallback,
)
from transcript_resolver.models import WhisperTranscriptionResult
from transcript_resolver.progress import NULL_PROGRESS, WhisperProgress, as_progress_sink, parse_whisper_progress
from transcript_resolver.shared import (
    tprint as print,
    TranscriptConfig, TranscriptConfigError, TranscriptError,
    command_available, format_bytes, make_temp_path, unlink_quietly, vprint, wrap_error,
)

MAX_OPENAI_UPLOAD_BYTES = 24 * 1024 * 1024
DEFAULT_SEGMENT_SECONDS = 600
MAX_ERROR_DETAIL_CHARS = 200
MAX_STDERR_CHARS = 8192
OPENAI_TRANSCRIPTION_MODEL = "whisper-1"
FAL_TRANSCRIPTION_MODEL = "fal-ai/wizper"

NO_PROVIDERS_MESSAGE = ("No transcription providers available "
                        "(install whisper-cpp or set OPENAI_API_KEY or FAL_KEY)")

_WHISPER_CPP_MEDIA_TYPES = {
    "audio/mpeg", "audio/mp3", "audio/mpga",
    "audio/ogg", "audio/oga", "application/ogg",
    "audio/flac", "audio/x-wav", "audio/wav",
}

_EXTENSION_BY_MEDIA_TYPE = {
    "audio/mpeg": "mp3", "audio/mp3": "mp3", "audio/mpga": "mp3",
    "video/mp4": "mp4", "audio/mp4": "mp4", "application/mp4": "mp4",
    "audio/x-wav": "wav", "audio/wav": "wav",
    "audio/flac": "flac",
    "audio/webm": "webm", "video/webm": "webm",
    "audio/ogg": "ogg", "audio/oga": "ogg", "application/ogg": "ogg",
}


def _base_media_type(media_type: str) -> str:
    return media_type.lower().split(";")[0].strip()


def ensure_whisper_filename_extension(name: Optional[str], media_type: str) -> str:
    """Give an upload filename an extension; Whisper sniffs format from it."""
    base = (name or "").strip() or "media"
    dot = base.rfind(".")
    if 0 < dot < len(base) - 1:
        return base
    return f"{base}.{_EXTENSION_BY_MEDIA_TYPE.get(_base_media_type(media_type), 'mp3')}"


# ---------------------------------------------------------------------------
# whisper.cpp (local)
# ---------------------------------------------------------------------------

def is_whisper_cpp_enabled(config: TranscriptConfig) -> bool:
    return not config.disable_local_whisper_cpp


def is_whisper_cli_available(config: TranscriptConfig) -> bool:
    return command_available([config.whisper_cpp_binary, "--help"])


def resolve_whisper_cpp_model_path(config: TranscriptConfig) -> Optional[Path]:
    """Locate the acoustic model: explicit override first, then the cache dir.

    An override that does not point at a file disables local transcription
    rather than silently falling back to the cache model.
    """
    if config.whisper_cpp_model_path:
        override = Path(config.whisper_cpp_model_path)
        return override if override.is_file() else None
    candidate = config.whisper_cpp_cache_model()
    if candidate is not None and candidate.is_file():
        return candidate
    return None


def whisper_cpp_model_label(model_path: Path) -> str:
    """``ggml-base.en.bin`` -> ``base``."""
    name = model_path.name
    label = name
    if label.startswith("ggml-"):
        label = label[len("ggml-"):]
    for suffix in (".bin", ".en"):
        if label.lower().endswith(suffix):
            label = label[:-len(suffix)]
    return label.strip() or name


def resolve_whisper_cpp_model_name_for_display(config: TranscriptConfig) -> Optional[str]:
    model_path = resolve_whisper_cpp_model_path(config)
    return whisper_cpp_model_label(model_path) if model_path else None


def is_whisper_cpp_ready(config: TranscriptConfig) -> bool:
    """Local transcription is possible: enabled, binary runs, model found."""
    if not is_whisper_cpp_enabled(config):
        return False
    if not is_whisper_cli_available(config):
        return False
    return resolve_whisper_cpp_model_path(config) is not None


def is_whisper_cpp_supported_media_type(media_type: str) -> bool:
    return _base_media_type(media_type) in _WHISPER_CPP_MEDIA_TYPES


def _run_whisper_cli(config: TranscriptConfig, args: list[str],
                     total_duration_seconds: Optional[float], progress) -> None:
    """Run whisper-cli, streaming stderr for progress; kill it on timeout."""
    cmd = [config.whisper_cpp_binary, *args]
    vprint(config, f"  Running: {' '.join(cmd)}")
    proc = subprocess.Popen(cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                            stderr=subprocess.PIPE, text=True, errors="replace")
    timed_out = threading.Event()

    def _kill():
        timed_out.set()
        proc.kill()

    timer = threading.Timer(config.transcription_timeout, _kill)
    timer.start()
    stderr_parts = []
    stderr_len = 0
    last_pct = -1
    try:
        for line in proc.stderr:
            if stderr_len <= MAX_STDERR_CHARS:
                stderr_parts.append(line)
                stderr_len += len(line)
            pct = parse_whisper_progress(line)
            if pct is None or pct == last_pct:
                continue
            last_pct = pct
            processed = (total_duration_seconds * pct / 100
                         if total_duration_seconds and total_duration_seconds > 0 else None)
            progress.emit(WhisperProgress(
                part_index=None, parts=None,
                processed_duration_seconds=processed,
                total_duration_seconds=total_duration_seconds,
            ))
        code = proc.wait()
    finally:
        timer.cancel()
        if proc.poll() is None:
            proc.kill()
            proc.wait()

    if timed_out.is_set():
        raise TranscriptError(f"whisper.cpp timed out after {config.transcription_timeout:.0f}s")
    if code != 0:
        raise TranscriptError(f"whisper.cpp failed ({code}): {''.join(stderr_parts).strip()}")


def transcribe_with_whisper_cpp_file(config: TranscriptConfig, file_path: Path, media_type: str,
                                     total_duration_seconds: Optional[float] = None,
                                     progress=None) -> WhisperTranscriptionResult:
    """Transcribe a local file with whisper.cpp, transcoding first if needed."""
    progress = as_progress_sink(progress)
    notes = []
    model_path = resolve_whisper_cpp_model_path(config)
    if model_path is None:
        return WhisperTranscriptionResult(
            text=None, provider=None, notes=notes,
            error=TranscriptError("whisper.cpp model not found (set SUMMARIZE_WHISPER_CPP_MODEL_PATH)"))

    can_use_directly = is_whisper_cpp_supported_media_type(media_type)
    if not can_use_directly and not is_ffmpeg_available(config):
        return WhisperTranscriptionResult(
            text=None, provider="whisper.cpp", notes=notes,
            error=TranscriptError(f"whisper.cpp supports only flac/mp3/ogg/wav "
                                  f"(mediaType={media_type}); install ffmpeg to transcode"))

    mp3_path = None if can_use_directly else make_temp_path("transcript-whisper-cpp-", ".mp3")
    output_base = make_temp_path("transcript-whisper-cpp-out-")
    output_txt = output_base.with_name(output_base.name + ".txt")
    try:
        if mp3_path is not None:
            # whisper-cli reads only a few formats; transcode everything else
            try:
                strict_failure = transcode_with_fallback(config, file_path, mp3_path)
            except TranscriptError as e:
                return WhisperTranscriptionResult(
                    text=None, provider="whisper.cpp", notes=notes,
                    error=wrap_error("whisper.cpp transcode failed", e))
            if strict_failure:
                notes.append("whisper.cpp: transcoded media to MP3 via ffmpeg (lenient)")
                notes.append(f"whisper.cpp: strict transcode failed: {strict_failure}")
            else:
                notes.append("whisper.cpp: transcoded media to MP3 via ffmpeg")
            progress.emit(WhisperProgress(
                part_index=None, parts=None, processed_duration_seconds=None,
                total_duration_seconds=total_duration_seconds))

        args = [
            "--model", str(model_path),
            "--language", "auto",
            "--no-timestamps",
            "--no-prints",
            "--print-progress",
            "--output-txt",
            "--output-file", str(output_base),
            str(mp3_path or file_path),
        ]
        try:
            _run_whisper_cli(config, args, total_duration_seconds, progress)
        except TranscriptError as e:
            return WhisperTranscriptionResult(text=None, provider="whisper.cpp", notes=notes, error=e)
        except OSError as e:
            return WhisperTranscriptionResult(
                text=None, provider="whisper.cpp", notes=notes,
                error=wrap_error("whisper.cpp could not be started", e))

        try:
            text = output_txt.read_text(encoding="utf-8").strip()
        except OSError:
            text = ""
        if not text:
            return WhisperTranscriptionResult(
                text=None, provider="whisper.cpp", notes=notes,
                error=TranscriptError("whisper.cpp returned empty text"))
        notes.append(f"whisper.cpp: model={whisper_cpp_model_label(model_path)}")
        return WhisperTranscriptionResult(text=text, provider="whisper.cpp", notes=notes)
    finally:
        unlink_quietly(mp3_path)
        unlink_quietly(output_txt)


def _try_local(config: TranscriptConfig, file_path: Path, media_type: str,
               total_duration_seconds: Optional[float], progress,
               notes: list) -> Optional[WhisperTranscriptionResult]:
    """Run whisper.cpp and fold its notes in; return the result only on success."""
    local = transcribe_with_whisper_cpp_file(
        config, file_path, media_type, total_duration_seconds, progress)
    notes.extend(local.notes)
    if local.text:
        return WhisperTranscriptionResult(text=local.text, provider=local.provider, notes=notes)
    if local.error:
        notes.append(f"whisper.cpp failed; falling back to remote Whisper: {local.error}")
    return None


# ---------------------------------------------------------------------------
# Remote providers
# ---------------------------------------------------------------------------

def _error_detail(message: str) -> str:
    message = message.strip()
    if len(message) > MAX_ERROR_DETAIL_CHARS:
        return message[:MAX_ERROR_DETAIL_CHARS] + "…"
    return message


def _transcribe_with_openai(config: TranscriptConfig, data: bytes, media_type: str,
                            filename: Optional[str]) -> Optional[str]:
    """Upload to OpenAI's transcription endpoint; return trimmed text or None."""
    from openai import OpenAI, APIStatusError, APIError

    client = OpenAI(api_key=config.openai_api_key,
                    timeout=config.transcription_timeout, max_retries=0)
    upload_name = ensure_whisper_filename_extension(filename, media_type)
    try:
        response = client.audio.transcriptions.create(
            model=OPENAI_TRANSCRIPTION_MODEL,
            file=(upload_name, data, media_type),
        )
    except APIStatusError as e:
        raise TranscriptError(
            f"OpenAI transcription failed ({e.status_code}): {_error_detail(e.message)}") from e
    except APIError as e:
        raise TranscriptError(f"OpenAI transcription failed: {_error_detail(str(e))}") from e

    text = getattr(response, "text", None)
    if not isinstance(text, str):
        return None
    return text.strip() or None


def extract_fal_text(result) -> Optional[str]:
    """Pull text out of a FAL result: ``text``, or joined ``chunks[].text``."""
    if not isinstance(result, dict):
        return None
    data = result.get("data", result)
    if not isinstance(data, dict):
        return None
    if isinstance(data.get("text"), str):
        return data["text"].strip() or None
    if isinstance(data.get("chunks"), list):
        lines = [chunk["text"].strip() for chunk in data["chunks"]
                 if isinstance(chunk, dict) and isinstance(chunk.get("text"), str) and chunk["text"].strip()]
        return " ".join(lines) if lines else None
    return None


def _transcribe_with_fal(config: TranscriptConfig, data: bytes, media_type: str) -> Optional[str]:
    """Upload to FAL storage and run the wizper model."""
    import fal_client

    client = fal_client.SyncClient(key=config.fal_api_key,
                                   default_timeout=config.transcription_timeout)
    audio_url = client.upload(data, media_type)
    result = client.subscribe(FAL_TRANSCRIPTION_MODEL,
                              arguments={"audio_url": audio_url, "language": "en"})
    return extract_fal_text(result)


def should_retry_openai_via_ffmpeg(error: Exception) -> bool:
    """OpenAI rejected the container/codec; a transcoded MP3 may work."""
    message = str(error).lower()
    return ("unrecognized file format" in message
            or "could not be decoded" in message
            or "format is not supported" in message)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def transcribe_media_with_whisper(data: bytes, media_type: str, filename: Optional[str],
                                  config: TranscriptConfig,
                                  total_duration_seconds: Optional[float] = None,
                                  progress=None) -> WhisperTranscriptionResult:
    """Transcribe in-memory media with the first provider that works."""
    progress = as_progress_sink(progress)
    notes = []

    if is_whisper_cpp_ready(config):
        name_hint = (filename or "").strip() or "media"
        temp_file = make_temp_path(
            "transcript-whisper-local-",
            "-" + ensure_whisper_filename_extension(Path(name_hint).name, media_type))
        try:
            temp_file.write_bytes(data)
            local = _try_local(config, temp_file, media_type, total_duration_seconds, progress, notes)
            if local is not None:
                return local
        finally:
            unlink_quietly(temp_file)

    if not config.has_transcription_credentials:
        return WhisperTranscriptionResult(
            text=None, provider=None, notes=notes, error=TranscriptConfigError(NO_PROVIDERS_MESSAGE))

    if config.openai_api_key and len(data) > MAX_OPENAI_UPLOAD_BYTES:
        if is_ffmpeg_available(config):
            temp_file = make_temp_path("transcript-whisper-")
            try:
                temp_file.write_bytes(data)
                chunked = transcribe_media_file_with_whisper(
                    temp_file, media_type, filename, config,
                    segment_seconds=DEFAULT_SEGMENT_SECONDS,
                    total_duration_seconds=total_duration_seconds,
                    progress=progress, skip_local=True)
            finally:
                unlink_quietly(temp_file)
            return WhisperTranscriptionResult(
                text=chunked.text, provider=chunked.provider, error=chunked.error,
                notes=notes + chunked.notes)
        notes.append(f"Media too large for Whisper upload ({format_bytes(len(data))}); "
                     f"transcribing first {format_bytes(MAX_OPENAI_UPLOAD_BYTES)} only "
                     f"(install ffmpeg for full transcription)")
        data = data[:MAX_OPENAI_UPLOAD_BYTES]

    openai_error = None
    if config.openai_api_key:
        try:
            text = _transcribe_with_openai(config, data, media_type, filename)
            if text:
                return WhisperTranscriptionResult(text=text, provider="openai", notes=notes)
            openai_error = TranscriptError("OpenAI transcription returned empty text")
        except TranscriptError as e:
            openai_error = e
        except Exception as e:
            openai_error = wrap_error("OpenAI transcription failed", e)

    if config.openai_api_key and openai_error and should_retry_openai_via_ffmpeg(openai_error):
        if is_ffmpeg_available(config):
            notes.append("OpenAI could not decode media; transcoding via ffmpeg and retrying")
            try:
                mp3_bytes = transcode_bytes_to_mp3(config, data)
            except TranscriptError as e:
                notes.append(f"ffmpeg transcode failed; cannot retry OpenAI decode error: {e}")
            else:
                try:
                    retried = _transcribe_with_openai(config, mp3_bytes, "audio/mpeg", "audio.mp3")
                    if retried:
                        return WhisperTranscriptionResult(text=retried, provider="openai", notes=notes)
                    openai_error = TranscriptError(
                        "OpenAI transcription returned empty text after ffmpeg transcode")
                    data, media_type = mp3_bytes, "audio/mpeg"
                except Exception as e:
                    openai_error = wrap_error("OpenAI transcription failed after ffmpeg transcode", e)
        else:
            notes.append("OpenAI could not decode media; install ffmpeg to enable transcoding retry")

    can_use_fal = bool(config.fal_api_key) and _base_media_type(media_type).startswith("audio/")
    if openai_error and can_use_fal:
        notes.append(f"OpenAI transcription failed; falling back to FAL: {openai_error}")
    if config.fal_api_key and not can_use_fal:
        notes.append(f"Skipping FAL transcription: unsupported mediaType {media_type}")

    if can_use_fal:
        try:
            text = _transcribe_with_fal(config, data, media_type)
        except Exception as e:
            return WhisperTranscriptionResult(
                text=None, provider="fal", notes=notes, error=wrap_error("FAL transcription failed", e))
        if text:
            return WhisperTranscriptionResult(text=text, provider="fal", notes=notes)
        return WhisperTranscriptionResult(
            text=None, provider="fal", notes=notes,
            error=TranscriptError("FAL transcription returned empty text"))

    if openai_error is None:
        openai_error = TranscriptError(
            f"FAL transcription supports audio/* only (mediaType={media_type}); set OPENAI_API_KEY")
    return WhisperTranscriptionResult(
        text=None, provider="openai" if config.openai_api_key else None, notes=notes,
        error=openai_error)


def _read_first_bytes(path: Path, limit: int) -> bytes:
    with open(path, "rb") as f:
        return f.read(limit)


def transcribe_media_file_with_whisper(file_path: Path, media_type: str, filename: Optional[str],
                                       config: TranscriptConfig,
                                       segment_seconds: int = DEFAULT_SEGMENT_SECONDS,
                                       total_duration_seconds: Optional[float] = None,
                                       progress=None, skip_local: bool = False
                                       ) -> WhisperTranscriptionResult:
    """Transcribe a media file, chunking it for OpenAI when it is too large.

    Parts are transcribed strictly in filename (= temporal) order and joined
    with blank lines. The first failing part aborts the whole transcription.
    """
    progress = as_progress_sink(progress)
    file_path = Path(file_path)
    notes = []

    if not skip_local and is_whisper_cpp_ready(config):
        progress.emit(WhisperProgress(part_index=None, parts=None, processed_duration_seconds=None,
                                      total_duration_seconds=total_duration_seconds))
        local = _try_local(config, file_path, media_type, total_duration_seconds, progress, notes)
        if local is not None:
            return local

    if not config.has_transcription_credentials:
        return WhisperTranscriptionResult(
            text=None, provider=None, notes=notes, error=TranscriptConfigError(NO_PROVIDERS_MESSAGE))

    size = file_path.stat().st_size
    if config.openai_api_key and size > MAX_OPENAI_UPLOAD_BYTES:
        if not is_ffmpeg_available(config):
            notes.append(f"Media too large for Whisper upload ({format_bytes(size)}); "
                         f"install ffmpeg to enable chunked transcription")
            partial = transcribe_media_with_whisper(
                _read_first_bytes(file_path, MAX_OPENAI_UPLOAD_BYTES), media_type, filename, config)
            return WhisperTranscriptionResult(
                text=partial.text, provider=partial.provider, error=partial.error,
                notes=notes + partial.notes)
        return _transcribe_in_segments(config, file_path, segment_seconds,
                                       total_duration_seconds, progress, notes)

    progress.emit(WhisperProgress(part_index=None, parts=None, processed_duration_seconds=None,
                                  total_duration_seconds=total_duration_seconds))
    result = transcribe_media_with_whisper(file_path.read_bytes(), media_type, filename, config)
    return WhisperTranscriptionResult(
        text=result.text, provider=result.provider, error=result.error, notes=notes + result.notes)


def _transcribe_in_segments(config: TranscriptConfig, file_path: Path, segment_seconds: int,
                            total_duration_seconds: Optional[float], progress,
                            notes: list) -> WhisperTranscriptionResult:
    import shutil
    import tempfile

    segment_dir = Path(tempfile.mkdtemp(prefix="transcript-whisper-segments-"))
    try:
        try:
            part_files = segment_audio(config, file_path, segment_dir, segment_seconds)
        except TranscriptError as e:
            return WhisperTranscriptionResult(text=None, provider=None, notes=notes, error=e)
        if not part_files:
            return WhisperTranscriptionResult(
                text=None, provider=None, notes=notes,
                error=TranscriptError("ffmpeg produced no audio segments"))

        notes.append(f"ffmpeg chunked media into {len(part_files)} parts ({segment_seconds}s each)")
        vprint(config, f"  Transcribing {len(part_files)} parts...")
        progress.emit(WhisperProgress(part_index=None, parts=len(part_files),
                                      processed_duration_seconds=None,
                                      total_duration_seconds=total_duration_seconds))

        texts = []
        used_provider = None
        for index, part in enumerate(part_files, 1):
            result = transcribe_media_with_whisper(part.read_bytes(), "audio/mpeg", part.name, config,
                                                   progress=NULL_PROGRESS)
            if used_provider is None and result.provider:
                used_provider = result.provider
            if result.error and not result.text:
                return WhisperTranscriptionResult(
                    text=None, provider=used_provider, notes=notes, error=result.error)
            if result.text:
                texts.append(result.text)
            processed = index * segment_seconds
            progress.emit(WhisperProgress(
                part_index=index, parts=len(part_files),
                processed_duration_seconds=(min(processed, total_duration_seconds)
                                            if total_duration_seconds and total_duration_seconds > 0
                                            else None),
                total_duration_seconds=total_duration_seconds))

        return WhisperTranscriptionResult(text="\n\n".join(texts), provider=used_provider, notes=notes)
    finally:
        shutil.rmtree(segment_dir, ignore_errors=True)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TranscriptionAvailability:
    has_local_whisper: bool
    has_openai: bool
    has_fal: bool
    provider_hint: str  # "cpp" | "openai->fal" | "openai" | "fal" | "unknown"
    model_id: Optional[str]

    @property
    def has_any_provider(self) -> bool:
        return self.has_local_whisper or self.has_openai or self.has_fal


def resolve_transcription_availability(config: TranscriptConfig) -> TranscriptionAvailability:
    """Summarize which engines could run, for progress labels and --check."""
    has_local = is_whisper_cpp_ready(config)
    has_openai = bool(config.openai_api_key)
    has_fal = bool(config.fal_api_key)
    if has_local:
        hint = "cpp"
        model_id = resolve_whisper_cpp_model_name_for_display(config) or "whisper.cpp"
    elif has_openai and has_fal:
        hint, model_id = "openai->fal", f"{OPENAI_TRANSCRIPTION_MODEL}->{FAL_TRANSCRIPTION_MODEL}"
    elif has_openai:
        hint, model_id = "openai", OPENAI_TRANSCRIPTION_MODEL
    elif has_fal:
        hint, model_id = "fal", FAL_TRANSCRIPTION_MODEL
    else:
        hint, model_id = "unknown", None
    return TranscriptionAvailability(
        has_local_whisper=has_local, has_openai=has_openai, has_fal=has_fal,
        provider_hint=hint, model_id=model_id)
