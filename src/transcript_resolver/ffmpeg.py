"""
ffmpeg helpers for the transcription engine.

Transcoding to small mono MP3, fixed-duration segmenting for upload limits,
and a best-effort ffprobe duration probe. Every call is bounded by a timeout.
"""

import subprocess
from pathlib import Path
from typing import Optional

from transcript_resolver.shared import (
    TranscriptConfig, TranscriptError,
    run_command, command_available, make_temp_path, unlink_quietly, wrap_error,
)

FFMPEG_TIMEOUT_SECONDS = 600
FFPROBE_TIMEOUT_SECONDS = 30
MAX_STDERR_CHARS = 8192


def is_ffmpeg_available(config: TranscriptConfig) -> bool:
    """Check that ffmpeg runs (``ffmpeg -version`` exits 0)."""
    return command_available([config.ffmpeg_path, "-version"])


def _run_ffmpeg(config: TranscriptConfig, args: list[str], label: str) -> None:
    """Run ffmpeg, raising TranscriptError with trimmed stderr on failure or timeout."""
    cmd = [config.ffmpeg_path, *args]
    try:
        run_command(cmd, label, config.verbose, timeout=FFMPEG_TIMEOUT_SECONDS)
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip()[:MAX_STDERR_CHARS] or "unknown error"
        raise TranscriptError(f"{label} failed ({e.returncode}): {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise TranscriptError(f"{label} timed out after {FFMPEG_TIMEOUT_SECONDS}s") from e
    except OSError as e:
        raise wrap_error(f"{label} failed", e) from e


def transcode_to_mp3(config: TranscriptConfig, input_path: Path, output_path: Path) -> None:
    """Strict transcode: mono, 16 kHz, 64 kbps MP3."""
    _run_ffmpeg(config, [
        "-hide_banner", "-loglevel", "error",
        "-i", str(input_path),
        "-vn", "-ac", "1", "-ar", "16000", "-b:a", "64k",
        "-y", str(output_path),
    ], "ffmpeg strict transcode")


def transcode_to_mp3_lenient(config: TranscriptConfig, input_path: Path, output_path: Path) -> None:
    """Lenient transcode: ignore decode errors and map only the first audio stream."""
    _run_ffmpeg(config, [
        "-hide_banner", "-loglevel", "error",
        "-err_detect", "ignore_err", "-fflags", "+genpts",
        "-i", str(input_path),
        "-vn", "-sn", "-dn", "-map", "0:a:0?",
        "-ac", "1", "-ar", "16000", "-b:a", "64k",
        "-y", str(output_path),
    ], "ffmpeg lenient transcode")


def transcode_with_fallback(config: TranscriptConfig, input_path: Path,
                            output_path: Path) -> Optional[str]:
    """Transcode strictly, retrying leniently if the strict pass fails.

    Returns the strict failure message when the lenient pass was needed,
    None otherwise. Raises if both passes fail.
    """
    try:
        transcode_to_mp3(config, input_path, output_path)
        return None
    except TranscriptError as strict_error:
        transcode_to_mp3_lenient(config, input_path, output_path)
        return str(strict_error)


def transcode_bytes_to_mp3(config: TranscriptConfig, data: bytes) -> bytes:
    """Transcode in-memory media to MP3 via temp files (always cleaned up)."""
    input_path = make_temp_path("transcript-whisper-input-", ".bin")
    output_path = make_temp_path("transcript-whisper-output-", ".mp3")
    try:
        input_path.write_bytes(data)
        transcode_with_fallback(config, input_path, output_path)
        return output_path.read_bytes()
    finally:
        unlink_quietly(input_path)
        unlink_quietly(output_path)


def segment_audio(config: TranscriptConfig, input_path: Path, output_dir: Path,
                  segment_seconds: int) -> list[Path]:
    """Split media into fixed-duration mono MP3 parts.

    Returns the part files in filename order, which is also temporal order.
    """
    pattern = output_dir / "part-%03d.mp3"
    _run_ffmpeg(config, [
        "-hide_banner", "-loglevel", "error",
        "-i", str(input_path),
        "-vn", "-ac", "1", "-ar", "16000", "-b:a", "32k",
        "-f", "segment", "-segment_time", str(segment_seconds),
        "-reset_timestamps", "1",
        str(pattern),
    ], "ffmpeg segment")
    return sorted(p for p in output_dir.glob("part-*.mp3") if p.is_file())


def probe_media_duration_seconds(config: TranscriptConfig, path: Path) -> Optional[float]:
    """Media duration via ffprobe, or None when ffprobe is missing or unsure."""
    cmd = [config.ffprobe_path, "-v", "error",
           "-show_entries", "format=duration",
           "-of", "default=noprint_wrappers=1:nokey=1",
           str(path)]
    try:
        result = run_command(cmd, "probing media duration", config.verbose,
                             timeout=FFPROBE_TIMEOUT_SECONDS)
    except (subprocess.SubprocessError, OSError):
        return None
    try:
        duration = float(result.stdout.strip()[:2048])
    except ValueError:
        return None
    return duration if duration > 0 else None
