"""
YouTube audio via yt-dlp, transcribed with the Whisper engine.

The audio lands in a per-call temp directory that is always removed.
"""

import shutil
import subprocess
import tempfile
from pathlib import Path

from transcript_resolver.models import WhisperTranscriptionResult
from transcript_resolver.providers.media import guess_media_type, transcribe_local_media
from transcript_resolver.shared import TranscriptError, run_command, vprint

MAX_STDERR_CHARS = 2000


def download_audio_with_ytdlp(yt_dlp_path: str, url: str, output_dir: Path,
                              timeout: float, verbose: bool = False) -> Path:
    """Download best audio for ``url`` into ``output_dir`` and return the file."""
    try:
        run_command(
            [yt_dlp_path, "-f", "bestaudio/best", "--no-playlist", "--no-progress",
             "-o", str(output_dir / "audio.%(ext)s"), url],
            "downloading audio with yt-dlp",
            verbose,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip()[-MAX_STDERR_CHARS:] or "unknown error"
        raise TranscriptError(f"yt-dlp failed ({e.returncode}): {detail}") from e
    except subprocess.TimeoutExpired as e:
        raise TranscriptError(f"yt-dlp timed out after {timeout:.0f}s") from e
    except OSError as e:
        raise TranscriptError(f"yt-dlp could not be started: {e}") from e

    files = sorted(p for p in output_dir.glob("audio.*") if p.is_file() and p.suffix != ".part")
    if not files:
        raise TranscriptError("yt-dlp finished without producing an audio file")
    return files[0]


def fetch_transcript_with_ytdlp(url: str, options) -> WhisperTranscriptionResult:
    """Download audio with yt-dlp and transcribe it. Never raises for provider failures."""
    config = options.config
    work_dir = Path(tempfile.mkdtemp(prefix="transcript-ytdlp-"))
    try:
        try:
            audio_path = download_audio_with_ytdlp(
                config.yt_dlp_path, url, work_dir, config.transcription_timeout, config.verbose)
        except TranscriptError as e:
            return WhisperTranscriptionResult(text=None, provider=None, error=e,
                                              notes=[f"yt-dlp download failed: {e}"])
        vprint(config, f"  yt-dlp audio: {audio_path.name}")
        return transcribe_local_media(audio_path, guess_media_type(str(audio_path)),
                                      options, url, "youtube")
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
