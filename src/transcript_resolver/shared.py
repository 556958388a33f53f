"""
Shared types and utilities for transcript resolution.

Contains TranscriptConfig, the error hierarchy, and utility functions used by
the providers, the transcription engine, and the streaming summarizer.
"""

import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import builtins


def tprint(*args, **kwargs):
    """Print with [HH:MM:SS] timestamp prefix.

    Skips the timestamp for carriage-return progress lines (end != newline)
    so that in-place progress updates remain clean.
    """
    if kwargs.get("end", "\n") != "\n":
        builtins.print(*args, flush=True, **kwargs)
        return
    stamp = time.strftime("[%H:%M:%S]")
    builtins.print(stamp, *args, flush=True, **kwargs)


print = tprint


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class TranscriptError(Exception):
    """Base error for transcript resolution and transcription."""


class TranscriptConfigError(TranscriptError):
    """An explicitly requested mode is missing a credential or binary."""


class ProviderRegistryError(TranscriptError):
    """The provider registry is missing its generic fallback provider."""


class MediaTooLargeError(TranscriptError):
    """Input media exceeds a hard size limit."""


def wrap_error(prefix: str, error: BaseException) -> TranscriptError:
    """Wrap an error with a context prefix, keeping the original as __cause__."""
    wrapped = TranscriptError(f"{prefix}: {error}")
    wrapped.__cause__ = error
    return wrapped


def format_bytes(num_bytes: int) -> str:
    """Format a byte count compactly: 512B, 1.5KB, 24MB."""
    units = ["B", "KB", "MB", "GB"]
    value = float(num_bytes)
    idx = 0
    while value >= 1024 and idx < len(units) - 1:
        value /= 1024
        idx += 1
    decimals = 0 if value >= 10 or idx == 0 else 1
    return f"{value:.{decimals}f}{units[idx]}"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_WHISPER_CPP_BINARY = "whisper-cli"


def _env_value(env: Mapping[str, str], key: str) -> Optional[str]:
    """Return a trimmed env value, or None when unset or blank."""
    value = (env.get(key) or "").strip()
    return value or None


@dataclass
class TranscriptConfig:
    """Configuration for transcript resolution and transcription.

    Built from a flat string map (see from_env); the core never reads the
    process environment itself.
    """
    openai_api_key: Optional[str] = None
    fal_api_key: Optional[str] = None
    apify_api_token: Optional[str] = None
    apify_actor: str = "faVsWy9VTSNVIhWpR"  # YouTube transcript scraper actor
    yt_dlp_path: Optional[str] = None
    whisper_cpp_binary: str = DEFAULT_WHISPER_CPP_BINARY
    whisper_cpp_model_path: Optional[str] = None  # Explicit model override
    disable_local_whisper_cpp: bool = False
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    home: Optional[str] = None
    verbose: bool = False
    # Timeouts (seconds)
    http_timeout: float = 30.0
    transcription_timeout: float = 600.0
    # LLM backend (streaming summaries)
    anthropic_api_key: Optional[str] = None
    local: bool = True  # Use local Ollama by default
    local_model: str = "qwen2.5"
    claude_model: str = "claude-sonnet-4-20250514"
    ollama_base_url: str = "http://localhost:11434/v1/"
    api_max_retries: int = 5
    api_initial_backoff: int = 5  # seconds
    api_timeout: float = 120.0  # seconds per API attempt
    max_summary_tokens: int = 4096

    @classmethod
    def from_env(cls, env: Mapping[str, str], **overrides) -> "TranscriptConfig":
        """Build a config from an environment-like mapping.

        Keyword overrides win over values read from the mapping.
        """
        values = {
            "openai_api_key": _env_value(env, "OPENAI_API_KEY"),
            "fal_api_key": _env_value(env, "FAL_KEY"),
            "apify_api_token": _env_value(env, "APIFY_API_TOKEN"),
            "yt_dlp_path": _env_value(env, "YT_DLP_PATH"),
            "whisper_cpp_binary": (_env_value(env, "SUMMARIZE_WHISPER_CPP_BINARY")
                                   or DEFAULT_WHISPER_CPP_BINARY),
            "whisper_cpp_model_path": _env_value(env, "SUMMARIZE_WHISPER_CPP_MODEL_PATH"),
            "disable_local_whisper_cpp": _env_value(env, "SUMMARIZE_DISABLE_LOCAL_WHISPER_CPP") == "1",
            "ffmpeg_path": _env_value(env, "FFMPEG_PATH") or "ffmpeg",
            "ffprobe_path": _env_value(env, "FFPROBE_PATH") or "ffprobe",
            "home": _env_value(env, "HOME") or _env_value(env, "USERPROFILE"),
            "anthropic_api_key": _env_value(env, "ANTHROPIC_API_KEY"),
        }
        actor = _env_value(env, "APIFY_YOUTUBE_ACTOR")
        if actor:
            values["apify_actor"] = actor
        values.update(overrides)
        return cls(**values)

    @property
    def has_transcription_credentials(self) -> bool:
        return bool(self.openai_api_key or self.fal_api_key)

    def whisper_cpp_cache_model(self) -> Optional[Path]:
        """Well-known cache location for the default whisper.cpp model."""
        if not self.home:
            return None
        return Path(self.home) / ".summarize" / "cache" / "whisper-cpp" / "models" / "ggml-base.bin"


def vprint(config: TranscriptConfig, *args) -> None:
    """Print only when the config asks for verbose output."""
    if config.verbose:
        print(*args)


# ---------------------------------------------------------------------------
# LLM client (used by the streaming summarizer)
# ---------------------------------------------------------------------------

def create_llm_client(config: TranscriptConfig):
    """Create either an Anthropic or OpenAI-compatible (Ollama) client."""
    if config.local:
        from openai import OpenAI
        return OpenAI(base_url=config.ollama_base_url, api_key="ollama")
    else:
        import anthropic
        return anthropic.Anthropic(api_key=config.anthropic_api_key)


def llm_call_with_retry(call_fn, config: TranscriptConfig):
    """Call the LLM with exponential backoff on transient errors.

    Supports both Anthropic and OpenAI-compatible (Ollama) clients; the
    matching SDK's timeout and status errors are retried.
    """
    if config.local:
        from openai import APITimeoutError, APIStatusError
        retryable_codes, label = (429, 500, 502, 503), "LLM"
    else:
        from anthropic import APITimeoutError, APIStatusError
        retryable_codes, label = (429, 529, 500), "API"

    delay = config.api_initial_backoff
    for attempt in range(1, config.api_max_retries + 1):
        try:
            return call_fn()
        except APITimeoutError:
            if attempt < config.api_max_retries:
                print(f"    {label} timeout, retrying in {delay}s (attempt {attempt}/{config.api_max_retries})...")
                time.sleep(delay)
                delay *= 2
            else:
                raise
        except APIStatusError as e:
            if e.status_code in retryable_codes and attempt < config.api_max_retries:
                print(f"    {label} {e.status_code} error, retrying in {delay}s (attempt {attempt}/{config.api_max_retries})...")
                time.sleep(delay)
                delay *= 2
            else:
                raise


# ---------------------------------------------------------------------------
# Subprocess utilities (used by ffmpeg, whisper.cpp, and yt-dlp wrappers)
# ---------------------------------------------------------------------------

def run_command(cmd: list[str], description: str, verbose: bool = False,
                timeout: Optional[float] = None) -> subprocess.CompletedProcess:
    """Run a command with error handling.

    Raises CalledProcessError on non-zero exit and TimeoutExpired when the
    process outlives the timeout (subprocess.run kills it first).
    """
    if verbose:
        print(f"  Running: {' '.join(cmd)}")
    try:
        return subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=timeout)
    except subprocess.CalledProcessError as e:
        if verbose:
            print(f"  Error: {description}")
            print(f"  {(e.stderr or '').strip()}")
        raise
    except subprocess.TimeoutExpired:
        if verbose:
            print(f"  Timed out after {timeout}s: {description}")
        raise


def command_available(cmd: list[str], timeout: float = 10.0) -> bool:
    """Return True if the command runs and exits 0 (e.g. ``ffmpeg -version``)."""
    try:
        result = subprocess.run(cmd, stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL,
                                stderr=subprocess.DEVNULL, timeout=timeout)
    except (OSError, subprocess.SubprocessError):
        return False
    return result.returncode == 0


def make_temp_path(prefix: str, suffix: str = "") -> Path:
    """Return a fresh, collision-free path in the temp dir (file not created)."""
    import tempfile
    import uuid
    return Path(tempfile.gettempdir()) / f"{prefix}{uuid.uuid4().hex}{suffix}"


def unlink_quietly(path: Optional[Path]) -> None:
    """Remove a temp file if it exists."""
    if path is None:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
