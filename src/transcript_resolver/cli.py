"""
Command-line entry point: resolve (and optionally summarize) a transcript.

Usage:
    transcript-resolver "https://www.youtube.com/watch?v=..."
    transcript-resolver "https://example.com/feed.rss" --json
    transcript-resolver ./episode.mp3 --summarize --api
"""

import argparse
import json
import os
import sys

from transcript_resolver import __version__
from transcript_resolver.ffmpeg import is_ffmpeg_available
from transcript_resolver.progress import NULL_PROGRESS, TranscriptProgressPrinter
from transcript_resolver.providers import ProviderFetchOptions, resolve_transcript_for_link
from transcript_resolver.providers.base import (
    MEDIA_TRANSCRIPT_MODES, YOUTUBE_TRANSCRIPT_MODES, default_session,
)
from transcript_resolver.providers.media import is_direct_media_url
from transcript_resolver.shared import (
    tprint as print,
    TranscriptConfig, TranscriptConfigError, TranscriptError,
)
from transcript_resolver.summarize import stream_summary
from transcript_resolver.whisper import resolve_transcription_availability

EXIT_ERROR = 1
EXIT_NO_TRANSCRIPT = 2


def fetch_page_html(session, url: str, config: TranscriptConfig):
    """HTML for http(s) pages; None for media links, local paths, or fetch failures."""
    if not url.startswith(("http://", "https://")) or is_direct_media_url(url):
        return None
    try:
        response = session.get(url, timeout=config.http_timeout)
        response.raise_for_status()
    except Exception as e:
        print(f"  Could not fetch page ({e}); continuing without HTML", file=sys.stderr)
        return None
    return response.text


def print_check(config: TranscriptConfig) -> None:
    """Report which transcript and transcription backends are usable."""
    availability = resolve_transcription_availability(config)
    print("Transcription backends:")
    print(f"  whisper.cpp: {'OK (' + availability.model_id + ')' if availability.has_local_whisper else 'unavailable'}")
    print(f"  OpenAI:      {'OK' if availability.has_openai else 'not configured (OPENAI_API_KEY)'}")
    print(f"  FAL:         {'OK' if availability.has_fal else 'not configured (FAL_KEY)'}")
    print(f"  ffmpeg:      {'OK' if is_ffmpeg_available(config) else 'not found'}")
    print("YouTube fallbacks:")
    print(f"  apify:       {'OK' if config.apify_api_token else 'not configured (APIFY_API_TOKEN)'}")
    print(f"  yt-dlp:      {config.yt_dlp_path or 'not configured (YT_DLP_PATH)'}")
    print(f"Provider hint: {availability.provider_hint}")


def print_diagnostics(resolution) -> None:
    diagnostics = resolution.diagnostics
    tried = ", ".join(str(p) for p in diagnostics.attempted_providers) or "(none)"
    print(f"  Source: {resolution.source or '(none)'}", file=sys.stderr)
    print(f"  Attempted: {tried}", file=sys.stderr)
    if diagnostics.notes_text():
        print(f"  Notes: {diagnostics.notes_text()}", file=sys.stderr)


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="transcript-resolver",
        description="Resolve transcripts for YouTube, podcast, web, and media URLs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s "https://youtube.com/watch?v=..."
  %(prog)s "https://youtube.com/watch?v=..." --youtube yt-dlp
  %(prog)s "https://feeds.example.com/show.rss" --timestamps
  %(prog)s "https://example.com/episode" --media prefer --json
  %(prog)s ./talk.mp3 --summarize
  %(prog)s --check
        """
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")

    # Input
    input_group = parser.add_argument_group("input")
    input_group.add_argument("url", nargs="?", help="URL, file:// URL, or local media path")
    input_group.add_argument("--youtube", choices=YOUTUBE_TRANSCRIPT_MODES, default="auto",
                             help="YouTube transcript strategy (default: auto)")
    input_group.add_argument("--media", choices=MEDIA_TRANSCRIPT_MODES, default="auto",
                             help="'prefer' also transcribes audio/video embedded in web pages (default: auto)")

    # Output
    output_group = parser.add_argument_group("output")
    output_group.add_argument("--timestamps", action="store_true",
                              help="Prefix each segment line with [m:ss] when segments exist")
    output_group.add_argument("--json", action="store_true",
                              help="Print the resolution (text, segments, diagnostics) as JSON")

    # LLM backend
    llm_group = parser.add_argument_group("LLM backend")
    llm_group.add_argument("--summarize", action="store_true",
                           help="Stream an LLM summary of the transcript after printing it")
    llm_group.add_argument("--api", action="store_true",
                           help="Use Anthropic Claude API instead of local Ollama (requires API key)")
    llm_group.add_argument("--api-key",
                           help="Anthropic API key (or set ANTHROPIC_API_KEY env var; implies --api)")
    llm_group.add_argument("--claude-model", default="claude-sonnet-4-20250514",
                           help="Claude model for API calls (default: claude-sonnet-4-20250514)")
    llm_group.add_argument("--local-model", default="qwen2.5",
                           help="Ollama model for summaries (default: qwen2.5)")
    llm_group.add_argument("--ollama-url", default="http://localhost:11434/v1/",
                           help="Ollama server URL (default: http://localhost:11434/v1/)")

    # Diagnostics
    diag_group = parser.add_argument_group("diagnostics")
    diag_group.add_argument("--check", action="store_true",
                            help="Report available transcription backends and exit")
    diag_group.add_argument("-v", "--verbose", action="store_true",
                            help="Show commands, notes, and attempted providers")

    args = parser.parse_args(argv)

    overrides = {
        "verbose": args.verbose,
        "local": not (args.api or bool(args.api_key)),
        "claude_model": args.claude_model,
        "local_model": args.local_model,
        "ollama_base_url": args.ollama_url,
    }
    if args.api_key:
        overrides["anthropic_api_key"] = args.api_key
    config = TranscriptConfig.from_env(os.environ, **overrides)

    if args.check:
        print_check(config)
        return 0
    if not args.url:
        parser.error("a URL or path is required (or use --check)")

    session = default_session()
    show_progress = sys.stdout.isatty() and not args.json
    progress = TranscriptProgressPrinter() if show_progress else NULL_PROGRESS
    options = ProviderFetchOptions(
        config=config,
        session=session,
        youtube_transcript_mode=args.youtube,
        media_transcript_mode=args.media,
        timestamps=args.timestamps,
        progress=progress,
    )

    try:
        html = fetch_page_html(session, args.url, config)
        resolution = resolve_transcript_for_link(args.url, html, options)
    except TranscriptConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except TranscriptError as e:
        print(f"Error: {e}", file=sys.stderr)
        if config.verbose:
            import traceback
            traceback.print_exc()
        return EXIT_ERROR
    finally:
        if show_progress:
            progress.stop()

    if args.json:
        sys.stdout.write(json.dumps(resolution.to_dict(), indent=2, ensure_ascii=False) + "\n")
    elif resolution.text:
        sys.stdout.write(resolution.text + "\n")

    if config.verbose or not resolution.text:
        print_diagnostics(resolution)

    if not resolution.text:
        if not args.json:
            print("No transcript available", file=sys.stderr)
        return EXIT_NO_TRANSCRIPT

    if args.summarize:
        print("Summarizing...", file=sys.stderr)
        try:
            stream_summary(resolution.text, config)
        except Exception as e:
            print(f"Error: summary failed: {e}", file=sys.stderr)
            return EXIT_ERROR
    return 0


if __name__ == "__main__":
    sys.exit(main())
