"""Streaming transcript summaries using a configurable LLM backend."""

from __future__ import annotations

import sys

from transcript_resolver.shared import (
    TranscriptConfig,
    TranscriptError,
    create_llm_client,
    llm_call_with_retry,
    vprint,
)
from transcript_resolver.streaming import StreamAccumulator, is_streaming_timeout_error

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert summarizer. Given a transcript, produce a concise, "
    "well-structured Markdown summary. Include:\n"
    "- A brief overview (1-2 paragraphs)\n"
    "- Key points or arguments as a bulleted list\n"
    "- Speakers mentioned (if any)\n"
    "- Notable quotes or claims (if any)\n\n"
    "Be faithful to the content. Do not editorialize or add information "
    "not present in the transcript."
)


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _iter_anthropic_text(client, config: TranscriptConfig, transcript: str):
    with client.messages.stream(
        model=config.claude_model,
        max_tokens=config.max_summary_tokens,
        system=SUMMARY_SYSTEM_PROMPT,
        messages=[{"role": "user", "content": f"Summarize this transcript:\n\n{transcript}"}],
    ) as stream:
        yield from stream.text_stream


def _iter_openai_text(client, config: TranscriptConfig, transcript: str):
    stream = client.chat.completions.create(
        model=config.local_model,
        max_tokens=config.max_summary_tokens,
        stream=True,
        messages=[
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {"role": "user", "content": f"Summarize this transcript:\n\n{transcript}"},
        ],
    )
    for chunk in stream:
        if not chunk.choices:
            continue
        content = chunk.choices[0].delta.content
        if content:
            yield content


def stream_summary(transcript: str, config: TranscriptConfig, client=None,
                   write=_write_stdout) -> str:
    """Stream a summary of ``transcript`` to ``write`` and return the full text.

    Chunks pass through the stream reconciler, so providers that resend
    cumulative text never show duplicated output. A stream that fails before
    its first chunk is retried with backoff; one that fails midway is not,
    since part of it has already been written.
    """
    if not transcript or not transcript.strip():
        raise TranscriptError("No transcript text to summarize")

    client = client or create_llm_client(config)
    model = config.local_model if config.local else config.claude_model
    vprint(config, f"  Summarizing with {model} ({len(transcript.split()):,} words)")
    accumulator = StreamAccumulator(write=write)

    def run_stream():
        chunks = (_iter_openai_text if config.local else _iter_anthropic_text)(client, config, transcript)
        try:
            for chunk in chunks:
                accumulator.feed(chunk)
        except Exception as e:
            if not accumulator.chunks:
                raise
            if is_streaming_timeout_error(e):
                raise TranscriptError(
                    f"LLM stream timed out after {len(accumulator.text)} chars") from e
            raise TranscriptError(f"LLM stream failed midway: {e}") from e
        return accumulator.text

    text = llm_call_with_retry(run_stream, config)
    if text and not text.endswith("\n"):
        write("\n")
    return text
