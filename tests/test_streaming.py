"""Tests for streaming.py — chunk reconciliation for streamed LLM output."""

from transcript_resolver.streaming import (
    CUMULATIVE_SLACK_CHARS,
    StreamAccumulator,
    StreamMerge,
    common_prefix_length,
    is_streaming_timeout_error,
    merge_streaming_chunk,
    normalize_stream_text,
)


def _merge_all(chunks, start=""):
    text = start
    for chunk in chunks:
        text = merge_streaming_chunk(text, chunk).next
    return text


# ---------------------------------------------------------------------------
# merge_streaming_chunk
# ---------------------------------------------------------------------------

class TestMergeStreamingChunk:
    def test_cumulative_extension_appends_suffix(self):
        for previous, suffix in [("Hello", " world"), ("a", "b"), ("Line one\n", "Line two")]:
            result = merge_streaming_chunk(previous, previous + suffix)
            assert result == StreamMerge(previous + suffix, suffix)

    def test_exact_resend_is_idempotent(self):
        for previous in ["Hello", "x", "Some longer text with\nnewlines"]:
            result = merge_streaming_chunk(previous, previous)
            assert result.next == previous
            assert result.appended == ""

    def test_empty_chunk_keeps_previous(self):
        assert merge_streaming_chunk("abc", "") == StreamMerge("abc", "")

    def test_empty_previous_takes_chunk(self):
        assert merge_streaming_chunk("", "first") == StreamMerge("first", "first")

    def test_stale_prefix_resend_appends_nothing(self):
        result = merge_streaming_chunk("Hello world", "Hello")
        assert result == StreamMerge("Hello world", "")

    def test_revised_snapshot_replaces_previous(self):
        previous = "The quick brown fox jumps over the lazy dog"
        chunk = "The quick brown fox jumps over the lazy cat, twice"
        result = merge_streaming_chunk(previous, chunk)
        assert result.next == chunk
        assert result.appended == "cat, twice"

    def test_short_shared_prefix_is_not_a_snapshot(self):
        # Shared prefix "Ab" is far below the 90% threshold, so this is a delta
        result = merge_streaming_chunk("Abcdefghij", "Abzzzzzzzzzz")
        assert result.next == "AbcdefghijAbzzzzzzzzzz"

    def test_slack_allows_long_snapshot_with_revised_tail(self):
        body = "x" * 1000
        previous = body + "y" * CUMULATIVE_SLACK_CHARS
        chunk = body + "z" * (CUMULATIVE_SLACK_CHARS + 10)
        result = merge_streaming_chunk(previous, chunk)
        assert result.next == chunk
        assert result.appended == "z" * (CUMULATIVE_SLACK_CHARS + 10)

    def test_overlap_is_stitched(self):
        result = merge_streaming_chunk("I like to eat", "eat apples")
        assert result.next == "I like to eat apples"
        assert result.appended == " apples"

    def test_pure_delta_is_concatenated(self):
        result = merge_streaming_chunk("Hello ", "world")
        assert result == StreamMerge("Hello world", "world")

    def test_line_endings_are_normalized(self):
        result = merge_streaming_chunk("Hello\r\n", "Hello\nworld")
        assert result.next == "Hello\nworld"
        assert result.appended == "world"

    def test_lone_carriage_return_normalized(self):
        result = merge_streaming_chunk("a\rb", "a\nbc")
        assert result == StreamMerge("a\nbc", "c")

    def test_thresholds_can_be_overridden(self):
        # With a 0% ratio and no slack, any shared prefix counts as a snapshot
        result = merge_streaming_chunk("Abcdefghij", "Abzzzzzzzzzz", min_ratio=0.0, slack_chars=10)
        assert result.next == "Abzzzzzzzzzz"
        assert result.appended == "zzzzzzzzzz"

    def test_overlap_limit_can_be_overridden(self):
        result = merge_streaming_chunk("I like to eat", "eat apples", overlap_limit=2)
        assert result.next == "I like to eateat apples"


class TestMergeSequences:
    def test_cumulative_sequence_has_no_duplicates(self):
        assert _merge_all(["Hello", "Hello world", "Hello world!"]) == "Hello world!"

    def test_pure_delta_sequence(self):
        assert _merge_all(["Hello ", "world", "!"]) == "Hello world!"

    def test_mixed_delta_then_cumulative(self):
        assert _merge_all(["Hello ", "world", "Hello world!!"]) == "Hello world!!"

    def test_pure_delta_round_trip(self):
        deltas = ["The ", "quick ", "brown ", "fox ", "jumps."]
        assert _merge_all(deltas) == "".join(deltas)

    def test_cumulative_round_trip(self):
        deltas = ["Alpha. ", "Beta. ", "Gamma."]
        snapshots = ["".join(deltas[:i + 1]) for i in range(len(deltas))]
        assert _merge_all(snapshots) == "".join(deltas)


# ---------------------------------------------------------------------------
# helpers
# ---------------------------------------------------------------------------

class TestHelpers:
    def test_normalize_stream_text(self):
        assert normalize_stream_text("a\r\nb\rc\n") == "a\nb\nc\n"

    def test_common_prefix_length(self):
        assert common_prefix_length("abcdef", "abcxyz") == 3
        assert common_prefix_length("", "abc") == 0
        assert common_prefix_length("aaaa", "aaaa", limit=2) == 2

    def test_timeout_error_detection(self):
        assert is_streaming_timeout_error(TimeoutError("Request timed out"))
        assert is_streaming_timeout_error("Stream TIMED OUT after 30s")
        assert not is_streaming_timeout_error(ValueError("bad request"))
        assert not is_streaming_timeout_error(None)


class TestStreamAccumulator:
    def test_writes_only_new_text(self):
        written = []
        acc = StreamAccumulator(write=written.append)
        for chunk in ["Hello", "Hello world", "Hello world", "!"]:
            acc.feed(chunk)
        assert acc.text == "Hello world!"
        assert written == ["Hello", " world", "!"]
        assert acc.chunks == 4

    def test_without_writer(self):
        acc = StreamAccumulator()
        assert acc.feed("abc") == "abc"
        assert acc.feed("abcdef") == "def"
        assert acc.text == "abcdef"
