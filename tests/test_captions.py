"""Tests for captions.py — VTT/SRT/JSON/XML/HTML transcript parsing."""

import json

import pytest

from transcript_resolver.captions import (
    extract_text_from_html,
    format_timestamp,
    parse_cue_blocks,
    parse_json_transcript,
    parse_timestamp,
    parse_transcript_payload,
    parse_xml_captions,
    segments_to_text,
)
from transcript_resolver.models import TranscriptSegment, TranscriptSource


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

class TestParseTimestamp:
    @pytest.mark.parametrize("value,expected", [
        ("00:00:01.500", 1500),
        ("01:02:03.456", 3723456),
        ("02:03,456", 123456),
        ("2:03", 123000),
        ("12.5s", 12500),
        ("1500ms", 1500),
        ("12.5", 12500),
        (3, 3000),
        (1.25, 1250),
    ])
    def test_valid(self, value, expected):
        assert parse_timestamp(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "-1", True, -2, "inf", "1e999", "1e999ms", "nan",
                                       float("inf"), float("nan")])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_format_timestamp(self):
        assert format_timestamp(0) == "0:00"
        assert format_timestamp(65_000) == "1:05"
        assert format_timestamp(3_723_000) == "1:02:03"


# ---------------------------------------------------------------------------
# WebVTT / SRT
# ---------------------------------------------------------------------------

VTT_SAMPLE = """\ufeffWEBVTT
Kind: captions

NOTE this is a comment

00:00:01.000 --> 00:00:03.000 align:start
<c>Hello</c> there

00:00:03.000 --> 00:00:05.000
Hello there

00:00:05.000 --> 00:00:07.500
General &amp; Kenobi
"""

SRT_SAMPLE = """1
00:00:01,000 --> 00:00:02,000
First line

2
00:00:02,500 --> 00:00:04,000
Second
line
"""


class TestParseCueBlocks:
    def test_vtt(self):
        segments = parse_cue_blocks(VTT_SAMPLE)
        assert [s.text for s in segments] == ["Hello there", "General & Kenobi"]
        assert segments[0].start_ms == 1000
        assert segments[0].end_ms == 3000
        assert segments[1].end_ms == 7500

    def test_srt(self):
        segments = parse_cue_blocks(SRT_SAMPLE)
        assert segments == [
            TranscriptSegment(1000, 2000, "First line"),
            TranscriptSegment(2500, 4000, "Second line"),
        ]

    def test_skips_malformed_blocks(self):
        content = (
            "WEBVTT\n\n"
            "garbage --> also garbage\nBad cue\n\n"
            "00:00:02.000 --> 00:00:03.000\n\n"
            "no timing line here\n\n"
            "00:00:04.000 --> 00:00:05.000\nGood cue\n"
        )
        segments = parse_cue_blocks(content)
        assert [s.text for s in segments] == ["Good cue"]

    def test_crlf_input(self):
        content = "WEBVTT\r\n\r\n00:00:01.000 --> 00:00:02.000\r\nHi\r\n"
        assert parse_cue_blocks(content)[0].text == "Hi"

    def test_segments_sorted_by_start(self):
        content = (
            "00:00:05.000 --> 00:00:06.000\nLater\n\n"
            "00:00:01.000 --> 00:00:02.000\nEarlier\n"
        )
        segments = parse_cue_blocks(content)
        assert [s.text for s in segments] == ["Earlier", "Later"]


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------

class TestParseJsonTranscript:
    def test_segments_with_seconds(self):
        segments = parse_json_transcript({"segments": [
            {"start": 0.0, "end": 1.5, "text": "Hello"},
            {"start": 1.5, "end": 3.0, "text": " world "},
        ]})
        assert segments == [
            TranscriptSegment(0, 1500, "Hello"),
            TranscriptSegment(1500, 3000, "world"),
        ]

    def test_podcasting_20_format(self):
        segments = parse_json_transcript({"version": "1.0.0", "segments": [
            {"startTime": 0.5, "endTime": 2, "body": "Welcome", "speaker": "Host"},
        ]})
        assert segments == [TranscriptSegment(500, 2000, "Welcome")]

    def test_youtube_json3(self):
        segments = parse_json_transcript({"events": [
            {"tStartMs": 0, "dDurationMs": 1000},
            {"tStartMs": 1000, "dDurationMs": 2000, "segs": [{"utf8": "Hello "}, {"utf8": "world"}]},
            {"tStartMs": 3000, "segs": [{"utf8": "\n"}]},
        ]})
        assert segments == [TranscriptSegment(1000, 3000, "Hello world")]

    def test_duration_key_computes_end(self):
        segments = parse_json_transcript([{"start": "1", "dur": "2.5", "text": "x"}])
        assert segments == [TranscriptSegment(1000, 3500, "x")]

    def test_skips_bad_entries(self):
        segments = parse_json_transcript({"segments": [
            {"start": 0, "text": "ok"},
            {"start": "nope", "text": "bad start"},
            {"start": 1},
            "not a dict",
            {"start": 2, "text": "   "},
        ]})
        assert [s.text for s in segments] == ["ok"]

    def test_unrecognized_shape(self):
        assert parse_json_transcript({"foo": "bar"}) is None
        assert parse_json_transcript("text") is None


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------

class TestParseXmlCaptions:
    def test_timedtext(self):
        xml = ('<?xml version="1.0"?><transcript>'
               '<text start="0.5" dur="1.5">It&amp;#39;s here</text>'
               '<text start="2" dur="1">Next<br/>line</text>'
               '</transcript>')
        segments = parse_xml_captions(xml)
        assert segments == [
            TranscriptSegment(500, 2000, "It's here"),
            TranscriptSegment(2000, 3000, "Next line"),
        ]

    def test_ttml(self):
        xml = ('<tt><body><div>'
               '<p begin="00:00:01.000" end="00:00:02.000">One</p>'
               '<p begin="2.5s" end="3s"><span>Two</span></p>'
               '</div></body></tt>')
        segments = parse_xml_captions(xml)
        assert segments == [
            TranscriptSegment(1000, 2000, "One"),
            TranscriptSegment(2500, 3000, "Two"),
        ]


# ---------------------------------------------------------------------------
# HTML
# ---------------------------------------------------------------------------

class TestExtractTextFromHtml:
    def test_skips_chrome_and_scripts(self):
        html = ("<html><head><script>var x = 1;</script></head><body>"
                "<nav>Menu</nav><p>First paragraph.</p><p>Second &amp; last.</p>"
                "<footer>Copyright</footer></body></html>")
        text = extract_text_from_html(html)
        assert "First paragraph." in text
        assert "Second & last." in text
        assert "Menu" not in text
        assert "var x" not in text
        assert "Copyright" not in text


# ---------------------------------------------------------------------------
# parse_transcript_payload
# ---------------------------------------------------------------------------

class TestParseTranscriptPayload:
    def test_vtt_by_content_type(self):
        parsed = parse_transcript_payload(VTT_SAMPLE, "text/vtt; charset=utf-8")
        assert parsed.source == TranscriptSource.VTT
        assert parsed.text == "Hello there General & Kenobi"
        assert len(parsed.segments) == 2

    def test_srt_by_extension(self):
        parsed = parse_transcript_payload(SRT_SAMPLE, None, "https://x.test/ep1.srt?sig=1")
        assert parsed.source == TranscriptSource.VTT
        assert parsed.text == "First line Second line"

    def test_json_sniffed(self):
        body = json.dumps({"segments": [{"start": 0, "end": 1, "text": "Hi"}]})
        parsed = parse_transcript_payload(body)
        assert parsed.source == TranscriptSource.JSON_TRANSCRIPT
        assert parsed.segments == [TranscriptSegment(0, 1000, "Hi")]

    def test_json_with_no_segments_is_empty_list(self):
        parsed = parse_transcript_payload('{"segments": []}', "application/json")
        assert parsed.text is None
        assert parsed.segments == []

    def test_xml_sniffed(self):
        parsed = parse_transcript_payload('<transcript><text start="1" dur="1">Yo</text></transcript>')
        assert parsed.source == TranscriptSource.TIMEDTEXT
        assert parsed.text == "Yo"

    def test_plain_text_has_null_segments(self):
        parsed = parse_transcript_payload("Just some words.\nMore words.", "text/plain")
        assert parsed.source == TranscriptSource.PLAIN_TEXT
        assert parsed.segments is None
        assert parsed.text == "Just some words.\nMore words."

    def test_html_is_plain_text(self):
        parsed = parse_transcript_payload("<html><body><p>Spoken words</p></body></html>", "text/html")
        assert parsed.source == TranscriptSource.PLAIN_TEXT
        assert parsed.segments is None
        assert parsed.text == "Spoken words"

    def test_invalid_json_falls_back_to_text(self):
        parsed = parse_transcript_payload("{not json", "application/json")
        assert parsed.source == TranscriptSource.PLAIN_TEXT
        assert parsed.text == "{not json"

    @pytest.mark.parametrize("body", [
        "WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nok\n\n1e999 --> 00:00:02.000\nbad\n",
        '{"segments": [{"start": 0, "end": 1, "text": "ok"}, {"start": Infinity, "text": "bad"}]}',
        '{"events": [{"tStartMs": 0, "segs": [{"utf8": "ok"}]}, '
        '{"tStartMs": "1e999", "segs": [{"utf8": "bad"}]}]}',
        '<transcript><text start="0" dur="1">ok</text><text start="inf" dur="1">bad</text></transcript>',
    ], ids=["vtt", "json", "json3", "timedtext"])
    def test_non_finite_timing_skips_cue(self, body):
        parsed = parse_transcript_payload(body)
        assert [s.text for s in parsed.segments] == ["ok"]
        assert parsed.text == "ok"


class TestSegmentsToText:
    def test_plain(self):
        segments = [TranscriptSegment(0, 1000, "Hello"), TranscriptSegment(1000, None, "world")]
        assert segments_to_text(segments) == "Hello world"

    def test_timestamps(self):
        segments = [TranscriptSegment(0, 1000, "Hello"), TranscriptSegment(65_000, None, "later")]
        assert segments_to_text(segments, timestamps=True) == "[0:00] Hello\n[1:05] later"

    def test_empty(self):
        assert segments_to_text([]) is None
