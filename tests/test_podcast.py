"""Tests for the podcast provider — feeds, JSON-LD episodes, and enclosure transcription."""

import json
from unittest.mock import patch

import pytest

from conftest import make_http_response, make_session
from transcript_resolver.models import ProviderContext, TranscriptSource, WhisperTranscriptionResult
from transcript_resolver.progress import MediaDownloadDone, MediaDownloadProgress, MediaDownloadStart, WhisperStart
from transcript_resolver.providers.base import ProviderFetchOptions
from transcript_resolver.providers.podcast import (
    PodcastProvider,
    TranscriptLink,
    is_feed,
    parse_feed_episode,
    parse_json_ld_episode,
    rank_transcript_links,
)

FEED_URL = "https://feeds.test/show.rss"

FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:podcast="https://podcastindex.org/namespace/1.0">
<channel><title>The Show</title>
<item>
  <title>Episode 2</title>
  <podcast:transcript url="https://cdn.test/ep2.txt" type="text/plain" />
  <podcast:transcript url="https://cdn.test/ep2.vtt" type="text/vtt" />
  <podcast:transcript url="https://cdn.test/ep2.json" type="application/json" />
  <enclosure url="https://cdn.test/ep2.mp3" length="6" type="audio/mpeg" />
</item>
<item>
  <title>Episode 1</title>
  <enclosure url="https://cdn.test/ep1.mp3" length="6" type="audio/mpeg" />
</item>
</channel></rss>"""

FEED_NO_TRANSCRIPT = """<rss version="2.0"><channel>
<item><title>Episode 2</title><enclosure url="https://cdn.test/ep2.mp3" type="audio/mpeg"/></item>
</channel></rss>"""

VTT = "WEBVTT\n\n00:00:00.000 --> 00:00:02.000\nWelcome back\n\n00:00:02.000 --> 00:00:04.000\nto the show\n"

JSON_LD_PAGE = """<html><head>
<script type="application/ld+json">
{"@context": "https://schema.org", "@graph": [
  {"@type": "WebPage", "name": "Episode page"},
  {"@type": "PodcastEpisode", "name": "Ep 9",
   "transcript": "Everything we said, inline.",
   "associatedMedia": {"@type": "MediaObject", "contentUrl": "/media/ep9.mp3", "encodingFormat": "audio/mpeg"}}
]}
</script></head><body>Episode 9</body></html>"""


def _options(config, session, **kwargs):
    return ProviderFetchOptions(config=config, session=session, **kwargs)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestFeedParsing:
    def test_is_feed(self):
        assert is_feed(FEED)
        assert is_feed('<feed xmlns="http://www.w3.org/2005/Atom"><entry></entry></feed>')
        assert not is_feed("<html><body>hi</body></html>")
        assert not is_feed(None)

    def test_first_item_only(self):
        episode = parse_feed_episode(FEED, FEED_URL)
        assert episode.audio_url == "https://cdn.test/ep2.mp3"
        assert episode.audio_type == "audio/mpeg"

    def test_transcript_links_ranked(self):
        episode = parse_feed_episode(FEED, FEED_URL)
        assert [link.url for link in episode.transcript_links] == [
            "https://cdn.test/ep2.json", "https://cdn.test/ep2.vtt", "https://cdn.test/ep2.txt",
        ]

    def test_atom_enclosure_link(self):
        atom = ('<feed xmlns="http://www.w3.org/2005/Atom"><entry><title>x</title>'
                '<link rel="enclosure" href="/audio/x.m4a" type="audio/mp4"/></entry></feed>')
        episode = parse_feed_episode(atom, "https://site.test/feed.xml")
        assert episode.audio_url == "https://site.test/audio/x.m4a"
        assert episode.audio_type == "audio/mp4"

    def test_no_items(self):
        assert parse_feed_episode("<rss><channel></channel></rss>") is None

    def test_rank_keeps_document_order_for_ties(self):
        links = [TranscriptLink("https://a.test/one.html"), TranscriptLink("https://a.test/x.srt"),
                 TranscriptLink("https://a.test/two.html")]
        assert [l.url for l in rank_transcript_links(links)] == [
            "https://a.test/x.srt", "https://a.test/one.html", "https://a.test/two.html"]


class TestJsonLd:
    def test_inline_transcript_and_audio(self):
        episode = parse_json_ld_episode(JSON_LD_PAGE, "https://site.test/episodes/9")
        assert episode.inline_transcript == "Everything we said, inline."
        assert episode.transcript_links == []
        assert episode.audio_url == "https://site.test/media/ep9.mp3"
        assert episode.audio_type == "audio/mpeg"

    def test_transcript_url(self):
        page = ('<script type="application/ld+json">{"@type": "PodcastEpisode", '
                '"transcript": "https://site.test/t/9.vtt"}</script>')
        episode = parse_json_ld_episode(page)
        assert [l.url for l in episode.transcript_links] == ["https://site.test/t/9.vtt"]
        assert episode.inline_transcript is None

    def test_ignores_other_types_and_bad_json(self):
        page = ('<script type="application/ld+json">{not json</script>'
                '<script type="application/ld+json">{"@type": "Article"}</script>')
        assert parse_json_ld_episode(page) is None


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------

class TestCanHandle:
    @pytest.mark.parametrize("url,html", [
        ("https://podcasts.apple.com/us/podcast/x/id1", None),
        ("https://show.libsyn.com/episode-1", None),
        ("https://example.com/feed", None),
        ("https://example.com/podcast.xml", None),
        ("https://example.com/latest", FEED),
        ("https://example.com/episodes/9", JSON_LD_PAGE),
    ])
    def test_claims(self, url, html):
        assert PodcastProvider().can_handle(ProviderContext(url=url, html=html))

    def test_plain_article(self):
        context = ProviderContext(url="https://example.com/blog/post", html="<html><p>hi</p></html>")
        assert not PodcastProvider().can_handle(context)


class TestPublishedTranscript:
    def test_prefers_json_transcript(self, config):
        body = {"version": "1.0.0", "segments": [
            {"startTime": 0, "endTime": 2, "body": "Hello"},
            {"startTime": 2, "endTime": 4, "body": "listeners"},
        ]}
        session = make_session({"ep2.json": make_http_response(json_data=body)})
        result = PodcastProvider().fetch_transcript(
            ProviderContext(url=FEED_URL, html=FEED), _options(config, session))

        assert result.source == TranscriptSource.PODCAST_TRANSCRIPT
        assert result.text == "Hello listeners"
        assert len(result.segments) == 2
        assert result.attempted_providers == [TranscriptSource.PODCAST_TRANSCRIPT]
        assert result.metadata == {"provider": "podcast", "transcriptUrl": "https://cdn.test/ep2.json",
                                   "format": "json-transcript"}

    def test_falls_through_failed_links(self, config):
        session = make_session({
            "ep2.json": make_http_response(status=404),
            "ep2.vtt": make_http_response(text=VTT),
        })
        result = PodcastProvider().fetch_transcript(
            ProviderContext(url=FEED_URL, html=FEED), _options(config, session))

        assert result.text == "Welcome back to the show"
        assert result.metadata["transcriptUrl"] == "https://cdn.test/ep2.vtt"
        assert "podcast transcript fetch failed (https://cdn.test/ep2.json)" in result.notes

    def test_fetches_feed_when_html_missing(self, config):
        session = make_session({
            "show.rss": make_http_response(text=FEED),
            "ep2.json": make_http_response(json_data={"segments": [{"start": 0, "text": "fetched"}]}),
        })
        result = PodcastProvider().fetch_transcript(ProviderContext(url=FEED_URL), _options(config, session))
        assert result.text == "fetched"

    def test_inline_json_ld_transcript(self, config):
        session = make_session({})
        result = PodcastProvider().fetch_transcript(
            ProviderContext(url="https://site.test/episodes/9", html=JSON_LD_PAGE), _options(config, session))

        assert result.source == TranscriptSource.PODCAST_TRANSCRIPT
        assert result.text == "Everything we said, inline."
        assert result.segments is None
        session.get.assert_not_called()


class TestEnclosureTranscription:
    @patch("transcript_resolver.providers.media.probe_media_duration_seconds", return_value=95.0)
    @patch("transcript_resolver.providers.media.transcribe_media_file_with_whisper")
    def test_downloads_and_transcribes(self, mock_whisper, mock_probe, config):
        mock_whisper.return_value = WhisperTranscriptionResult(
            text="whispered episode", provider="openai", notes=["from whisper"])
        session = make_session({"ep2.mp3": make_http_response(
            chunks=[b"abc", b"def"], headers={"content-length": "6", "content-type": "audio/mpeg"})})
        events = []

        result = PodcastProvider().fetch_transcript(
            ProviderContext(url=FEED_URL, html=FEED_NO_TRANSCRIPT),
            _options(config, session, progress=events.append))

        assert result.source == TranscriptSource.WHISPER
        assert result.text == "whispered episode"
        assert result.attempted_providers == [TranscriptSource.WHISPER]
        assert result.metadata == {"provider": "podcast", "mediaUrl": "https://cdn.test/ep2.mp3",
                                   "transcriptionProvider": "openai"}
        assert result.notes == "from whisper"

        path, media_type = mock_whisper.call_args[0][:2]
        assert media_type == "audio/mpeg"
        assert path.suffix == ".mp3"
        assert not path.exists()
        assert mock_whisper.call_args[1]["total_duration_seconds"] == 95.0

        assert [type(e) for e in events] == [
            MediaDownloadStart, MediaDownloadProgress, MediaDownloadProgress, MediaDownloadDone, WhisperStart]
        assert events[2].downloaded_bytes == 6
        assert events[0].url == FEED_URL
        assert events[0].service == "podcast"

    def test_oversized_enclosure_is_noted(self, config):
        session = make_session({"ep2.mp3": make_http_response(
            headers={"content-length": str(600 * 1024 * 1024)})})
        result = PodcastProvider().fetch_transcript(
            ProviderContext(url=FEED_URL, html=FEED_NO_TRANSCRIPT), _options(config, session))

        assert result.source == TranscriptSource.UNAVAILABLE
        assert result.attempted_providers == [TranscriptSource.WHISPER, TranscriptSource.UNAVAILABLE]
        assert "whisper failed: Remote media is too large (600MB)" in result.notes

    def test_no_providers_is_noted(self, config):
        session = make_session({"ep2.mp3": make_http_response(chunks=[b"abc"])})
        with patch("transcript_resolver.providers.media.probe_media_duration_seconds", return_value=None):
            result = PodcastProvider().fetch_transcript(
                ProviderContext(url=FEED_URL, html=FEED_NO_TRANSCRIPT), _options(config, session))
        assert result.source == TranscriptSource.UNAVAILABLE
        assert "No transcription providers available" in result.notes
