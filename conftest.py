"""Shared test fixtures and utilities."""

import json
from unittest.mock import MagicMock

import pytest

from transcript_resolver.shared import TranscriptConfig


def make_http_response(text="", status=200, json_data=None, headers=None, chunks=None):
    """Build a mock requests.Response."""
    resp = MagicMock()
    if json_data is not None:
        text = json.dumps(json_data)
    resp.text = text
    resp.status_code = status
    resp.ok = 200 <= status < 400
    resp.headers = headers or {}
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = lambda: json.loads(text)
    if status >= 400:
        resp.raise_for_status.side_effect = Exception(f"{status} Error")
    resp.iter_content.return_value = chunks if chunks is not None else [text.encode()]
    return resp


def make_session(routes):
    """Mock session whose get/post answer by URL substring.

    ``routes`` maps a substring to a response (or an exception to raise). Any
    unmatched URL fails the test.
    """
    session = MagicMock()

    def handler(url, *args, **kwargs):
        for fragment, response in routes.items():
            if fragment in url:
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"Unexpected HTTP call: {url}")

    session.get.side_effect = handler
    session.post.side_effect = handler
    return session


def make_openai_response(text="hello"):
    """Build a mock OpenAI transcription response."""
    resp = MagicMock()
    resp.text = text
    return resp


@pytest.fixture
def config(tmp_path):
    """Config with no credentials and local whisper.cpp disabled."""
    return TranscriptConfig(home=str(tmp_path), disable_local_whisper_cpp=True)
