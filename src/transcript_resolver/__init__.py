"""Transcript resolution for YouTube, podcast, web, and media URLs."""

__version__ = "0.1.0"
