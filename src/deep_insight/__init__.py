"""Generate insights from markdown notes with Claude or GPT."""

__version__ = "0.1.0"
