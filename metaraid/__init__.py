"""Crawl Spotify artist catalogues into Redis and export the track metadata to SQLite."""

__version__ = "0.1.0"

__all__ = ["__version__"]