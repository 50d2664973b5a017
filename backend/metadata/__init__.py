"""Metadata package -- TMDB lookups used by title/year based providers."""

from metadata.tmdb_client import TMDBClient

__all__ = ["TMDBClient"]
