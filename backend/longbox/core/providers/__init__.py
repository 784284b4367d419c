"""Metadata source providers."""

from .base import MetadataProvider
from .comicvine import ComicVineProvider

__all__ = ["ComicVineProvider", "MetadataProvider"]
