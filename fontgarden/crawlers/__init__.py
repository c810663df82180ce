"""Outbound fetchers: preview images, pairing suggestions, font stylesheets."""

from .open_graph import PreviewImageResolver, extract_first_url, extract_meta_image
from .pairings import PairingClient, get_fallback_suggestions, parse_suggestions

__all__ = [
    "PreviewImageResolver",
    "extract_first_url",
    "extract_meta_image",
    "PairingClient",
    "get_fallback_suggestions",
    "parse_suggestions",
]
