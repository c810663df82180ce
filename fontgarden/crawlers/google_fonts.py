"""
Stylesheet helpers for catalog fonts.

Hosted fonts load through the Google Fonts css2 API; custom fonts get an
@font-face rule pointing at their uploaded file.
"""

import re
from typing import List, Optional

from fontgarden.models import Font, FontFormat

_WHITESPACE = re.compile(r"\s+")


def generate_google_fonts_url(fonts: List[str], weights: Optional[List[str]] = None) -> str:
    """
    Generate a Google Fonts embed URL.

    Args:
        fonts: List of font family names
        weights: List of weights to include (default: 400, 700)

    Returns:
        Google Fonts CSS URL
    """
    if not fonts:
        return ""

    weights = weights or ["400", "700"]
    weights_str = ";".join(weights)

    # Format: family=Font+Name:wght@400;700
    families = [f"family={_WHITESPACE.sub('+', f.strip())}:wght@{weights_str}" for f in fonts]

    return f"https://fonts.googleapis.com/css2?{'&'.join(families)}&display=swap"


def custom_family_name(font: Font) -> str:
    """CSS family name registered for a custom font (its name without spaces)."""
    return _WHITESPACE.sub("", font.name)


def font_face_css(font: Font) -> str:
    """@font-face rule for a custom font, or "" if it has no uploaded file."""
    if not font.is_custom or not font.font_file_path:
        return ""

    font_format = (font.font_format or FontFormat.TRUETYPE).value
    return (
        "@font-face {\n"
        f'  font-family: "{custom_family_name(font)}";\n'
        f'  src: url("{font.font_file_path}") format("{font_format}");\n'
        "  font-weight: normal;\n"
        "  font-style: normal;\n"
        "  font-display: swap;\n"
        "}\n"
    )


def font_stack(font: Font) -> str:
    """CSS font-family value with the category as generic fallback."""
    if font.is_custom:
        if not font.font_file_path:
            return ""
        return f'"{custom_family_name(font)}", {font.category.value}'
    if not font.font_family:
        return ""
    return f'"{font.font_family}", {font.category.value}'


def stylesheet_url(font: Font) -> Optional[str]:
    """css2 URL for a hosted font; None for custom fonts."""
    if font.is_custom or not font.font_family:
        return None
    return generate_google_fonts_url([font.font_family])
