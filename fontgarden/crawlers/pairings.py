"""
Font Pairing Suggestions - asks an LLM for complementary fonts

Sends a typography prompt to an OpenRouter-compatible chat-completion
endpoint and parses the JSON array of suggestions out of the reply.
Falls back to a curated, category-keyed set whenever the request or the
parsing fails.
"""

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional

import httpx

from fontgarden.models import FontPairingSuggestion, PairingResult

logger = logging.getLogger(__name__)

PAIRING_TIMEOUT_SECONDS = 15.0

PROMPT_TEMPLATE = """You are a typography expert. Suggest 3 Google Font pairings for a {category} font named "{name}". For each suggestion, explain why it pairs well. Respond in JSON format like this:
[
  {{
    "name": "Font Name",
    "category": "sans-serif/serif/display/etc",
    "reason": "Brief explanation why this pairs well"
  }},
  ...
]"""


class PairingRequestError(Exception):
    """The pairing API could not be reached or answered with an error."""


# Curated suggestions used when the API is unavailable
FALLBACK_SUGGESTIONS = {
    "sans-serif": [
        {"name": "Playfair Display", "category": "serif", "reason": "The classic serif structure of Playfair Display creates a beautiful contrast with sans-serif fonts, giving designs a sophisticated editorial look."},
        {"name": "Lora", "category": "serif", "reason": "Lora has a balanced, modern serif design that pairs well with clean sans-serif fonts for readable and elegant typographic hierarchies."},
        {"name": "Nunito", "category": "sans-serif", "reason": "Nunito's rounded terminals provide a friendlier alternative while maintaining the clean lines that complement other sans-serif fonts."},
    ],
    "serif": [
        {"name": "Montserrat", "category": "sans-serif", "reason": "Montserrat's geometric structure creates a strong contrast with serif fonts, resulting in a balanced modern-classic pairing."},
        {"name": "Open Sans", "category": "sans-serif", "reason": "Open Sans has excellent readability and a neutral appearance that lets serif fonts shine while maintaining clear hierarchical structure."},
        {"name": "Roboto", "category": "sans-serif", "reason": "Roboto's clean lines and optimized legibility make it an ideal companion for more decorative serif typefaces."},
    ],
    "display": [
        {"name": "Poppins", "category": "sans-serif", "reason": "Poppins has a geometric style that grounds more expressive display fonts while maintaining a contemporary feel."},
        {"name": "Raleway", "category": "sans-serif", "reason": "Raleway's elegant thin weights and distinctive 'w' provide subtle character while letting display fonts take center stage."},
        {"name": "Work Sans", "category": "sans-serif", "reason": "Work Sans offers excellent readability for body text when paired with more attention-grabbing display typefaces."},
    ],
    "monospace": [
        {"name": "Source Sans Pro", "category": "sans-serif", "reason": "Source Sans Pro's clean design complements the technical feel of monospace fonts while improving readability for longer text."},
        {"name": "Merriweather", "category": "serif", "reason": "Merriweather adds warmth and contrast to the technical precision of monospace fonts with its high x-height and excellent readability."},
        {"name": "Nunito Sans", "category": "sans-serif", "reason": "Nunito Sans offers a friendly counterpoint to the more mechanical structure of monospace fonts."},
    ],
}

DEFAULT_FALLBACK_CATEGORY = "sans-serif"


def get_fallback_suggestions(category: str) -> List[FontPairingSuggestion]:
    """Curated suggestions for a font category (sans-serif set if unknown)."""
    data = FALLBACK_SUGGESTIONS.get(
        (category or "").lower(), FALLBACK_SUGGESTIONS[DEFAULT_FALLBACK_CATEGORY]
    )
    return [FontPairingSuggestion(**s) for s in data]


def extract_json_array(content: str) -> Optional[str]:
    """
    Return the first balanced [...] substring of content, or None.

    Brackets inside JSON strings do not count towards the balance.
    """
    start = content.find("[")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(content)):
            ch = content[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
                if depth == 0:
                    return content[start:i + 1]
        start = content.find("[", start + 1)
    return None


def parse_suggestions(content: str) -> List[FontPairingSuggestion]:
    """
    Parse model output into suggestions.

    Accepts a bare JSON array or one wrapped in prose. Entries missing a
    name, category or reason are dropped.

    Raises:
        ValueError: if no valid suggestion can be read from content
    """
    try:
        parsed: Any = json.loads(content)
    except (TypeError, json.JSONDecodeError):
        array_text = extract_json_array(content or "")
        if array_text is None:
            raise ValueError("No JSON array found in response")
        try:
            parsed = json.loads(array_text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Malformed JSON array in response: {e}") from e

    if not isinstance(parsed, list):
        raise ValueError("Response is not a JSON array")

    suggestions = [
        FontPairingSuggestion(
            name=str(item["name"]),
            category=str(item["category"]),
            reason=str(item["reason"]),
        )
        for item in parsed
        if isinstance(item, dict) and item.get("name") and item.get("category") and item.get("reason")
    ]

    if not suggestions:
        raise ValueError("No valid font pairing suggestions found in the response")
    return suggestions


class PairingClient:
    """Client for LLM font pairing suggestions with static fallbacks."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: str = "https://openrouter.ai/api/v1/chat/completions",
        model: str = "google/gemini-2.5-pro-exp-03-25:free",
        timeout: float = PAIRING_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
        api_key_loader: Optional[Callable[[], Awaitable[Optional[str]]]] = None,
    ):
        """
        Initialize the pairing client.

        Args:
            api_key: Bearer token for the completion API
            api_url: Chat-completion endpoint
            model: Model identifier sent with each request
            timeout: Seconds before the in-flight request is abandoned
            client: Optional shared httpx client
            api_key_loader: Async callable used when api_key is not set,
                e.g. a lookup in the api_keys table
        """
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout
        self.api_key_loader = api_key_loader
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient()

    async def _get_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        if self.api_key_loader:
            try:
                key = await self.api_key_loader()
            except Exception as e:
                raise PairingRequestError(f"Error fetching API key: {e}") from e
            if key:
                return key
        raise PairingRequestError("Unable to access OpenRouter API key")

    async def _request_completion(self, font_name: str, font_category: str) -> str:
        api_key = await self._get_api_key()

        response = await self.client.post(
            self.api_url,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
                "X-Title": "Font Garden Font Pairing",
            },
            json={
                "model": self.model,
                "messages": [
                    {
                        "role": "user",
                        "content": PROMPT_TEMPLATE.format(name=font_name, category=font_category),
                    }
                ],
                "max_tokens": 600,
                "temperature": 0.7,
            },
        )

        if response.status_code == 402:
            raise PairingRequestError("OpenRouter API credits depleted or payment required")
        if response.status_code == 403:
            raise PairingRequestError("OpenRouter API access forbidden, check API key permissions")
        if response.status_code == 429:
            raise PairingRequestError("OpenRouter API rate limit exceeded")
        if not response.is_success:
            raise PairingRequestError(f"API request failed with status: {response.status_code}")

        data = response.json()
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise PairingRequestError("API response has no message content") from e

    async def fetch_pairings(self, font_name: str, font_category: str) -> PairingResult:
        """
        Get three complementary fonts for a font.

        Never raises: any failure returns the fallback set for the category
        with fallback_used=True and the error message.
        """
        logger.info(f"Fetching font pairings for {font_name} ({font_category})")

        try:
            content = await asyncio.wait_for(
                self._request_completion(font_name, font_category),
                timeout=self.timeout,
            )
            suggestions = parse_suggestions(content)

        except asyncio.TimeoutError:
            error = f"Request timed out after {self.timeout:.0f} seconds"
        except (PairingRequestError, ValueError) as e:
            error = str(e)
        except httpx.HTTPError as e:
            error = f"Network error: {e}"
        else:
            logger.info(f"Received {len(suggestions)} pairings for {font_name}")
            return PairingResult(
                font_name=font_name,
                font_category=font_category,
                suggestions=suggestions,
            )

        logger.error(f"Error fetching font pairings for {font_name}: {error}")
        logger.info(f"Using fallback suggestions for {font_category} category")
        return PairingResult(
            font_name=font_name,
            font_category=font_category,
            suggestions=get_fallback_suggestions(font_category),
            fallback_used=True,
            error=error,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
