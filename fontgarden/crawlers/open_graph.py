"""
Preview image resolution for projects.

Picks a single representative image for a project: its first uploaded
image, an already stored preview, or the Open Graph / Twitter card image
of the first link found in its description.
"""

import logging
import re
from typing import Optional, Sequence
from urllib.parse import quote

import httpx
from bs4 import BeautifulSoup

from fontgarden.models import Project
from fontgarden.utils.rate_limiter import FetchRateLimiter

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(
    r"https?://(?:www\.)?[-a-zA-Z0-9@:%._+~#=]{1,256}\.[a-zA-Z0-9()]{1,6}\b"
    r"(?:[-a-zA-Z0-9()@:%_+.~#?&/=]*)",
    re.IGNORECASE,
)

REQUEST_HEADERS = {
    "Accept": "text/html",
    "User-Agent": "Mozilla/5.0 (compatible; FontGardenBot/1.0)",
}


def extract_first_url(text: Optional[str]) -> Optional[str]:
    """Return the first http(s) URL in free text, or None."""
    if not text:
        return None

    match = URL_PATTERN.search(text)
    if not match:
        return None
    # Sentence punctuation right after a link is not part of it
    return match.group(0).rstrip(".,;:!?")


def _meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    for attr in ("property", "name"):
        tag = soup.find("meta", attrs={attr: re.compile(rf"^{re.escape(key)}$", re.IGNORECASE)})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def extract_meta_image(html: str) -> Optional[str]:
    """
    Find the og:image of a page, falling back to twitter:image.

    Returns the first matching content attribute, or None.
    """
    if not html:
        return None

    soup = BeautifulSoup(html, "lxml")
    return _meta_content(soup, "og:image") or _meta_content(soup, "twitter:image")


class PreviewImageResolver:
    """
    Resolves preview images, fetching remote pages when needed.

    Pages are fetched directly, or through each configured proxy prefix in
    order (e.g. "https://corsproxy.io/?") until one answers with a 2xx.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        proxy_urls: Optional[Sequence[str]] = None,
        timeout: float = 10.0,
        rate_limiter: Optional[FetchRateLimiter] = None,
    ):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=True, timeout=timeout)
        self.proxy_urls = list(proxy_urls or [])
        self.timeout = timeout
        self.rate_limiter = rate_limiter or FetchRateLimiter()

    async def resolve(
        self,
        images: Sequence[str] = (),
        preview_image_url: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Optional[str]:
        """Best-effort representative image; never raises."""
        if images:
            return images[0]
        if preview_image_url:
            return preview_image_url

        url = extract_first_url(description)
        if not url:
            return None
        return await self.fetch_image_for_url(url)

    async def resolve_for(self, project: Project) -> Optional[str]:
        return await self.resolve(project.images, project.preview_image_url, project.description)

    async def fetch_image_for_url(self, url: str) -> Optional[str]:
        """Fetch a page and return its og:image / twitter:image, or None."""
        if not url or not url.strip():
            return None

        url = url.strip()
        if not url.startswith("http"):
            url = f"https://{url}"

        html = await self._fetch_html(url)
        if html is None:
            return None

        image = extract_meta_image(html)
        if image:
            logger.info(f"Found preview image for {url}: {image}")
        else:
            logger.info(f"No og:image or twitter:image on {url}")
        return image

    def _candidate_urls(self, url: str) -> list[str]:
        if not self.proxy_urls:
            return [url]
        return [f"{proxy}{quote(url, safe='')}" for proxy in self.proxy_urls]

    async def _fetch_html(self, url: str) -> Optional[str]:
        for candidate in self._candidate_urls(url):
            try:
                async with self.rate_limiter.slot(candidate):
                    response = await self.client.get(
                        candidate,
                        headers=REQUEST_HEADERS,
                        timeout=self.timeout,
                    )
            except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
                # UnicodeError covers hosts that fail IDNA encoding
                logger.warning(f"Error fetching {candidate}: {e}")
                continue

            if response.is_success:
                logger.debug(f"Received {len(response.text)} bytes from {candidate}")
                return response.text
            logger.warning(f"Fetch of {candidate} failed with status {response.status_code}")

        logger.error(f"Could not fetch {url} for a preview image")
        return None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
