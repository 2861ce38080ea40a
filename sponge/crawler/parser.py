"""
HTML parser extracting the link and image targets of a document.
"""

import logging
from dataclasses import dataclass, field
from typing import List
from urllib.parse import urljoin

from bs4 import BeautifulSoup


SKIPPED_SCHEMES = ('javascript:', 'mailto:', 'tel:', 'data:')


@dataclass
class ParsedContent:
    """Absolute link and image targets found in a document."""
    url: str
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)

    @property
    def targets(self) -> List[str]:
        return self.links + self.images


class ContentParser:
    """
    Extracts absolute ``a[href]`` and ``img[src]`` targets from HTML.
    """

    def __init__(self, features: str = 'lxml'):
        self.features = features
        self.logger = logging.getLogger(__name__)

    def parse(self, url: str, html_content: str) -> ParsedContent:
        """
        Parse HTML content and extract link and image targets.

        Args:
            url: Base URL of the document, used to resolve relative targets
            html_content: Raw HTML content

        Returns:
            ParsedContent with absolute target strings
        """
        parsed_content = ParsedContent(url=url)

        if not html_content or not html_content.strip():
            return parsed_content

        try:
            soup = BeautifulSoup(html_content, self.features)
            base_url = self._base_url(soup, url)

            parsed_content.links = self._extract(soup, 'a', 'href', base_url)
            parsed_content.images = self._extract(soup, 'img', 'src', base_url)

            self.logger.debug(f"Parsed {url}: {len(parsed_content.links)} links, "
                              f"{len(parsed_content.images)} images")

        except Exception as e:
            self.logger.warning(f"Error parsing content from {url}: {e}")

        return parsed_content

    def _base_url(self, soup: BeautifulSoup, url: str) -> str:
        """Honour a <base href> element when the document declares one."""
        base = soup.find('base', href=True)
        if base and base['href'].strip():
            return urljoin(url, base['href'].strip())
        return url

    def _extract(self, soup: BeautifulSoup, tag: str, attribute: str, base_url: str) -> List[str]:
        targets = []
        seen = set()

        for element in soup.find_all(tag, attrs={attribute: True}):
            value = element[attribute].strip()
            if not value or value.startswith('#') or value.lower().startswith(SKIPPED_SCHEMES):
                continue

            absolute_url = urljoin(base_url, value)
            if absolute_url not in seen:
                seen.add(absolute_url)
                targets.append(absolute_url)

        return targets
