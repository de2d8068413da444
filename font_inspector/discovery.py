"""Candidate page discovery for multi-page projects."""
from __future__ import annotations

import logging
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

import requests
from bs4 import BeautifulSoup

from font_inspector import config
from font_inspector.inspector import InspectionError, validate_public_host
from font_inspector.models import DiscoveredPage

logger = logging.getLogger("fontinspector.discovery")

TRACKING_PARAMS = {
    "utm_source", "utm_medium", "utm_campaign", "utm_term", "utm_content",
    "fbclid", "gclid", "ref", "source", "campaign",
    "sessionid", "sid", "_ga", "_gid", "timestamp",
}
SITEMAP_PATHS = ("/sitemap.xml", "/sitemap_index.xml", "/sitemaps.xml")
SITEMAP_LIMIT = 50
LOC_RE = re.compile(r"<loc>(.*?)</loc>", re.I | re.S)

# Links beyond this many candidates are ignored.
MAX_CANDIDATES = 100

HIGH_PRIORITY_KEYWORDS = ("about", "contact", "service", "product", "home", "main")
MEDIUM_PRIORITY_KEYWORDS = ("blog", "news", "team", "portfolio", "gallery")
LOW_PRIORITY_KEYWORDS = ("login", "register", "admin", "api", "download", "pdf")

COMMON_PATHS = {
    "/about": 70,
    "/about-us": 70,
    "/contact": 65,
    "/contact-us": 65,
    "/services": 60,
    "/products": 60,
    "/portfolio": 55,
    "/team": 50,
    "/blog": 45,
    "/news": 45,
    "/careers": 40,
    "/support": 40,
    "/help": 40,
    "/faq": 35,
    "/pricing": 35,
    "/features": 35,
}


def normalize_page_url(url: str) -> str:
    """Add a scheme, drop the fragment and tracking params, trim the trailing slash."""
    value = (url or "").strip()
    if not value.startswith(("http://", "https://")):
        value = f"https://{value}"
    parts = urlsplit(value)
    query = urlencode(
        [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    )
    path = parts.path or "/"
    normalized = urlunsplit((parts.scheme, parts.netloc.lower(), path, query, ""))
    if normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def link_priority(url: str, text: str) -> float:
    url_lower = url.lower()
    text_lower = (text or "").lower()
    priority = 50
    for keyword in HIGH_PRIORITY_KEYWORDS:
        if keyword in url_lower or keyword in text_lower:
            priority += 20
    for keyword in MEDIUM_PRIORITY_KEYWORDS:
        if keyword in url_lower or keyword in text_lower:
            priority += 10
    for keyword in LOW_PRIORITY_KEYWORDS:
        if keyword in url_lower or keyword in text_lower:
            priority -= 20
    return max(priority, 10)


def parse_sitemap(xml_text: str, origin: str) -> list[str]:
    urls = [match.strip() for match in LOC_RE.findall(xml_text or "")]
    return [u for u in urls if u.startswith(origin)][:SITEMAP_LIMIT]


class PageDiscovery:
    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        user_agent: str = config.USER_AGENT,
        block_private_hosts: bool = config.BLOCK_PRIVATE_HOSTS,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        self.timeout = timeout
        self.block_private_hosts = block_private_hosts

    def discover(self, base_url: str, max_pages: int = config.DISCOVERY_MAX_PAGES) -> list[dict]:
        """Ranked candidate pages of a site, the given URL first.

        A URL that can't be parsed, or a private host while those are blocked,
        yields the URL alone without any request being made.
        """
        max_pages = max(1, int(max_pages))
        try:
            start = normalize_page_url(base_url)
            parts = urlsplit(start)
            if self.block_private_hosts:
                validate_public_host(start)
        except (ValueError, InspectionError) as exc:
            logger.warning("Not discovering pages for %r: %s", base_url, exc)
            original = (base_url or "").strip()
            return [DiscoveredPage(url=original, priority=100, source="original").model_dump()]
        origin = f"{parts.scheme}://{parts.netloc}"

        pages: dict[str, DiscoveredPage] = {
            start: DiscoveredPage(url=start, priority=100, source="original"),
        }
        logger.info("Discovering pages for %s (max %d)", start, max_pages)
        self._from_sitemap(origin, pages, max_pages)
        self._from_main_page(start, parts.hostname or "", pages)
        self._from_common_paths(origin, pages, max_pages)

        ranked = sorted(pages.values(), key=lambda page: page.priority, reverse=True)[:max_pages]
        logger.info("Discovery for %s found %d page(s), returning %d", start, len(pages), len(ranked))
        return [page.model_dump() for page in ranked]

    def _from_sitemap(self, origin: str, pages: dict[str, DiscoveredPage], max_pages: int) -> None:
        for path in SITEMAP_PATHS:
            try:
                response = self.session.get(f"{origin}{path}", timeout=self.timeout)
            except requests.RequestException as exc:
                logger.debug("Sitemap %s unavailable: %s", path, exc)
                continue
            if not response.ok:
                continue
            for index, url in enumerate(parse_sitemap(response.text, origin)):
                try:
                    normalized = normalize_page_url(url)
                except ValueError:
                    continue
                if len(pages) < max_pages and normalized not in pages:
                    pages[normalized] = DiscoveredPage(url=normalized, priority=80 - index, source="sitemap")
            return

    def _from_main_page(self, start: str, host: str, pages: dict[str, DiscoveredPage]) -> None:
        try:
            response = self.session.get(start, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.info("Main page crawl failed for %s: %s", start, exc)
            return

        soup = BeautifulSoup(response.text, "html.parser")
        if soup.title and soup.title.string:
            pages[start].title = soup.title.string.strip()

        page_url = getattr(response, "url", "") or start
        index = 0
        for anchor in soup.find_all("a", href=True):
            href = (anchor.get("href") or "").strip()
            if not href or href.startswith("#"):
                continue
            try:
                absolute = urljoin(page_url, href)
                parts = urlsplit(absolute)
                if parts.scheme not in ("http", "https") or (parts.hostname or "") != host:
                    continue
                normalized = normalize_page_url(absolute)
            except ValueError:
                logger.debug("Ignoring malformed link %r on %s", href, start)
                continue
            text = anchor.get_text(" ", strip=True)
            if normalized not in pages and len(pages) < MAX_CANDIDATES:
                pages[normalized] = DiscoveredPage(
                    url=normalized,
                    title=text or None,
                    priority=link_priority(normalized, text) - index * 0.1,
                    source="internal-link",
                )
            index += 1

    def _from_common_paths(self, origin: str, pages: dict[str, DiscoveredPage], max_pages: int) -> None:
        for path, priority in COMMON_PATHS.items():
            if len(pages) >= max_pages:
                return
            url = normalize_page_url(f"{origin}{path}")
            if url in pages:
                continue
            try:
                response = self.session.head(url, timeout=min(self.timeout, 5), allow_redirects=False)
            except requests.RequestException:
                continue
            if response.status_code == 200:
                pages[url] = DiscoveredPage(url=url, priority=priority, source="common-path")


def discover_pages(
    base_url: str,
    max_pages: int = config.DISCOVERY_MAX_PAGES,
    session: requests.Session | None = None,
    *,
    block_private_hosts: bool = config.BLOCK_PRIVATE_HOSTS,
) -> list[dict]:
    return PageDiscovery(session, block_private_hosts=block_private_hosts).discover(base_url, max_pages)
