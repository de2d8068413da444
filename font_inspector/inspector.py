"""Static font inspection engine.

Fetches a page, gathers its CSS (inline ``<style>``, linked sheets and nested
``@import`` chains), then reports:

- ``fontFaceDeclarations``: every ``@font-face`` rule found;
- ``downloadedFonts``: the font files those rules reference;
- ``activeFonts``: primary families used by rules and inline styles, with the
  number of text-bearing elements they apply to.

No JavaScript is executed, so fonts injected at runtime are not seen.
"""
from __future__ import annotations

import ipaddress
import logging
import re
import socket
from typing import Any
from urllib.parse import urljoin, urlparse

import requests
import tinycss2
from bs4 import BeautifulSoup
from soupsieve import SelectorSyntaxError

from font_inspector import config
from font_inspector.models import ActiveFont, DownloadedFont, FontFaceDeclaration, InspectionResult

logger = logging.getLogger("fontinspector.inspector")

IMPORT_RE = re.compile(r"@import\s+(?:url\(\s*)?[\"']?([^\"')\s;]+)[\"']?\s*\)?", re.I)
PSEUDO_RE = re.compile(
    r"::?(?:before|after|first-letter|first-line|selection|placeholder|marker|hover|focus|"
    r"focus-within|focus-visible|active|visited|link|target)\b",
    re.I,
)

# Not real families: CSS generic families and CSS-wide keywords.
GENERIC = {
    "serif", "sans-serif", "monospace", "cursive", "fantasy", "system-ui",
    "ui-sans-serif", "ui-serif", "ui-monospace", "ui-rounded", "emoji", "math",
    "fangsong", "inherit", "initial", "unset", "revert", "revert-layer", "-apple-system",
}

FORMAT_HINTS = {
    "woff2": "woff2",
    "woff": "woff",
    "truetype": "ttf",
    "opentype": "otf",
    "embedded-opentype": "eot",
    "svg": "svg",
}
FONT_EXTENSIONS = ("woff2", "woff", "ttf", "otf", "eot")

FONT_SOURCES = (
    (("fonts.googleapis.com", "fonts.gstatic.com"), "Google Fonts"),
    (("use.typekit.net", "p.typekit.net"), "Adobe Fonts"),
    (("cloud.typography.com",), "Hoefler&Co"),
    (("fast.fonts.net",), "Monotype"),
)

PREVIEW_LENGTH = 50
MAX_REDIRECTS = 5


class InspectionError(Exception):
    """Inspection failed; the message is safe to show to the user."""


def validate_public_host(url: str) -> str:
    """Return the URL's host, or raise ``InspectionError`` when it is not public."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        raise InspectionError("That URL couldn't be parsed. Try something like https://example.com.")
    if not host:
        raise InspectionError("That URL doesn't include a host. Try something like https://example.com.")
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        try:
            host.encode("idna")
        except UnicodeError:
            raise InspectionError("The domain contains characters we couldn't interpret. Try ASCII/punycode.")
        if "." not in host:
            raise InspectionError("That host doesn't look like a public domain. Please include a full domain.")
        return host
    if not ip.is_global:
        raise InspectionError("That address is private or local and can't be inspected from this server.")
    return host


def friendly_error_message(url: str, exc: Exception, timeout: int = config.HTTP_TIMEOUT_SECONDS) -> str:
    """Map low-level fetch errors to a short message for the queue UI."""
    host = (urlparse(url).hostname or url).strip("/")

    if isinstance(exc, InspectionError):
        return str(exc)
    if isinstance(exc, requests.exceptions.ConnectTimeout):
        return f"{host} didn't respond within {timeout}s."
    if isinstance(exc, requests.exceptions.ReadTimeout):
        return f"{host} took too long to send data."
    if isinstance(exc, requests.exceptions.TooManyRedirects):
        return f"{host} redirected too many times (possible redirect loop)."
    if isinstance(exc, requests.exceptions.SSLError):
        return f"Couldn't establish a secure HTTPS connection to {host} (certificate or TLS issue)."
    if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema, requests.exceptions.InvalidSchema)):
        return "That doesn't look like a valid URL. Include https://, e.g. https://example.com."
    if isinstance(exc, requests.exceptions.HTTPError):
        response = exc.response
        code = getattr(response, "status_code", "?")
        reason = getattr(response, "reason", "") or ""
        status = f"HTTP {code} {reason}".strip()
        if code in (401, 403):
            return f"The site responded with {status}. Access is restricted, so it can't be inspected."
        if code == 404:
            return "The page wasn't found (HTTP 404)."
        return f"The site responded with {status}."
    if isinstance(exc, requests.exceptions.ConnectionError):
        text = str(exc).lower()
        if any(token in text for token in (
            "name or service not known",
            "temporary failure in name resolution",
            "failed to resolve",
            "nodename nor servname provided",
        )):
            return f"DNS lookup failed for {host}. Check the domain name."
        if "connection refused" in text:
            return f"{host} refused the connection."
        return f"Couldn't connect to {host}."
    if isinstance(exc, socket.gaierror):
        return f"DNS lookup failed for {host}."
    if isinstance(exc, UnicodeError):
        return "The URL contains characters we couldn't interpret."
    return f"Unexpected error while fetching {host}: {exc}"


def font_format(url: str, hint: str = "") -> str:
    hint = (hint or "").strip().strip("'\"").lower()
    if hint in FORMAT_HINTS:
        return FORMAT_HINTS[hint]
    path = urlparse(url).path.lower()
    for ext in FONT_EXTENSIONS:
        if path.endswith(f".{ext}"):
            return ext
    return "unknown"


def font_source(url: str) -> str:
    """Provider label for a font file URL."""
    host = (urlparse(url).hostname or "").lower()
    for hosts, label in FONT_SOURCES:
        if host in hosts:
            return label
    if "cdn" in host:
        return "CDN"
    return "self-hosted"


def font_file_name(url: str) -> str:
    return urlparse(url).path.rstrip("/").rsplit("/", 1)[-1] or url


def is_real_family(token: str) -> bool:
    value = token.strip("'\" ").rstrip("!").strip().lower()
    if not value or value.startswith(("var(", "--")):
        return False
    return value not in GENERIC


def family_stack(value: str) -> list[str]:
    """Real family names of a ``font-family`` value, in order."""
    return [
        part.strip().strip("'\"").strip()
        for part in value.split(",")
        if is_real_family(part)
    ]


def _declarations(content) -> list:
    return [
        decl
        for decl in tinycss2.parse_declaration_list(content, skip_whitespace=True, skip_comments=True)
        if decl.type == "declaration"
    ]


def _walk_rules(rules) -> list:
    """Flatten qualified and @font-face rules, descending into @media/@supports/@layer blocks."""
    out = []
    for rule in rules:
        if rule.type == "qualified-rule":
            out.append(rule)
        elif rule.type == "at-rule" and rule.content is not None:
            keyword = rule.lower_at_keyword
            if keyword == "font-face":
                out.append(rule)
            elif keyword in {"media", "supports", "layer", "document"}:
                out.extend(_walk_rules(
                    tinycss2.parse_rule_list(rule.content, skip_comments=True, skip_whitespace=True)
                ))
    return out


def _src_entries(tokens, base_url: str) -> list[tuple[str, str]]:
    """``(absolute url, format hint)`` pairs of an ``src`` descriptor."""
    entries: list[tuple[str, str]] = []
    url, hint = "", ""
    for token in list(tokens) + [None]:
        if token is None or (token.type == "literal" and token.value == ","):
            if url and not url.startswith("data:"):
                entries.append((urljoin(base_url, url), hint))
            url, hint = "", ""
            continue
        if token.type == "url":
            url = token.value
        elif token.type == "function" and token.lower_name == "url":
            strings = [arg.value for arg in token.arguments if arg.type == "string"]
            url = strings[0] if strings else url
        elif token.type == "function" and token.lower_name == "format":
            strings = [arg.value for arg in token.arguments if arg.type in ("string", "ident")]
            hint = strings[0] if strings else hint
    return entries


def parse_stylesheet(css_text: str, base_url: str) -> tuple[list[dict], list[tuple[str, str]], list[tuple[str, list[str]]]]:
    """Parse one CSS text.

    Returns ``(font_faces, font_files, family_rules)`` where ``font_files`` are
    ``(url, format hint)`` pairs and ``family_rules`` are ``(selector, families)``.
    """
    font_faces: list[dict] = []
    font_files: list[tuple[str, str]] = []
    family_rules: list[tuple[str, list[str]]] = []
    rules = tinycss2.parse_stylesheet(css_text, skip_comments=True, skip_whitespace=True)
    for rule in _walk_rules(rules):
        if rule.type == "at-rule":
            face: dict[str, Any] = {"family": "", "source": "", "weight": None, "style": None}
            for decl in _declarations(rule.content):
                value = tinycss2.serialize(decl.value).strip()
                if decl.lower_name == "font-family":
                    face["family"] = value.strip("'\" ")
                elif decl.lower_name == "src":
                    face["source"] = value
                    font_files.extend(_src_entries(decl.value, base_url))
                elif decl.lower_name == "font-weight":
                    face["weight"] = value
                elif decl.lower_name == "font-style":
                    face["style"] = value
            if face["family"] and is_real_family(face["family"]):
                font_faces.append(face)
            continue

        families: list[str] = []
        for decl in _declarations(rule.content):
            if decl.lower_name == "font-family":
                families = family_stack(tinycss2.serialize(decl.value))
        if families:
            family_rules.append((tinycss2.serialize(rule.prelude).strip(), families))
    return font_faces, font_files, family_rules


def _select(soup: BeautifulSoup, selector: str) -> list:
    matched = []
    for part in selector.split(","):
        part = PSEUDO_RE.sub("", part).strip()
        if not part:
            continue
        try:
            matched.extend(soup.select(part))
        except (SelectorSyntaxError, NotImplementedError, ValueError):
            logger.debug("Skipping unsupported selector %r", part)
    return matched


def _active_fonts(soup: BeautifulSoup, family_rules: list[tuple[str, list[str]]]) -> list[dict]:
    counts: dict[str, int] = {}
    elements: dict[str, dict[int, Any]] = {}

    def add(family: str, matched: list) -> None:
        counts[family] = counts.get(family, 0) + 1
        bucket = elements.setdefault(family, {})
        for el in matched:
            if el.get_text(strip=True):
                bucket[id(el)] = el

    for selector, families in family_rules:
        add(families[0], _select(soup, selector))

    for el in soup.select("[style]"):
        for decl in _declarations(el.get("style") or ""):
            if decl.lower_name != "font-family":
                continue
            families = family_stack(tinycss2.serialize(decl.value))
            if families:
                add(families[0], [el])

    fonts = []
    for family, count in counts.items():
        matched = list(elements.get(family, {}).values())
        preview = matched[0].get_text(" ", strip=True)[:PREVIEW_LENGTH] if matched else None
        fonts.append(ActiveFont(
            family=family,
            count=count,
            elementCount=len(matched),
            preview=preview,
        ).model_dump())
    fonts.sort(key=lambda item: (-item["elementCount"], -item["count"], item["family"].lower()))
    return fonts


class FontInspector:
    """Blocking inspector; the queue runs it in a worker thread."""

    def __init__(
        self,
        session: requests.Session | None = None,
        *,
        timeout: int = config.HTTP_TIMEOUT_SECONDS,
        user_agent: str = config.USER_AGENT,
        block_private_hosts: bool = config.BLOCK_PRIVATE_HOSTS,
        max_stylesheets: int = config.MAX_STYLESHEETS,
        fetch_sizes: bool = config.FETCH_FONT_SIZES,
    ):
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": user_agent})
        self.timeout = timeout
        self.block_private_hosts = block_private_hosts
        self.max_stylesheets = max(0, int(max_stylesheets))
        self.fetch_sizes = fetch_sizes

    def _send(self, method: str, url: str) -> requests.Response:
        """Send a GET or HEAD; with private hosts blocked, every redirect hop is checked first."""
        send = getattr(self.session, method)
        if not self.block_private_hosts:
            return send(url, timeout=self.timeout, allow_redirects=True)
        response = None
        for _ in range(MAX_REDIRECTS + 1):
            validate_public_host(url)
            response = send(url, timeout=self.timeout, allow_redirects=False)
            if not response.is_redirect:
                return response
            url = urljoin(url, response.headers["Location"])
        raise requests.TooManyRedirects(f"Exceeded {MAX_REDIRECTS} redirects", response=response)

    def fetch(self, url: str) -> str:
        response = self._send("get", url)
        response.raise_for_status()
        return response.text

    def gather_css(self, html: str, base_url: str) -> list[tuple[str, str]]:
        """``(css_text, sheet_url)`` for inline styles, linked sheets and their imports."""
        soup = BeautifulSoup(html, "html.parser")
        out: list[tuple[str, str]] = []
        seen: set[str] = set()
        fetched = 0

        def follow_imports(css_text: str, sheet_url: str) -> None:
            nonlocal fetched
            stack = [(css_text, sheet_url)]
            while stack:
                text, origin = stack.pop()
                for ref in IMPORT_RE.findall(text):
                    url = urljoin(origin, ref)
                    if url in seen or fetched >= self.max_stylesheets:
                        continue
                    seen.add(url)
                    fetched += 1
                    try:
                        imported = self.fetch(url)
                    except (requests.RequestException, InspectionError) as exc:
                        logger.debug("Skipping unreachable import %s: %s", url, exc)
                        continue
                    out.append((imported, url))
                    stack.append((imported, url))

        for tag in soup.find_all("style"):
            text = tag.string or ""
            out.append((text, base_url))
            follow_imports(text, base_url)

        for link in soup.find_all("link", href=True):
            rels = [r.lower() for r in (link.get("rel") or [])]
            if "stylesheet" not in rels and (link.get("as") or "").lower() != "style":
                continue
            css_url = urljoin(base_url, link["href"])
            if css_url in seen or fetched >= self.max_stylesheets:
                continue
            seen.add(css_url)
            fetched += 1
            try:
                text = self.fetch(css_url)
            except (requests.RequestException, InspectionError) as exc:
                logger.debug("Skipping unreachable stylesheet %s: %s", css_url, exc)
                continue
            out.append((text, css_url))
            follow_imports(text, css_url)
        return out

    def head_size(self, url: str) -> int:
        if not self.fetch_sizes:
            return 0
        try:
            response = self._send("head", url)
        except (requests.RequestException, InspectionError) as exc:
            logger.debug("Size request failed for %s: %s", url, exc)
            return 0
        try:
            return max(0, int(response.headers.get("Content-Length") or 0))
        except ValueError:
            return 0

    def inspect(self, url: str) -> dict[str, Any]:
        """Inspect one page and return an ``InspectionResult`` as a dict."""
        url = (url or "").strip()
        try:
            html = self.fetch(url)
        except InspectionError:
            raise
        except (requests.RequestException, UnicodeError, socket.gaierror) as exc:
            raise InspectionError(friendly_error_message(url, exc, self.timeout)) from exc

        soup = BeautifulSoup(html, "html.parser")
        font_faces: list[dict] = []
        family_rules: list[tuple[str, list[str]]] = []
        fonts: dict[str, DownloadedFont] = {}
        for css_text, sheet_url in self.gather_css(html, url):
            faces, files, rules = parse_stylesheet(css_text, sheet_url)
            font_faces.extend(faces)
            family_rules.extend(rules)
            for file_url, hint in files:
                if file_url in fonts:
                    continue
                fonts[file_url] = DownloadedFont(
                    name=font_file_name(file_url),
                    format=font_format(file_url, hint),
                    size=self.head_size(file_url),
                    url=file_url,
                    source=font_source(file_url),
                )

        result = InspectionResult(
            downloadedFonts=list(fonts.values()),
            fontFaceDeclarations=[FontFaceDeclaration(**face) for face in font_faces],
            activeFonts=[ActiveFont(**item) for item in _active_fonts(soup, family_rules)],
        )
        logger.info(
            "Inspected %s: %d font file(s), %d @font-face rule(s), %d active famil(ies)",
            url,
            len(result.downloadedFonts),
            len(result.fontFaceDeclarations),
            len(result.activeFonts),
        )
        return result.model_dump()
