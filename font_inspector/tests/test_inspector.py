import unittest

import requests

from font_inspector.inspector import (
    FontInspector,
    InspectionError,
    family_stack,
    font_format,
    font_source,
    friendly_error_message,
    parse_stylesheet,
    validate_public_host,
)


class _FakeResponse:
    def __init__(self, text: str = "", status_code: int = 200, headers: dict | None = None, reason: str = "OK"):
        self.text = text
        self.status_code = status_code
        self.headers = headers or {}
        self.reason = reason
        self.is_redirect = 300 <= status_code < 400 and "Location" in self.headers

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} {self.reason}", response=self)


class _FakeSession:
    def __init__(self, pages: dict[str, object], sizes: dict[str, int] | None = None):
        self.pages = pages
        self.sizes = sizes or {}
        self.headers: dict[str, str] = {}
        self.requested: list[str] = []
        self.head_requested: list[str] = []

    def get(self, url: str, timeout: int = 0, allow_redirects: bool = True):
        self.requested.append(url)
        page = self.pages.get(url)
        if isinstance(page, Exception):
            raise page
        if page is None:
            return _FakeResponse(status_code=404, reason="Not Found")
        if isinstance(page, _FakeResponse):
            return page
        return _FakeResponse(text=str(page))

    def head(self, url: str, timeout: int = 0, allow_redirects: bool = True):
        self.head_requested.append(url)
        return _FakeResponse(headers={"Content-Length": str(self.sizes.get(url, ""))})


PAGE = """
<html>
<head>
  <link rel="stylesheet" href="/css/site.css">
  <link rel="stylesheet" href="https://fonts.googleapis.com/css2?family=Roboto">
  <style>
    h1, h2::before { font-family: "Playfair Display", Georgia, serif; }
  </style>
</head>
<body>
  <h1>Quarterly results</h1>
  <p>First paragraph of body copy.</p>
  <p>Second paragraph.</p>
  <p></p>
  <span style="font-family: 'Roboto', sans-serif">Inline styled text</span>
</body>
</html>
"""

SITE_CSS = """
@import url("/css/fonts.css");
body, p { font-family: Inter, system-ui, sans-serif; }
code { font-family: monospace; }
@media (min-width: 600px) {
  .hero { font-family: var(--hero-font), serif; }
}
"""

FONTS_CSS = """
@font-face {
  font-family: "Inter";
  src: url("../fonts/inter.woff2") format("woff2"), url(../fonts/inter.woff) format("woff");
  font-weight: 400;
  font-style: normal;
}
@font-face {
  font-family: Playfair Display;
  src: url(data:font/woff2;base64,AAAA) format("woff2"), url(/fonts/playfair.ttf);
}
"""

GOOGLE_CSS = """
@font-face {
  font-family: 'Roboto';
  src: url(https://fonts.gstatic.com/s/roboto/v30/KFOmCnqEu92Fr1Mu4mxK.woff2) format('woff2');
}
"""


class StylesheetParsingTests(unittest.TestCase):
    def test_parse_font_faces_and_sources(self) -> None:
        faces, files, rules = parse_stylesheet(FONTS_CSS, "https://example.com/css/fonts.css")

        self.assertEqual([f["family"] for f in faces], ["Inter", "Playfair Display"])
        self.assertEqual(faces[0]["weight"], "400")
        self.assertIn("inter.woff2", faces[0]["source"])
        self.assertEqual(
            files,
            [
                ("https://example.com/fonts/inter.woff2", "woff2"),
                ("https://example.com/fonts/inter.woff", "woff"),
                ("https://example.com/fonts/playfair.ttf", ""),
            ],
        )
        self.assertEqual(rules, [])

    def test_family_rules_skip_generic_and_variables(self) -> None:
        _, _, rules = parse_stylesheet(SITE_CSS, "https://example.com/css/site.css")
        self.assertEqual(rules, [("body, p", ["Inter"])])

    def test_family_stack(self) -> None:
        self.assertEqual(family_stack("'Helvetica Neue', Arial, sans-serif"), ["Helvetica Neue", "Arial"])
        self.assertEqual(family_stack("inherit"), [])

    def test_font_format_prefers_hint(self) -> None:
        self.assertEqual(font_format("https://x.test/a.woff2?v=3"), "woff2")
        self.assertEqual(font_format("https://x.test/a", "truetype"), "ttf")
        self.assertEqual(font_format("https://x.test/a.bin"), "unknown")

    def test_font_source_labels(self) -> None:
        self.assertEqual(font_source("https://fonts.gstatic.com/s/a.woff2"), "Google Fonts")
        self.assertEqual(font_source("https://use.typekit.net/af/a.woff2"), "Adobe Fonts")
        self.assertEqual(font_source("https://cdn.jsdelivr.net/a.woff2"), "CDN")
        self.assertEqual(font_source("https://example.com/a.woff2"), "self-hosted")


class HostValidationTests(unittest.TestCase):
    def test_private_and_local_hosts_rejected(self) -> None:
        for url in ("http://127.0.0.1/", "http://10.0.0.8/admin", "http://localhost/", "https:///path", "http://[abc"):
            with self.assertRaises(InspectionError):
                validate_public_host(url)

    def test_public_host_accepted(self) -> None:
        self.assertEqual(validate_public_host("https://example.com/page"), "example.com")

    def test_friendly_messages(self) -> None:
        timeout = friendly_error_message("https://slow.test", requests.exceptions.ConnectTimeout(), timeout=7)
        self.assertEqual(timeout, "slow.test didn't respond within 7s.")

        forbidden = requests.exceptions.HTTPError(response=_FakeResponse(status_code=403, reason="Forbidden"))
        self.assertIn("HTTP 403 Forbidden", friendly_error_message("https://x.test", forbidden))

        dns = requests.exceptions.ConnectionError("Failed to resolve 'nope.test'")
        self.assertEqual(friendly_error_message("https://nope.test", dns), "DNS lookup failed for nope.test. Check the domain name.")


class FontInspectorTests(unittest.TestCase):
    def _inspector(self, session: _FakeSession) -> FontInspector:
        return FontInspector(session, block_private_hosts=True, max_stylesheets=10, fetch_sizes=True)

    def test_inspect_collects_fonts_from_linked_and_imported_css(self) -> None:
        session = _FakeSession(
            {
                "https://example.com/": PAGE,
                "https://example.com/css/site.css": SITE_CSS,
                "https://example.com/css/fonts.css": FONTS_CSS,
                "https://fonts.googleapis.com/css2?family=Roboto": GOOGLE_CSS,
            },
            sizes={"https://example.com/fonts/inter.woff2": 24576},
        )

        result = self._inspector(session).inspect("https://example.com/")

        fonts = {f["name"]: f for f in result["downloadedFonts"]}
        self.assertEqual(
            sorted(fonts),
            ["KFOmCnqEu92Fr1Mu4mxK.woff2", "inter.woff", "inter.woff2", "playfair.ttf"],
        )
        self.assertEqual(fonts["inter.woff2"]["size"], 24576)
        self.assertEqual(fonts["inter.woff"]["size"], 0)
        self.assertEqual(fonts["playfair.ttf"]["format"], "ttf")
        self.assertEqual(fonts["KFOmCnqEu92Fr1Mu4mxK.woff2"]["source"], "Google Fonts")
        self.assertEqual(
            sorted(f["family"] for f in result["fontFaceDeclarations"]),
            ["Inter", "Playfair Display", "Roboto"],
        )

        active = {f["family"]: f for f in result["activeFonts"]}
        self.assertEqual(active["Inter"]["elementCount"], 3)
        self.assertEqual(active["Playfair Display"]["elementCount"], 1)
        self.assertEqual(active["Playfair Display"]["preview"], "Quarterly results")
        self.assertEqual(active["Roboto"]["elementCount"], 1)
        self.assertEqual(result["activeFonts"][0]["family"], "Inter")

    def test_import_cycles_are_fetched_once(self) -> None:
        session = _FakeSession({
            "https://example.com/": '<link rel="stylesheet" href="/a.css">',
            "https://example.com/a.css": '@import "/b.css";',
            "https://example.com/b.css": '@import "/a.css";',
        })

        self._inspector(session).inspect("https://example.com/")

        self.assertEqual(session.requested.count("https://example.com/a.css"), 1)
        self.assertEqual(session.requested.count("https://example.com/b.css"), 1)

    def test_unreachable_stylesheet_does_not_fail_inspection(self) -> None:
        session = _FakeSession({
            "https://example.com/": '<link rel="stylesheet" href="/gone.css"><p>Hi</p>',
        })

        result = self._inspector(session).inspect("https://example.com/")

        self.assertEqual(result["downloadedFonts"], [])

    def test_http_error_becomes_inspection_error(self) -> None:
        session = _FakeSession({
            "https://example.com/": _FakeResponse(status_code=404, reason="Not Found"),
        })

        with self.assertRaises(InspectionError) as ctx:
            self._inspector(session).inspect("https://example.com/")

        self.assertEqual(str(ctx.exception), "The page wasn't found (HTTP 404).")

    def test_private_host_blocked_before_fetch(self) -> None:
        session = _FakeSession({})

        with self.assertRaises(InspectionError):
            self._inspector(session).inspect("http://192.168.1.1/")

        self.assertEqual(session.requested, [])

    def test_redirect_to_private_host_is_not_followed(self) -> None:
        session = _FakeSession({
            "https://example.com/": _FakeResponse(status_code=302, headers={"Location": "http://10.0.0.5/admin"}),
        })

        with self.assertRaises(InspectionError):
            self._inspector(session).inspect("https://example.com/")

        self.assertEqual(session.requested, ["https://example.com/"])

    def test_public_redirect_is_followed(self) -> None:
        session = _FakeSession({
            "https://example.com/": _FakeResponse(status_code=301, headers={"Location": "/home"}),
            "https://example.com/home": "<p>Welcome</p>",
        })

        result = self._inspector(session).inspect("https://example.com/")

        self.assertEqual(result["downloadedFonts"], [])
        self.assertEqual(session.requested, ["https://example.com/", "https://example.com/home"])

    def test_private_subresources_are_skipped(self) -> None:
        session = _FakeSession(
            {
                "https://example.com/": (
                    '<link rel="stylesheet" href="http://127.0.0.1/evil.css">'
                    '<link rel="stylesheet" href="/site.css">'
                ),
                "https://example.com/site.css": (
                    '@import "http://192.168.0.10/internal.css";\n'
                    '@font-face { font-family: Local; src: url(http://10.1.2.3/local.woff2); }'
                ),
            },
            sizes={"http://10.1.2.3/local.woff2": 999},
        )

        result = self._inspector(session).inspect("https://example.com/")

        self.assertEqual(session.requested, ["https://example.com/", "https://example.com/site.css"])
        self.assertEqual(session.head_requested, [])
        self.assertEqual(result["downloadedFonts"][0]["size"], 0)

    def test_private_hosts_allowed_when_blocking_disabled(self) -> None:
        session = _FakeSession({"http://127.0.0.1:8000/": '<link rel="stylesheet" href="/a.css">'})
        inspector = FontInspector(session, block_private_hosts=False, max_stylesheets=10)

        inspector.inspect("http://127.0.0.1:8000/")

        self.assertEqual(session.requested, ["http://127.0.0.1:8000/", "http://127.0.0.1:8000/a.css"])


if __name__ == "__main__":
    unittest.main()
