"""CSV reports for a single inspection and for a whole project."""
from __future__ import annotations

import csv
import io
import re

from font_inspector.models import FontFaceDeclaration, Inspection

INSPECTION_HEADER = "Font Family,Font Name,Format,Size (KB),URL,Source"
PROJECT_HEADER = "Website URL,Font Family,Font Name,Format,Size (KB),Source"
ACTIVE_FONTS_TITLE = "Active Fonts"
ACTIVE_FONTS_HEADER = "Font Family,Element Count"

SRC_URL_RE = re.compile(r"url\(['\"]?([^'\")\s]+)['\"]?\)", re.I)
FONT_EXT_RE = re.compile(r"\.(woff2?|ttf|otf|eot)$", re.I)
STYLE_SUFFIX_RE = re.compile(
    r"[-_](regular|bold|light|medium|semibold|extrabold|black|thin|italic|oblique|normal).*$", re.I
)
VARIABLE_SUFFIX_RE = re.compile(r"[-_]variable.*$", re.I)
NUMERIC_SUFFIX_RE = re.compile(r"[-_]\d+.*$")


def _last_segment(url: str) -> str:
    return url.split("/")[-1]


def family_from_file_name(font_url: str) -> str:
    name = _last_segment(font_url).split("?")[0]
    for pattern in (FONT_EXT_RE, STYLE_SUFFIX_RE, VARIABLE_SUFFIX_RE, NUMERIC_SUFFIX_RE):
        name = pattern.sub("", name)
    return re.sub(r"[-_]", " ", name).strip() or "Unknown"


def find_font_family(font_url: str, declarations: list[FontFaceDeclaration]) -> str:
    """Family of the ``@font-face`` rule whose ``src`` references ``font_url``."""
    if not declarations:
        return "Unknown"
    file_name = _last_segment(font_url)
    for declaration in declarations:
        if not declaration.source or not declaration.family:
            continue
        for css_url in SRC_URL_RE.findall(declaration.source):
            css_file = _last_segment(css_url)
            if (
                font_url == css_url
                or font_url.endswith(css_url)
                or (file_name and css_url.endswith(file_name))
                or (css_file and css_file in font_url)
            ):
                return re.sub(r"[\"']", "", declaration.family).strip()
    return family_from_file_name(font_url)


def _size_kb(size: int) -> str:
    return f"{(size or 0) / 1024:.2f}"


def _writer(buffer: io.StringIO):
    return csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")


def inspection_to_csv(inspection: Inspection) -> str:
    buffer = io.StringIO()
    writer = _writer(buffer)
    buffer.write(INSPECTION_HEADER + "\n")
    for font in inspection.downloadedFonts:
        writer.writerow([
            find_font_family(font.url, inspection.fontFaceDeclarations),
            font.name or "Unknown",
            font.format or "Unknown",
            _size_kb(font.size),
            font.url or "",
            font.source or "Unknown",
        ])

    if inspection.activeFonts and inspection.downloadedFonts:
        buffer.write("\n")
        buffer.write(ACTIVE_FONTS_TITLE + "\n")
        buffer.write(ACTIVE_FONTS_HEADER + "\n")
        for font in inspection.activeFonts:
            writer.writerow([font.family or "Unknown", str(font.elementCount or font.count or 0)])
    return buffer.getvalue()


def project_to_csv(inspections: list[Inspection]) -> str:
    buffer = io.StringIO()
    writer = _writer(buffer)
    buffer.write(PROJECT_HEADER + "\n")
    for inspection in inspections:
        for font in inspection.downloadedFonts:
            writer.writerow([
                inspection.url,
                find_font_family(font.url, inspection.fontFaceDeclarations),
                font.name or "Unknown",
                font.format or "Unknown",
                _size_kb(font.size),
                font.source or "Unknown",
            ])
    return buffer.getvalue()


def project_csv_filename(project_name: str) -> str:
    return f"project-{re.sub(r'[^a-z0-9]', '-', project_name, flags=re.I)}.csv"
