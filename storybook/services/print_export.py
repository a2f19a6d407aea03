"""
Printable storybook HTML and single-image downloads.
"""

from __future__ import annotations

import base64
import binascii
import re
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader, select_autoescape

if TYPE_CHECKING:
    from storybook.services.sessions import StoryState

_TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"
_DATA_URI = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(?:;[^,;]+)*),(?P<data>.*)$", re.DOTALL)


class PaperSize(str, Enum):
    A4 = "A4"
    A5 = "A5"
    LETTER = "Letter"

    @property
    def css_size(self) -> str:
        return {
            PaperSize.A4: "210mm 297mm",
            PaperSize.A5: "148mm 210mm",
            PaperSize.LETTER: "8.5in 11in",
        }[self]


class PrintLayout(str, Enum):
    ONE_PER_PAGE = "one_per_page"
    TWO_PER_PAGE = "two_per_page"
    GRID = "grid"

    @property
    def scenes_per_page(self) -> int:
        return {
            PrintLayout.ONE_PER_PAGE: 1,
            PrintLayout.TWO_PER_PAGE: 2,
            PrintLayout.GRID: 4,
        }[self]


@lru_cache(maxsize=1)
def _jinja_env() -> Environment:
    return Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=select_autoescape(["html", "j2"]),
        trim_blocks=True,
        lstrip_blocks=True,
    )


def _paginate(items: list, size: int) -> list[list]:
    return [items[i : i + size] for i in range(0, len(items), size)]


def render_print_html(
    story: "StoryState",
    *,
    paper_size: PaperSize = PaperSize.A4,
    layout: PrintLayout = PrintLayout.ONE_PER_PAGE,
    print_delay_ms: int = 1000,
) -> str:
    """Render the whole storybook as a print-ready HTML document.

    Every scene becomes a block with its image (or a placeholder when it has
    none), its caption and a 1-based page badge. The document calls
    ``window.print()`` once ``print_delay_ms`` has passed.
    """
    pages = [
        {"number": index, "image_url": scene.image_url, "story_text": scene.story_text}
        for index, scene in enumerate(story.scenes, start=1)
    ]
    template = _jinja_env().get_template("print.html.j2")
    return template.render(
        title=story.title or "Storybook",
        moral=story.moral,
        sheets=_paginate(pages, layout.scenes_per_page),
        layout=layout.value,
        page_size=paper_size.css_size,
        print_delay_ms=print_delay_ms,
    )


def decode_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a base64 data URI into (bytes, mime_type)."""
    match = _DATA_URI.match(uri or "")
    if match is None or ";base64" not in (match.group("params") or ""):
        raise ValueError("not a base64 data URI")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64 payload: {exc}") from exc
    return data, match.group("mime") or "application/octet-stream"


def download_filename(scene_id: str) -> str:
    return f"story-scene-{scene_id}.png"
