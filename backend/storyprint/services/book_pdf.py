"""
Print-ready PDF rendering for personalized books (reportlab).

Each chapter is laid out by the handler registered for its image position in
``BookPdfRenderer._handlers``; unknown positions use the standard layout.
The number of pages emitted always equals ``book_layout.calculate_book_page_count``.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from io import BytesIO
from typing import Any

import httpx
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from storyprint.enums import ImagePosition
from storyprint.services.book_layout import chapter_position, has_dedication

logger = logging.getLogger(__name__)

DEFAULT_TRIM = (8.5 * inch, 8.5 * inch)
MARGIN = 0.5 * inch
TITLE_FONT = "Helvetica-Bold"
BODY_FONT = "Helvetica"

ImageFetcher = Callable[[str], bytes | None]


@dataclass(frozen=True)
class RenderedPdf:
    data: bytes
    page_count: int


def fetch_image(url: str) -> bytes | None:
    try:
        r = httpx.get(url, timeout=30, follow_redirects=True)
        r.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Failed to download illustration %s: %s", url, e)
        return None
    return r.content


def parse_trim_size(trim_size: str | None) -> tuple[float, float]:
    """'8.5x11' (inches) -> page size in points."""
    if not trim_size:
        return DEFAULT_TRIM
    m = re.match(r"^\s*(\d+(?:\.\d+)?)\s*[xX×]\s*(\d+(?:\.\d+)?)", trim_size)
    if not m:
        return DEFAULT_TRIM
    return float(m.group(1)) * inch, float(m.group(2)) * inch


class _Page:
    """Tracks the canvas and how many pages have been finished."""

    def __init__(self, c: canvas.Canvas, width: float, height: float) -> None:
        self.c = c
        self.width = width
        self.height = height
        self.count = 0

    def finish(self) -> None:
        self.c.showPage()
        self.count += 1


class BookPdfRenderer:
    def __init__(self, *, fetch: ImageFetcher = fetch_image) -> None:
        self._fetch = fetch
        self._handlers: dict[ImagePosition, Callable[[_Page, dict[str, Any], ImageReader | None], None]] = {
            ImagePosition.full_scene: self._full_scene,
            ImagePosition.character_focus: self._character_focus,
            ImagePosition.action_spotlight: self._action_spotlight,
            ImagePosition.top_third: self._top_third,
            ImagePosition.bottom_third: self._bottom_third,
            ImagePosition.left_panel: self._left_panel,
            ImagePosition.right_panel: self._right_panel,
            ImagePosition.background_layered: self._background_layered,
            ImagePosition.text_wrap: self._corner_accent,
            ImagePosition.circular_frame: self._circular_frame,
            ImagePosition.side_bar: self._side_bar,
            ImagePosition.corner_accent: self._corner_accent,
            ImagePosition.header_banner: self._header_banner,
            ImagePosition.footer_illustration: self._footer_illustration,
            ImagePosition.comic_strips: self._comic_strips,
            ImagePosition.split_screens: self._split_screens,
            ImagePosition.standard: self._standard,
        }

    def handler_for(self, position: ImagePosition):
        return self._handlers.get(position, self._standard)

    # ------------------------------------------------------------------
    # documents
    # ------------------------------------------------------------------

    def render_interior(self, book: Any, *, trim_size: str | None = None) -> RenderedPdf:
        width, height = parse_trim_size(trim_size)
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=(width, height))
        c.setTitle(book.book_title)
        c.setAuthor((book.personalized_content or {}).get("author") or "")
        page = _Page(c, width, height)

        self._title_page(page, book)
        if has_dedication(book.dedication_message):
            self._dedication_page(page, book.dedication_message)
        for chapter in book.chapters:
            image = self._load_image(chapter.get("image_url"))
            self.handler_for(chapter_position(chapter))(page, chapter, image)
            self._text_page(page, chapter)
        self._end_page(page)

        c.save()
        return RenderedPdf(data=buf.getvalue(), page_count=page.count)

    def render_cover(
        self,
        book: Any,
        *,
        trim_size: str | None = None,
        cover_size: tuple[float, float] | None = None,
    ) -> RenderedPdf:
        """
        One-page wraparound cover: back on the left half, front on the right.

        ``cover_size`` should come from Lulu's cover-dimensions endpoint so the
        spine width matches the interior page count; without it the cover is
        two trim widths wide.
        """
        trim_w, trim_h = parse_trim_size(trim_size)
        width, height = cover_size or (trim_w * 2, trim_h)
        buf = BytesIO()
        c = canvas.Canvas(buf, pagesize=(width, height))
        c.setTitle(f"{book.book_title} (cover)")
        page = _Page(c, width, height)

        content = book.personalized_content or {}
        front_x = width / 2
        image = self._load_image(content.get("cover_image"))
        self._place_image(page, image, front_x, 0, width / 2, height)

        c.setFillColor(colors.white)
        c.setFillAlpha(0.8)
        c.rect(front_x + MARGIN, height - 2.2 * inch, width / 2 - 2 * MARGIN, 1.6 * inch, stroke=0, fill=1)
        c.setFillAlpha(1)
        c.setFillColor(colors.black)
        self._centered(page, book.book_title, front_x + width / 4, height - 1.2 * inch, 26, TITLE_FONT, width / 2 - 3 * MARGIN)
        self._centered(page, f"Starring {book.child_name}", front_x + width / 4, height - 1.8 * inch, 14, BODY_FONT, width / 2 - 3 * MARGIN)

        c.setFont(BODY_FONT, 11)
        c.drawString(MARGIN, MARGIN, content.get("genre") or "")
        page.finish()

        c.save()
        return RenderedPdf(data=buf.getvalue(), page_count=page.count)

    # ------------------------------------------------------------------
    # fixed pages
    # ------------------------------------------------------------------

    def _title_page(self, page: _Page, book: Any) -> None:
        content = book.personalized_content or {}
        mid = page.width / 2
        self._centered(page, book.book_title, mid, page.height * 0.6, 28, TITLE_FONT)
        self._centered(page, f"A story for {book.child_name}", mid, page.height * 0.5, 16, BODY_FONT)
        if content.get("author"):
            self._centered(page, f"by {content['author']}", mid, page.height * 0.42, 12, BODY_FONT)
        page.finish()

    def _dedication_page(self, page: _Page, message: str) -> None:
        self._paragraph(page, message.strip(), MARGIN * 2, page.height * 0.6, page.width - 4 * MARGIN, page.height * 0.3, 14, italic=True)
        page.finish()

    def _end_page(self, page: _Page) -> None:
        self._centered(page, "The End", page.width / 2, page.height / 2, 28, TITLE_FONT)
        page.finish()

    def _text_page(self, page: _Page, chapter: dict[str, Any]) -> None:
        title = chapter.get("chapter_title") or ""
        top = page.height - MARGIN
        if title:
            self._centered(page, title, page.width / 2, top - 24, 20, TITLE_FONT)
            top -= 60
        self._paragraph(page, chapter.get("chapter_content") or "", MARGIN, top, page.width - 2 * MARGIN, top - MARGIN, 14)
        page.finish()

    # ------------------------------------------------------------------
    # image position handlers (each draws the illustration page(s) of a chapter)
    # ------------------------------------------------------------------

    def _standard(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, MARGIN, page.height / 3, page.width - 2 * MARGIN, page.height * 2 / 3 - MARGIN)
        self._caption(page, chapter, page.height / 3 - 36)
        page.finish()

    def _full_scene(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        # Two-page spread: left half of the image, then right half.
        page.c.saveState()
        self._place_image(page, image, 0, 0, page.width * 2, page.height)
        page.c.restoreState()
        page.finish()
        page.c.saveState()
        self._place_image(page, image, -page.width, 0, page.width * 2, page.height)
        page.c.restoreState()
        page.finish()

    def _character_focus(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        size = min(page.width, page.height) * 0.6
        self._place_image(page, image, (page.width - size) / 2, (page.height - size) / 2, size, size)
        self._caption(page, chapter, MARGIN)
        page.finish()

    def _action_spotlight(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, 0, page.height * 0.2, page.width, page.height * 0.8)
        self._caption(page, chapter, page.height * 0.1)
        page.finish()

    def _top_third(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, 0, page.height * 2 / 3, page.width, page.height / 3)
        self._caption(page, chapter, page.height * 2 / 3 - 40)
        page.finish()

    def _bottom_third(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, 0, 0, page.width, page.height / 3)
        self._caption(page, chapter, page.height - MARGIN - 24)
        page.finish()

    def _left_panel(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, 0, 0, page.width / 2, page.height)
        self._caption(page, chapter, page.height / 2, x=page.width * 0.75, max_width=page.width / 2 - MARGIN)
        page.finish()

    def _right_panel(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, page.width / 2, 0, page.width / 2, page.height)
        self._caption(page, chapter, page.height / 2, x=page.width * 0.25, max_width=page.width / 2 - MARGIN)
        page.finish()

    def _background_layered(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        c = page.c
        self._place_image(page, image, 0, 0, page.width, page.height)
        c.saveState()
        c.setFillColor(colors.white)
        c.setFillAlpha(0.75)
        c.rect(MARGIN, MARGIN, page.width - 2 * MARGIN, 1.2 * inch, stroke=0, fill=1)
        c.restoreState()
        self._caption(page, chapter, MARGIN + 0.5 * inch)
        page.finish()

    def _circular_frame(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        c = page.c
        radius = min(page.width, page.height) * 0.35
        cx, cy = page.width / 2, page.height * 0.55
        c.saveState()
        path = c.beginPath()
        path.circle(cx, cy, radius)
        c.clipPath(path, stroke=0, fill=0)
        self._place_image(page, image, cx - radius, cy - radius, radius * 2, radius * 2)
        c.restoreState()
        c.circle(cx, cy, radius, stroke=1, fill=0)
        self._caption(page, chapter, MARGIN + 12)
        page.finish()

    def _side_bar(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        self._place_image(page, image, 0, 0, page.width / 4, page.height)
        self._caption(page, chapter, page.height / 2, x=page.width * 5 / 8, max_width=page.width * 0.7)
        page.finish()

    def _corner_accent(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        size = page.width / 3
        self._place_image(page, image, page.width - size - MARGIN, page.height - size - MARGIN, size, size)
        self._caption(page, chapter, page.height / 3)
        page.finish()

    def _header_banner(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        band = page.height / 4
        self._place_image(page, image, 0, page.height - band, page.width, band)
        self._caption(page, chapter, page.height - band - 40)
        page.finish()

    def _footer_illustration(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        band = page.height / 4
        self._place_image(page, image, 0, 0, page.width, band)
        self._caption(page, chapter, band + 40)
        page.finish()

    def _comic_strips(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        gap = 0.15 * inch
        panel_h = (page.height - 2 * MARGIN - 2 * gap) / 3
        for i in range(3):
            y = MARGIN + i * (panel_h + gap)
            self._place_image(page, image, MARGIN, y, page.width - 2 * MARGIN, panel_h)
            page.c.rect(MARGIN, y, page.width - 2 * MARGIN, panel_h, stroke=1, fill=0)
        page.finish()

    def _split_screens(self, page: _Page, chapter: dict[str, Any], image: ImageReader | None) -> None:
        half = (page.width - 3 * MARGIN) / 2
        for x in (MARGIN, 2 * MARGIN + half):
            self._place_image(page, image, x, page.height / 4, half, page.height / 2)
        self._caption(page, chapter, page.height / 4 - 36)
        page.finish()

    # ------------------------------------------------------------------
    # drawing helpers
    # ------------------------------------------------------------------

    def _load_image(self, url: str | None) -> ImageReader | None:
        if not url:
            return None
        data = self._fetch(url)
        if not data:
            return None
        try:
            return ImageReader(BytesIO(data))
        except Exception as e:
            logger.warning("Unreadable illustration %s: %s", url, e)
            return None

    @staticmethod
    def _place_image(page: _Page, image: ImageReader | None, x: float, y: float, w: float, h: float) -> None:
        c = page.c
        if image is None:
            c.saveState()
            c.setFillColor(colors.HexColor("#EEEEEE"))
            c.rect(x, y, w, h, stroke=0, fill=1)
            c.setFillColor(colors.HexColor("#999999"))
            c.setFont(BODY_FONT, 10)
            c.drawCentredString(x + w / 2, y + h / 2, "Illustration")
            c.restoreState()
            return
        c.drawImage(image, x, y, width=w, height=h, preserveAspectRatio=False, mask="auto")

    def _caption(
        self,
        page: _Page,
        chapter: dict[str, Any],
        y: float,
        *,
        x: float | None = None,
        max_width: float | None = None,
    ) -> None:
        title = chapter.get("chapter_title")
        if title:
            self._centered(page, title, page.width / 2 if x is None else x, y, 18, TITLE_FONT, max_width)

    @staticmethod
    def _centered(
        page: _Page,
        text: str,
        x: float,
        y: float,
        size: float,
        font: str,
        max_width: float | None = None,
    ) -> None:
        c = page.c
        limit = max_width or page.width - 2 * MARGIN
        while size > 8 and c.stringWidth(text, font, size) > limit:
            size -= 1
        c.setFont(font, size)
        c.drawCentredString(x, y, text)

    @staticmethod
    def _paragraph(
        page: _Page,
        text: str,
        x: float,
        top: float,
        width: float,
        height: float,
        size: float,
        *,
        italic: bool = False,
    ) -> None:
        # Shrink the font until the text fits; page count must not change.
        font = "Helvetica-Oblique" if italic else BODY_FONT
        lines: list[str] = []
        while size >= 9:
            lines = []
            for para in text.splitlines() or [""]:
                lines.extend(simpleSplit(para, font, size, width) or [""])
            if len(lines) * size * 1.4 <= height:
                break
            size -= 1
        max_lines = max(1, int(height // (size * 1.4)))
        c = page.c
        c.setFont(font, size)
        y = top - size
        for line in lines[:max_lines]:
            c.drawString(x, y, line)
            y -= size * 1.4
