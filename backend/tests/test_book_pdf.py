from __future__ import annotations

from types import SimpleNamespace

import pytest
from reportlab.lib.units import inch

from storyprint.enums import ImagePosition
from storyprint.services.book_layout import calculate_book_page_count
from storyprint.services.book_pdf import DEFAULT_TRIM, BookPdfRenderer, parse_trim_size

from conftest import chapters


def _book(chapter_list, dedication="For Mia"):
    return SimpleNamespace(
        book_title="Mia and the Dragon",
        child_name="Mia",
        dedication_message=dedication,
        personalized_content={"author": "StoryPrint", "genre": "adventure", "cover_image": None},
        chapters=chapter_list,
    )


@pytest.fixture
def renderer_no_images():
    fetched: list[str] = []

    def fetch(url):
        fetched.append(url)
        return None

    r = BookPdfRenderer(fetch=fetch)
    r.fetched = fetched
    return r


def test_parse_trim_size():
    assert parse_trim_size("8.5x11") == (8.5 * inch, 11 * inch)
    assert parse_trim_size("6 X 9") == (6 * inch, 9 * inch)
    assert parse_trim_size(None) == DEFAULT_TRIM
    assert parse_trim_size("letter") == DEFAULT_TRIM


@pytest.mark.parametrize("dedication", ["For Mia", None])
def test_interior_page_count_matches_layout(renderer_no_images, dedication):
    book = _book(chapters(5, full_scene=2), dedication=dedication)
    pdf = renderer_no_images.render_interior(book, trim_size="8.5x8.5")
    assert pdf.data.startswith(b"%PDF")
    assert pdf.page_count == calculate_book_page_count(book)
    assert len(renderer_no_images.fetched) == 5


def test_every_image_position_renders_its_page_count(renderer_no_images):
    chapter_list = [
        {"chapter_title": p.value, "chapter_content": "text " * 200, "image_position": p.value}
        for p in ImagePosition
    ]
    book = _book(chapter_list)
    pdf = renderer_no_images.render_interior(book)
    assert pdf.page_count == calculate_book_page_count(book)


def test_unknown_position_uses_standard_handler(renderer_no_images):
    assert renderer_no_images.handler_for(ImagePosition.parse("diagonal")) == renderer_no_images.handler_for(
        ImagePosition.standard
    )


def test_miscased_full_scene_renders_as_standard(renderer_no_images):
    book = _book(
        [
            {"chapter_title": "One", "chapter_content": "text", "image_position": "Full Scene"},
            {"chapter_title": "Two", "chapter_content": "text", "image_position": "full scene "},
        ],
        dedication=None,
    )
    pdf = renderer_no_images.render_interior(book)
    assert pdf.page_count == calculate_book_page_count(book) == 6


def test_cover_is_one_page(renderer_no_images):
    pdf = renderer_no_images.render_cover(_book(chapters(2)), trim_size="8.5x8.5", cover_size=(1260.0, 630.0))
    assert pdf.page_count == 1
    assert pdf.data.startswith(b"%PDF")
