from __future__ import annotations

from types import SimpleNamespace

from storyprint.enums import ImagePosition
from storyprint.services.book_layout import (
    DEDICATION_PLACEHOLDER,
    calculate_book_page_count,
    calculate_page_count,
    chapter_page_count,
    has_dedication,
    page_breakdown,
)

from conftest import chapters


def test_dedication_placeholder_is_not_a_dedication():
    assert has_dedication("For Mia")
    assert not has_dedication(None)
    assert not has_dedication("")
    assert not has_dedication("   ")
    assert not has_dedication(DEDICATION_PLACEHOLDER)


def test_page_count_rules():
    # title + end, nothing else
    assert calculate_page_count([], None) == 2
    # title + dedication + 3 chapters * 2 + end
    assert calculate_page_count(chapters(3), "For Mia") == 9
    # each full scene adds a page
    assert calculate_page_count(chapters(3, full_scene=2), "For Mia") == 11
    # 3 chapters, no dedication, 1 full scene
    assert calculate_page_count(chapters(3, full_scene=1), None) == 9
    assert calculate_page_count(chapters(3), DEDICATION_PLACEHOLDER) == 8


def test_unknown_image_position_is_standard():
    assert chapter_page_count({"image_position": "full scene"}) == 3
    assert chapter_page_count({"image_position": "diagonal"}) == 2
    assert chapter_page_count({}) == 2
    assert ImagePosition.parse("nonsense") is ImagePosition.standard


def test_image_position_match_is_exact():
    # only the exact lowercase string earns the extra page
    assert chapter_page_count({"image_position": "Full Scene"}) == 2
    assert chapter_page_count({"image_position": "full scene "}) == 2
    assert ImagePosition.parse("Full Scene") is ImagePosition.standard
    assert ImagePosition.parse(" top third") is ImagePosition.standard
    assert calculate_page_count([{"image_position": "Full Scene"}, {"image_position": "full scene "}], None) == 6


def test_page_breakdown_matches_total():
    book = SimpleNamespace(
        chapters=chapters(4, full_scene=1),
        dedication_message="For Mia",
    )
    breakdown = page_breakdown(book)
    assert breakdown.total_pages == calculate_book_page_count(book) == 12
    assert breakdown.dedication_pages == 1
    assert breakdown.chapter_count == 4
    assert breakdown.chapter_pages == 8
    assert breakdown.full_scene_extra_pages == 1
    assert breakdown.image_positions == {"full scene": 1, "top third": 3}


def test_book_model_page_count(user, make_book):
    book = make_book(user, chapter_count=12, full_scene=2)
    assert calculate_book_page_count(book) == 1 + 1 + 24 + 2 + 1
