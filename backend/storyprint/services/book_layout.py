"""
绘本页面布局

这里算出的页数必须与 PDF 渲染器实际生成的页数一致：同一个数字会同时用于
Lulu 的报价和封面（书脊宽度）校验。

    扉页                                     1
    献词页（只有真实献词才有）               0 或 1
    每个章节                                 2（版式为 "full scene" 时 +1）
    尾页                                     1

版式按原字符串精确匹配，"Full Scene" 或带空格的 "full scene " 都按 standard 计算。
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from storyprint.enums import ImagePosition

# 模板献词字段的占位文本
DEDICATION_PLACEHOLDER = " Dedication message"

TITLE_PAGES = 1
END_PAGES = 1
PAGES_PER_CHAPTER = 2


def has_dedication(message: str | None) -> bool:
    if not message or not message.strip():
        return False
    return message != DEDICATION_PLACEHOLDER


def chapter_position(chapter: Mapping[str, Any]) -> ImagePosition:
    return ImagePosition.parse(chapter.get("image_position"))


def chapter_page_count(chapter: Mapping[str, Any]) -> int:
    extra = 1 if chapter.get("image_position") == ImagePosition.full_scene.value else 0
    return PAGES_PER_CHAPTER + extra


def calculate_page_count(
    chapters: list[Mapping[str, Any]], dedication_message: str | None
) -> int:
    total = TITLE_PAGES + END_PAGES
    if has_dedication(dedication_message):
        total += 1
    return total + sum(chapter_page_count(c) for c in chapters)


def calculate_book_page_count(book: Any) -> int:
    """绘本总页数（PersonalizedBook，或任何带 chapters 和 dedication_message 的对象）"""
    return calculate_page_count(book.chapters, book.dedication_message)


@dataclass(frozen=True)
class PageBreakdown:
    title_pages: int
    dedication_pages: int
    chapter_count: int
    chapter_pages: int
    full_scene_extra_pages: int
    end_pages: int
    total_pages: int
    image_positions: dict[str, int]


def page_breakdown(book: Any) -> PageBreakdown:
    chapters = book.chapters
    positions = Counter(chapter_position(c).value for c in chapters)
    full_scene = positions.get(ImagePosition.full_scene.value, 0)
    dedication = 1 if has_dedication(book.dedication_message) else 0
    chapter_pages = PAGES_PER_CHAPTER * len(chapters)
    total = TITLE_PAGES + dedication + chapter_pages + full_scene + END_PAGES
    return PageBreakdown(
        title_pages=TITLE_PAGES,
        dedication_pages=dedication,
        chapter_count=len(chapters),
        chapter_pages=chapter_pages,
        full_scene_extra_pages=full_scene,
        end_pages=END_PAGES,
        total_pages=total,
        image_positions=dict(positions),
    )
