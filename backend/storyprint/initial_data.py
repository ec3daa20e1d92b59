"""
初始数据脚本

在数据库迁移完成后执行，写入默认的印刷服务选项目录。
已存在相同 pod_package_id 的选项会被跳过，可以重复执行。
"""
import logging
from decimal import Decimal
from typing import Any

from sqlmodel import Session

from storyprint import crud
from storyprint.core.db import engine

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# 8.5x8.5 是绘本的标准尺寸；6x9 黑白平装用于纯文字版本
DEFAULT_SERVICE_OPTIONS: list[dict[str, Any]] = [
    {
        "name": "Standard Paperback",
        "description": "8.5 x 8.5 full color paperback, glossy cover",
        "pod_package_id": "0850X0850FCSTDPB080CW444GXX",
        "category": "paperback",
        "trim_size": "8.5x8.5",
        "color": "fc",
        "print_quality": "standard",
        "binding": "Perfect",
        "paper_type": "80# Coated White",
        "paper_ppi": 444,
        "cover_finish": "gloss",
        "base_price": Decimal("5.00"),
        "min_pages": 32,
        "max_pages": 800,
        "estimated_production_days": 5,
    },
    {
        "name": "Standard Hardcover",
        "description": "8.5 x 8.5 full color case wrap hardcover, glossy cover",
        "pod_package_id": "0850X0850FCSTDCW080CW444GXX",
        "category": "hardcover",
        "trim_size": "8.5x8.5",
        "color": "fc",
        "print_quality": "standard",
        "binding": "Case Wrap",
        "paper_type": "80# Coated White",
        "paper_ppi": 444,
        "cover_finish": "gloss",
        "base_price": Decimal("10.00"),
        "min_pages": 24,
        "max_pages": 800,
        "estimated_production_days": 7,
    },
    {
        "name": "Premium Hardcover",
        "description": "8.5 x 8.5 premium color case wrap hardcover, matte cover",
        "pod_package_id": "0850X0850FCPRECW080CW444MXX",
        "category": "premium",
        "trim_size": "8.5x8.5",
        "color": "fc",
        "print_quality": "premium",
        "binding": "Case Wrap",
        "paper_type": "80# Coated White",
        "paper_ppi": 444,
        "cover_finish": "matte",
        "base_price": Decimal("15.00"),
        "min_pages": 24,
        "max_pages": 800,
        "estimated_production_days": 7,
    },
    {
        "name": "Coil Bound",
        "description": "8.5 x 8.5 full color coil bound, glossy cover",
        "pod_package_id": "0850X0850FCSTDCO080CW444GXX",
        "category": "coil_bound",
        "trim_size": "8.5x8.5",
        "color": "fc",
        "print_quality": "standard",
        "binding": "Coil",
        "paper_type": "80# Coated White",
        "paper_ppi": 444,
        "cover_finish": "gloss",
        "base_price": Decimal("8.00"),
        "min_pages": 2,
        "max_pages": 470,
        "estimated_production_days": 6,
    },
    {
        "name": "Black & White Paperback",
        "description": "6 x 9 black and white paperback, matte cover",
        "pod_package_id": "0600X0900BWSTDPB060UW444MXX",
        "category": "paperback",
        "trim_size": "6x9",
        "color": "bw",
        "print_quality": "standard",
        "binding": "Perfect",
        "paper_type": "60# Uncoated White",
        "paper_ppi": 444,
        "cover_finish": "matte",
        "base_price": Decimal("3.00"),
        "min_pages": 32,
        "max_pages": 800,
        "estimated_production_days": 5,
    },
]


def init(session: Session) -> int:
    """写入缺失的默认印刷服务选项，返回新增数量"""
    created = 0
    for data in DEFAULT_SERVICE_OPTIONS:
        if crud.print_orders.get_service_option_by_package(
            session=session, pod_package_id=data["pod_package_id"]
        ):
            continue
        crud.print_orders.create_service_option(session=session, data=data)
        created += 1
    return created


def main() -> None:
    logger.info("Creating initial data")
    with Session(engine) as session:
        created = init(session)
    logger.info("Initial data created: %s print service options added", created)


if __name__ == "__main__":  # pragma: no cover
    main()
