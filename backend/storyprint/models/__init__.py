"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户模型
- book.py: 个性化绘本模型
- print_order.py: 印刷服务选项和印刷订单模型
- payment.py: 印刷订单支付记录模型
- receipt.py: 绘本购买收据模型
- stripe_event.py: Stripe Webhook 事件模型
"""
from sqlmodel import SQLModel

from .base import utc_now
from .book import PersonalizedBook
from .payment import PrintOrderPayment
from .print_order import PrintOrder, PrintServiceOption
from .receipt import Receipt, ReceiptCreate
from .stripe_event import StripeEvent
from .user import User

__all__ = [
    "SQLModel",
    "utc_now",
    "User",
    "PersonalizedBook",
    "PrintServiceOption",
    "PrintOrder",
    "PrintOrderPayment",
    "Receipt",
    "ReceiptCreate",
    "StripeEvent",
]
