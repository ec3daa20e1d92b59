"""CRUD 操作模块（按实体拆分，函数参数一律使用关键字传递）"""
from . import books, payments, print_orders, receipts, stripe_events, users

__all__ = ["books", "payments", "print_orders", "receipts", "stripe_events", "users"]
