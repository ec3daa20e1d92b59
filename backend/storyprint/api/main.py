"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（storyprint/main.py）上。

路由模块说明：
- books: 个性化绘本（保存、查询、页数明细、购买、支付确认）
- receipts: 绘本购买收据（用户查询、管理员查询/统计/退款）
- print_orders: 印刷服务选项、印刷订单、印刷订单支付、管理接口
- payments: Stripe Webhook
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from storyprint.api.routes import (
    books,  # 绘本路由
    payments,  # 支付回调路由
    print_orders,  # 印刷订单路由
    receipts,  # 收据路由
    utils,  # 工具路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(books.router)  # /books/*
api_router.include_router(receipts.router)  # /receipts/*
api_router.include_router(print_orders.router)  # /print/*
api_router.include_router(payments.router)  # /payment/*
api_router.include_router(utils.router)  # /utils/*
