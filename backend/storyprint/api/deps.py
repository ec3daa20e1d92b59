"""
FastAPI 依赖注入模块

提供可复用的依赖项，用于路由处理函数中。
FastAPI 的依赖注入系统会自动处理这些依赖的创建和注入。

关键概念：
- Depends: FastAPI 的依赖注入装饰器
- Generator: 用于创建需要清理的资源（如数据库会话）
- HTTPBearer: 从 Authorization: Bearer <token> 中提取 token
- 外部服务客户端（Stripe、Lulu、OSS、PDF 渲染）也通过依赖提供，
  测试中用 app.dependency_overrides 替换成假实现
"""
from collections.abc import Generator  # 生成器类型，用于资源管理
from typing import Annotated  # 类型注解，用于依赖注入

import jwt  # JWT 解析库
from fastapi import Depends, HTTPException, Request, status  # FastAPI 核心功能
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer  # Bearer 方案
from jwt.exceptions import InvalidTokenError  # JWT 无效异常
from pydantic import ValidationError  # Pydantic 验证异常
from sqlmodel import Session  # 数据库会话

from storyprint.api.errors import AccessDenied
from storyprint.api.schemas import TokenPayload
from storyprint.core import security
from storyprint.core.config import settings
from storyprint.core.db import engine
from storyprint.integrations.lulu import LuluClient, get_lulu_client
from storyprint.integrations.oss import OssStorage, get_oss_storage
from storyprint.integrations.stripe_gateway import StripeGateway, get_stripe_gateway
from storyprint.models import User
from storyprint.services.book_payments import BookPaymentService
from storyprint.services.book_pdf import BookPdfRenderer
from storyprint.services.print_orders import PrintOrderService

# Bearer 认证配置
reusable_oauth2 = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


# 类型别名，简化依赖注入的写法
SessionDep = Annotated[Session, Depends(get_db)]  # 数据库会话依赖
TokenDep = Annotated[
    HTTPAuthorizationCredentials, Depends(reusable_oauth2)
]  # JWT token 依赖


def get_current_user(
    session: SessionDep, token: TokenDep
) -> User:
    """
    获取当前登录用户（依赖注入）

    token 由账户服务签发，sub 为用户 ID。
    token 无效或用户不存在时返回 401。
    """
    try:
        token_str = token.credentials
        payload = jwt.decode(
            token_str, settings.SECRET_KEY, algorithms=[security.ALGORITHM]
        )
        token_data = TokenPayload(**payload)
    except (InvalidTokenError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


# 类型别名，简化需要认证的路由写法
CurrentUser = Annotated[User, Depends(get_current_user)]


def get_current_admin(current_user: CurrentUser) -> User:
    """管理接口（对账扫描、退款、强制同步）只允许管理员访问"""
    if not current_user.is_admin:
        raise AccessDenied(message="Admin privileges required")
    return current_user


CurrentAdmin = Annotated[User, Depends(get_current_admin)]


async def get_raw_body(request: Request) -> bytes:
    """原始请求体（Webhook 验签需要未经解析的字节）"""
    return await request.body()


RawBody = Annotated[bytes, Depends(get_raw_body)]


# ============================================================
# 外部服务客户端
# ============================================================


def get_payment_gateway() -> StripeGateway:
    return get_stripe_gateway()


def get_fulfillment_client() -> LuluClient:
    return get_lulu_client()


def get_storage() -> OssStorage:
    return get_oss_storage()


def get_pdf_renderer() -> BookPdfRenderer:
    return BookPdfRenderer()


GatewayDep = Annotated[StripeGateway, Depends(get_payment_gateway)]
FulfillmentDep = Annotated[LuluClient, Depends(get_fulfillment_client)]
StorageDep = Annotated[OssStorage, Depends(get_storage)]
RendererDep = Annotated[BookPdfRenderer, Depends(get_pdf_renderer)]


def get_print_order_service(
    session: SessionDep,
    gateway: GatewayDep,
    fulfillment: FulfillmentDep,
    storage: StorageDep,
    renderer: RendererDep,
) -> PrintOrderService:
    return PrintOrderService(
        session=session,
        gateway=gateway,
        fulfillment=fulfillment,
        storage=storage,
        renderer=renderer,
    )


PrintOrderServiceDep = Annotated[PrintOrderService, Depends(get_print_order_service)]


def get_book_payment_service(
    session: SessionDep,
    gateway: GatewayDep,
    print_orders: PrintOrderServiceDep,
) -> BookPaymentService:
    return BookPaymentService(session=session, gateway=gateway, print_orders=print_orders)


BookPaymentServiceDep = Annotated[BookPaymentService, Depends(get_book_payment_service)]
