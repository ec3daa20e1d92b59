"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

关键概念：
- BaseSettings: Pydantic 的配置基类，自动从环境变量读取
- computed_field: 计算字段，根据其他字段动态生成（数据库 URI、回调地址等）
- model_validator: 模型验证器，用于拒绝部署环境中的默认密钥
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    HttpUrl,
    PostgresDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持逗号分隔的字符串或列表两种格式。

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        # 使用项目根目录的 .env 文件（backend/ 目录的上一级）
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（token 由账户服务签发）
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """CORS 允许的源（去除尾部斜杠）"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str = "StoryPrint"
    SENTRY_DSN: HttpUrl | None = None

    # 对外地址：后端地址用于支付回调，前端地址用于回调后的跳转
    SERVER_HOST: str = "http://localhost:8000"
    FRONTEND_URL: str = "http://localhost:3000"

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（分布式锁）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # 阿里云 OSS（对象存储）配置，印刷用 PDF 上传到这里供印厂拉取
    OSS_ENDPOINT: str | None = None
    OSS_BUCKET: str | None = None
    OSS_ACCESS_KEY_ID: str | None = None
    OSS_ACCESS_KEY_SECRET: str | None = None
    OSS_PDF_PREFIX: str = "books/pdfs"  # PDF 文件目录前缀
    OSS_OBJECT_ACL: str = "public-read"  # 印厂需要能直接下载文件
    OSS_PUBLIC_BASE_URL: str | None = None

    # Stripe 支付配置
    STRIPE_SECRET_KEY: str = "changethis"
    STRIPE_WEBHOOK_SECRET: str = "changethis"
    STRIPE_CURRENCY: str = "usd"
    STRIPE_API_VERSION: str | None = None  # 为空时使用 SDK 默认版本
    STRIPE_MIN_AMOUNT: Decimal = Decimal("0.50")  # Stripe 最低收款金额

    # Lulu 印刷 API 配置
    LULU_API_BASE_URL: str = "https://api.sandbox.lulu.com"
    LULU_AUTH_URL: str = (
        "https://api.sandbox.lulu.com/auth/realms/glasstree/protocol/openid-connect/token"
    )
    LULU_CLIENT_KEY: str | None = None
    LULU_CLIENT_SECRET: str | None = None
    LULU_TIMEOUT_SECONDS: float = 30.0
    LULU_VALIDATION_POLL_SECONDS: float = 2.0  # 文件校验轮询间隔
    LULU_VALIDATION_MAX_ATTEMPTS: int = 30  # 文件校验最大轮询次数

    # 待支付订单对账任务
    PENDING_PAYMENT_WINDOW_HOURS: int = 24
    PENDING_SWEEP_INTERVAL_MINUTES: int = 30

    @computed_field  # type: ignore[prop-decorator]
    @property
    def print_checkout_success_url(self) -> str:
        """印刷订单支付成功回调（Stripe 会替换 {CHECKOUT_SESSION_ID}）"""
        return (
            f"{self.SERVER_HOST.rstrip('/')}{self.API_V1_STR}"
            "/print/payment/success?session_id={CHECKOUT_SESSION_ID}"
        )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def print_checkout_cancel_url(self) -> str:
        return (
            f"{self.SERVER_HOST.rstrip('/')}{self.API_V1_STR}"
            "/print/payment/cancel?session_id={CHECKOUT_SESSION_ID}"
        )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def book_checkout_success_url(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def book_checkout_cancel_url(self) -> str:
        return f"{self.FRONTEND_URL.rstrip('/')}/payment/cancel"

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值

        本地环境只警告，其它环境直接报错。

        Raises:
            ValueError: 在非本地环境使用默认值时
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("STRIPE_SECRET_KEY", self.STRIPE_SECRET_KEY)
        self._check_default_secret("STRIPE_WEBHOOK_SECRET", self.STRIPE_WEBHOOK_SECRET)

        return self


# 全局配置实例，整个应用共享
settings = Settings()  # type: ignore
