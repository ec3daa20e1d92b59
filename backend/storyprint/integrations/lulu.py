"""
Lulu Print API 集成模块

封装 Lulu 印刷 API：
- OAuth2 client_credentials 认证，token 缓存到过期前 60 秒
- 印刷文件（内页/封面）校验与轮询
- 报价、配送选项、封面尺寸
- 印刷任务的创建、查询、状态、费用和取消

Lulu 返回 401 时清除缓存的 token 并抛出 VendorAuthError，调用方可以重试一次
（重试时会重新认证）。其它失败抛出 VendorError，原始响应只写日志。

API 文档：https://api.lulu.com/docs/
"""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

import httpx

from storyprint.api.errors import (
    FileValidationFailed,
    ValidationFailed,
    ValidationTimeout,
    VendorAuthError,
    VendorError,
)
from storyprint.core.config import settings

logger = logging.getLogger(__name__)

# Lulu 支持的配送选项
SHIPPING_OPTIONS = frozenset(
    {"MAIL", "PRIORITY_MAIL", "GROUND_HD", "GROUND_BUS", "GROUND", "EXPEDITED", "EXPRESS"}
)

_TOKEN_SAFETY_MARGIN_SECONDS = 60
_VALIDATION_DONE = {"VALIDATED", "NORMALIZED"}

_VALIDATION_PATHS = {
    "interior": "/validate-interior/",
    "cover": "/validate-cover/",
}


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float  # 单调时钟时间

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class LuluClient:
    """
    Lulu API 客户端

    Args:
        base_url: API 地址（沙箱或生产）
        auth_url: OAuth2 token 地址
        client_key / client_secret: 客户端凭证
        transport: 自定义 httpx 传输层（测试中使用 httpx.MockTransport）
        sleep: 轮询等待函数（测试中替换为空操作）
        clock: 单调时钟，用于 token 过期判断
    """

    def __init__(
        self,
        *,
        base_url: str,
        auth_url: str,
        client_key: str | None,
        client_secret: str | None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
        max_attempts: int = 30,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth_url = auth_url
        self._client_key = client_key
        self._client_secret = client_secret
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._clock = clock
        self._token: AccessToken | None = None
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    # ------------------------------------------------------------------
    # 认证
    # ------------------------------------------------------------------

    def authenticate(self) -> str:
        """
        获取访问令牌（优先使用缓存）

        Raises:
            VendorAuthError: 凭证未配置或认证失败
        """
        now = self._clock()
        if self._token is not None and self._token.is_valid(now):
            return self._token.value

        if not (self._client_key and self._client_secret):
            raise VendorAuthError(message="Lulu API credentials not configured", status_code=500)

        try:
            r = self._http.post(
                self._auth_url,
                data={"grant_type": "client_credentials"},
                auth=(self._client_key, self._client_secret),
            )
        except httpx.HTTPError as e:
            logger.error("Lulu authentication request failed: %s", e)
            raise VendorAuthError(message="Failed to authenticate with print service")

        if r.status_code != 200:
            logger.error("Lulu authentication failed: %s %s", r.status_code, r.text)
            raise VendorAuthError(message="Failed to authenticate with print service")

        data = r.json()
        expires_in = int(data.get("expires_in") or 0)
        self._token = AccessToken(
            value=data["access_token"],
            expires_at=now + max(0, expires_in - _TOKEN_SAFETY_MARGIN_SECONDS),
        )
        logger.info("Lulu access token refreshed, expires in %ss", expires_in)
        return self._token.value

    def invalidate_token(self) -> None:
        self._token = None

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        token = self.authenticate()
        url = f"{self._base_url}{path}"
        try:
            r = self._http.request(
                method,
                url,
                json=json,
                params=params,
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Cache-Control": "no-cache",
                },
            )
        except httpx.HTTPError as e:
            logger.error("Lulu %s %s failed: %s", method, path, e)
            raise VendorError(message="Print service is unavailable")

        if r.status_code == 401:
            self.invalidate_token()
            logger.warning("Lulu %s %s returned 401, token invalidated", method, path)
            raise VendorAuthError(message="Print service authentication expired")
        if r.status_code >= 400:
            logger.error("Lulu %s %s returned %s: %s", method, path, r.status_code, r.text)
            status_code = r.status_code if r.status_code < 500 else 502
            raise VendorError(
                message=f"Print service request failed ({r.status_code})",
                status_code=status_code,
            )
        if r.status_code == 204 or not r.content:
            return {}
        return r.json()

    # ------------------------------------------------------------------
    # 文件校验
    # ------------------------------------------------------------------

    def validate_interior_file(self, source_url: str, pod_package_id: str) -> str:
        """提交内页 PDF 校验，返回校验 ID"""
        data = self._request(
            "POST",
            _VALIDATION_PATHS["interior"],
            json={"source_url": source_url, "pod_package_id": pod_package_id},
        )
        return str(data["id"])

    def validate_cover_file(
        self, source_url: str, pod_package_id: str, interior_page_count: int
    ) -> str:
        """提交封面 PDF 校验（需要内页页数计算书脊宽度），返回校验 ID"""
        data = self._request(
            "POST",
            _VALIDATION_PATHS["cover"],
            json={
                "source_url": source_url,
                "pod_package_id": pod_package_id,
                "interior_page_count": interior_page_count,
            },
        )
        return str(data["id"])

    def get_validation(self, validation_id: str, kind: str) -> dict[str, Any]:
        if kind not in _VALIDATION_PATHS:
            raise ValidationFailed(message=f"Unknown validation kind: {kind}")
        return self._request("GET", f"{_VALIDATION_PATHS[kind]}{validation_id}/")

    def wait_for_validation(
        self, validation_id: str, kind: str, max_attempts: int | None = None
    ) -> dict[str, Any]:
        """
        轮询文件校验结果

        每 poll_interval 秒查询一次，VALIDATED / NORMALIZED 视为成功。
        只按次数限制，不提供取消；需要取消的调用方自行在外层处理。

        Raises:
            FileValidationFailed: Lulu 返回 ERROR
            ValidationTimeout: 达到最大次数仍未完成
        """
        attempts = max_attempts or self._max_attempts
        for attempt in range(1, attempts + 1):
            result = self.get_validation(validation_id, kind)
            status = str(result.get("status") or "").upper()
            if status in _VALIDATION_DONE:
                logger.info("Lulu %s validation %s finished: %s", kind, validation_id, status)
                return result
            if status == "ERROR":
                errors = result.get("errors") or []
                detail = "; ".join(str(e) for e in errors) or "unknown error"
                logger.warning("Lulu %s validation %s failed: %s", kind, validation_id, detail)
                raise FileValidationFailed(
                    message=f"{kind.capitalize()} file validation failed: {detail}"
                )
            if attempt < attempts:
                self._sleep(self._poll_interval)

        raise ValidationTimeout(
            message=f"{kind.capitalize()} file validation timed out after {attempts} attempts"
        )

    # ------------------------------------------------------------------
    # 报价
    # ------------------------------------------------------------------

    def calculate_print_job_cost(
        self,
        line_items: list[dict[str, Any]],
        shipping_address: dict[str, Any],
        shipping_option: str,
    ) -> dict[str, Any]:
        """
        计算印刷任务费用（含配送和税费）

        Args:
            line_items: [{"page_count": int, "pod_package_id": str, "quantity": int}]
            shipping_address: 收货地址
            shipping_option: 配送选项，见 SHIPPING_OPTIONS

        Raises:
            ValidationFailed: 参数不合法
        """
        if not line_items:
            raise ValidationFailed(message="Line items are required")
        if not shipping_address:
            raise ValidationFailed(message="Shipping address is required")
        if shipping_option not in SHIPPING_OPTIONS:
            raise ValidationFailed(
                message=f"Invalid shipping option. Must be one of: {', '.join(sorted(SHIPPING_OPTIONS))}"
            )
        return self._request(
            "POST",
            "/print-job-cost-calculations/",
            json={
                "line_items": line_items,
                "shipping_address": shipping_address,
                "shipping_option": shipping_option,
            },
        )

    def get_shipping_options(
        self,
        line_items: list[dict[str, Any]],
        shipping_address: dict[str, Any],
        currency: str = "USD",
    ) -> list[dict[str, Any]]:
        """查询某个收货地址可用的配送选项及价格"""
        if not line_items:
            raise ValidationFailed(message="Line items are required")
        data = self._request(
            "POST",
            "/shipping-options/",
            json={
                "line_items": line_items,
                "shipping_address": shipping_address,
                "currency": currency,
            },
        )
        if isinstance(data, dict):
            return list(data.get("results") or [])
        return list(data or [])

    def calculate_cover_dimensions(
        self, pod_package_id: str, interior_page_count: int, unit: str = "pt"
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            "/cover-dimensions/",
            json={
                "pod_package_id": pod_package_id,
                "interior_page_count": interior_page_count,
                "unit": unit,
            },
        )

    # ------------------------------------------------------------------
    # 印刷任务
    # ------------------------------------------------------------------

    def create_print_job(self, payload: dict[str, Any]) -> dict[str, Any]:
        data = self._request("POST", "/print-jobs/", json=payload)
        logger.info("Lulu print job created: %s", data.get("id"))
        return data

    def list_print_jobs(self, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._request("GET", "/print-jobs/", params=params)

    def get_print_job(self, job_id: str) -> dict[str, Any]:
        return self._request("GET", f"/print-jobs/{job_id}/")

    def get_print_job_status(self, job_id: str) -> dict[str, Any]:
        """返回 {"name": "IN_PRODUCTION", "messages": {...}, "changed": ...}"""
        return self._request("GET", f"/print-jobs/{job_id}/status/")

    def get_print_job_costs(self, job_id: str) -> dict[str, Any]:
        return self._request("GET", f"/print-jobs/{job_id}/costs/")

    def cancel_print_job(self, job_id: str) -> dict[str, Any]:
        """取消印刷任务（只在 Lulu 还未开始生产时有效）"""
        return self._request("PATCH", f"/print-jobs/{job_id}/", json={"name": "CANCELED"})


@lru_cache(maxsize=1)
def get_lulu_client() -> LuluClient:
    """按配置构造的客户端（进程内复用，token 缓存随之复用）"""
    return LuluClient(
        base_url=settings.LULU_API_BASE_URL,
        auth_url=settings.LULU_AUTH_URL,
        client_key=settings.LULU_CLIENT_KEY,
        client_secret=settings.LULU_CLIENT_SECRET,
        timeout=settings.LULU_TIMEOUT_SECONDS,
        poll_interval=settings.LULU_VALIDATION_POLL_SECONDS,
        max_attempts=settings.LULU_VALIDATION_MAX_ATTEMPTS,
    )
