"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器，
渲染成 {"code": ..., "message": ..., "data": null} 的统一响应。

错误码约定：HTTP 状态码 * 1000 + 序号，例如 404001。

重复操作（重复回调、重复 Webhook、重复收据）不是错误，
而是返回之前的结果并带上 already_processed / duplicate 标记。
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息（用户友好的提示，不包含第三方原始错误）
    - status_code: HTTP 状态码

    使用示例：
        raise AppError(code=404001, message="Print order not found", status_code=404)
    """

    default_code = 500000
    default_status = 500

    def __init__(
        self,
        *,
        code: int | None = None,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code if code is not None else self.default_code
        self.message = message
        self.status_code = status_code if status_code is not None else self.default_status


class ValidationFailed(AppError):
    """输入不合法（不会自动重试）"""
    default_code = 400001
    default_status = 400


class PreconditionFailed(AppError):
    """业务前置条件不满足，例如订单已支付、订单状态不允许"""
    default_code = 400002
    default_status = 400


class ServiceOptionIncompatible(AppError):
    """绘本页数不在印刷服务选项支持的范围内"""
    default_code = 400003
    default_status = 400


class FileValidationFailed(AppError):
    """Lulu 校验印刷文件失败"""
    default_code = 400004
    default_status = 400


class InvalidSignature(AppError):
    """Webhook 签名校验失败"""
    default_code = 400005
    default_status = 400


class PaymentGatewayError(AppError):
    """Stripe 调用失败，message 已转换为用户可读的提示"""
    default_code = 400006
    default_status = 400


class PaymentRequired(AppError):
    default_code = 402001
    default_status = 402


class AccessDenied(AppError):
    default_code = 403001
    default_status = 403


class NotFound(AppError):
    default_code = 404001
    default_status = 404


class ValidationTimeout(AppError):
    """等待 Lulu 文件校验超时"""
    default_code = 408001
    default_status = 408


class VendorError(AppError):
    """Lulu 接口调用失败，原始错误只记录日志"""
    default_code = 502001
    default_status = 502


class VendorAuthError(VendorError):
    """Lulu 返回 401，缓存的 token 已失效，调用方可以重试一次"""
    default_code = 502002


def book_not_paid() -> PaymentRequired:
    """
    创建"绘本未支付"异常（便捷函数）

    印刷订单和 PDF 都要求绘本已支付。
    """
    return PaymentRequired(
        message="This book must be purchased before it can be printed",
    )


def not_found(entity: str) -> NotFound:
    return NotFound(message=f"{entity} not found")
