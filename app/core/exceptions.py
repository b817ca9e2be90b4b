"""订单服务业务异常

所有业务异常都继承 HTTPException，路由层直接透传，
由 app.main 中的全局处理器统一渲染为 {"success": false, "message": ...}。
"""

from fastapi import HTTPException


class OrderError(HTTPException):
    """业务异常基类"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(status_code=self.status_code, detail=message)

    @property
    def message(self) -> str:
        return self.detail


class NotFoundError(OrderError):
    """订单/用户/地址/变体/尺码/优惠券/取消申请不存在"""
    status_code = 404


class InvalidStateError(OrderError):
    """违反业务规则（空购物车、非法状态流转、重复决定等）"""
    status_code = 400


class ForbiddenError(OrderError):
    """操作者不是订单所有者"""
    status_code = 403


class ValidationFailureError(OrderError):
    """输入格式错误，例如缺少取消原因"""
    status_code = 400


class LockConflictError(OrderError):
    """分布式锁获取失败"""
    status_code = 429


__all__ = [
    "OrderError",
    "NotFoundError",
    "InvalidStateError",
    "ForbiddenError",
    "ValidationFailureError",
    "LockConflictError",
]
