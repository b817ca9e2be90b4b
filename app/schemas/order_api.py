"""订单 API 专用的 Pydantic 模型和响应格式"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.order import OrderStatus, PaymentMethod, PaymentStatus
from app.models.cancel_request import CancelRequestStatus
from app.schemas.base import CamelSchema, BaseResponse


# ==================== 请求模型 ====================

class CreateOrderRequest(CamelSchema):
    """下单请求"""
    address_id: int = Field(
        ...,
        gt=0,
        description="收货地址ID（必须属于当前用户）",
        examples=[1]
    )
    payment_method: PaymentMethod = Field(
        PaymentMethod.COD,
        description="支付方式",
        examples=["COD"]
    )
    note: Optional[str] = Field(
        None,
        max_length=500,
        description="订单备注"
    )
    coupon_code: Optional[str] = Field(
        None,
        max_length=64,
        description="优惠码",
        examples=["SALE20"]
    )


class CancelOrderRequest(CamelSchema):
    """取消订单请求"""
    reason: str = Field(
        "",
        max_length=1000,
        description="取消原因（必填）"
    )


class UpdateOrderStatusRequest(CamelSchema):
    """更新订单状态请求"""
    status: OrderStatus = Field(
        ...,
        description="目标状态",
        examples=["confirmed"]
    )
    note: Optional[str] = Field(
        None,
        max_length=500,
        description="状态备注"
    )


class ProcessCancelRequestRequest(CamelSchema):
    """审核取消申请请求"""
    status: CancelRequestStatus = Field(
        ...,
        description="审核结果：approved / rejected",
        examples=["approved"]
    )
    admin_response: Optional[str] = Field(
        None,
        max_length=1000,
        description="管理员回复"
    )


class ConfirmPaymentRequest(CamelSchema):
    """确认在线支付请求"""
    transaction_ref: Optional[str] = Field(
        None,
        max_length=128,
        description="支付流水号"
    )


class ExpireUnpaidRequest(CamelSchema):
    """超时未付款订单清理请求"""
    timeout_minutes: Optional[int] = Field(
        None,
        ge=1,
        description="超时分钟数，默认取配置"
    )
    batch_size: int = Field(
        100,
        ge=1,
        le=1000,
        description="批处理大小"
    )


# ==================== 详细信息模型 ====================

class UserBrief(CamelSchema):
    id: int
    name: str
    email: str
    phone: Optional[str] = None


class OrderItemOut(CamelSchema):
    id: Optional[int] = None
    variant_id: int
    size_id: int
    product_name: str
    quantity: int
    price: int
    image: Optional[str] = ""


class StatusHistoryOut(CamelSchema):
    status: OrderStatus
    note: Optional[str] = ""
    updated_by: Optional[int] = None
    updated_at: Optional[datetime] = None


class ShippingAddressOut(CamelSchema):
    name: str
    phone: str
    province: str
    district: str
    ward: str
    detail: str


class PaymentOut(CamelSchema):
    method: PaymentMethod
    payment_status: PaymentStatus
    paid_at: Optional[datetime] = None


class CancelRequestBrief(CamelSchema):
    id: int
    reason: str
    status: CancelRequestStatus
    admin_response: Optional[str] = ""
    created_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class OrderOut(CamelSchema):
    id: Optional[int] = None
    code: str
    user_id: int
    items: List[OrderItemOut] = []
    shipping_address: ShippingAddressOut
    note: Optional[str] = ""
    sub_total: int
    discount: int
    shipping_fee: int
    total_after_discount_and_shipping: int
    coupon_id: Optional[int] = None
    coupon_detail: Optional[Dict[str, Any]] = None
    status: OrderStatus
    status_history: List[StatusHistoryOut] = []
    payment: PaymentOut
    inventory_deducted: bool
    has_cancel_request: bool
    cancel_request_id: Optional[int] = None
    cancel_reason: Optional[str] = ""
    cancelled_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    shipping_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderDetailOut(OrderOut):
    user: Optional[UserBrief] = None
    cancel_request: Optional[CancelRequestBrief] = None


class OrderBrief(CamelSchema):
    id: int
    code: str
    status: OrderStatus
    payment: PaymentOut
    total_after_discount_and_shipping: int
    created_at: Optional[datetime] = None


class CancelRequestOut(CamelSchema):
    id: int
    order_id: int
    user_id: int
    reason: str
    status: CancelRequestStatus
    admin_response: Optional[str] = ""
    processed_by: Optional[int] = None
    resolved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    order: Optional[OrderBrief] = None
    user: Optional[UserBrief] = None


class PaginationOut(CamelSchema):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


# ==================== 响应模型 ====================

class OrderResponse(BaseResponse):
    """单个订单响应"""
    data: OrderOut


class OrderDetailResponse(BaseResponse):
    """订单详情响应"""
    data: OrderDetailOut


class OrderListResponse(BaseResponse):
    """订单分页列表响应"""
    data: List[OrderOut]
    pagination: PaginationOut
    stats: Optional[Dict[str, int]] = None


class CancelOrderData(CamelSchema):
    cancel_request: CancelRequestOut
    order: OrderOut


class CancelOrderResponse(BaseResponse):
    """取消订单响应"""
    data: CancelOrderData


class CancelRequestListResponse(BaseResponse):
    """取消申请分页列表响应"""
    data: List[CancelRequestOut]
    pagination: PaginationOut


class OperationResponse(BaseResponse):
    """操作响应（状态更新、审核取消申请）"""
    data: Optional[Dict[str, Any]] = None


class CeleryTaskResponse(BaseResponse):
    """Celery任务响应"""
    task_id: Optional[str] = None
