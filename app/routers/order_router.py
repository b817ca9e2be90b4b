"""用户订单 API 路由"""

from fastapi import APIRouter, HTTPException, Query, Path, Body
from typing import Optional
import logging

from app.core.dependencies import CurrentUserDep, OrderServiceDep
from app.models.user import User
from app.services.order_service import OrderService
from app.schemas.order_api import (
    CreateOrderRequest,
    CancelOrderRequest,
    OrderOut,
    OrderDetailOut,
    OrderResponse,
    OrderDetailResponse,
    OrderListResponse,
    CancelOrderResponse,
    CancelRequestOut,
    CancelRequestListResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/orders",
    tags=["订单"],
    responses={
        400: {"description": "业务规则校验失败"},
        401: {"description": "未登录"},
        403: {"description": "无权操作"},
        404: {"description": "资源未找到"},
        429: {"description": "操作冲突，请稍后重试"},
        500: {"description": "服务器内部错误"}
    }
)


@router.post(
    "",
    response_model=OrderResponse,
    status_code=201,
    summary="创建订单",
    description="""从购物车中已选中的商品创建订单。

    **流程：**
    - 校验收货地址属于当前用户
    - 整单校验库存，任何一行不可售则整单失败并列出全部问题
    - 可选优惠码，订单金额 = 小计 - 优惠 + 运费
    - 货到付款（COD）立即扣减库存，在线支付（VNPAY）在确认支付后扣减
    - 从购物车移除已下单的商品
    """,
)
async def create_order(
    request: CreateOrderRequest = Body(..., description="下单参数"),
    user: User = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    try:
        order = service.create_order(
            user_id=user.id,
            address_id=request.address_id,
            payment_method=request.payment_method.value,
            note=request.note,
            coupon_code=request.coupon_code,
        )
        return OrderResponse(
            success=True,
            message="下单成功",
            data=OrderOut.model_validate(order),
        )
    except HTTPException:
        # 透传 HTTPException
        raise
    except Exception as e:
        logger.error(f"创建订单失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "",
    response_model=OrderListResponse,
    summary="我的订单列表",
)
async def get_user_orders(
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(90, ge=1, le=200, description="每页数量"),
    status: Optional[str] = Query(None, description="订单状态"),
    search: Optional[str] = Query(None, max_length=100, description="订单号/收货人/电话"),
    user: User = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    """分页查询当前用户的订单，并返回各状态数量统计"""
    try:
        result = service.get_user_orders(user.id, page=page, limit=limit, status=status, search=search)
        return OrderListResponse(
            success=True,
            message="查询成功",
            data=[OrderOut.model_validate(o) for o in result["data"]],
            pagination=result["pagination"],
            stats=result["stats"],
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单列表失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "/cancel-requests/me",
    response_model=CancelRequestListResponse,
    summary="我的取消申请",
)
async def get_user_cancel_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = Query(None, description="申请状态"),
    user: User = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.get_user_cancel_requests(user.id, page=page, limit=limit, status=status)
        return CancelRequestListResponse(
            success=True,
            message="查询成功",
            data=[CancelRequestOut.model_validate(r) for r in result["data"]],
            pagination=result["pagination"],
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询取消申请失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="订单详情",
)
async def get_order(
    order_id: int = Path(..., gt=0, description="订单ID"),
    user: User = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    """只能查看自己的订单"""
    try:
        order = service.get_order_by_id(order_id, user.id)
        return OrderDetailResponse(
            success=True,
            message="查询成功",
            data=OrderDetailOut.model_validate(order),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询订单详情失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.post(
    "/{order_id}/cancel",
    response_model=CancelOrderResponse,
    summary="取消订单",
    description="""提交取消申请。

    - 待确认（pending）订单立即取消，已扣减的库存归还
    - 已确认（confirmed）订单进入待审核，审核前订单不能继续流转
    """,
)
async def cancel_order(
    order_id: int = Path(..., gt=0, description="订单ID"),
    request: CancelOrderRequest = Body(...),
    user: User = CurrentUserDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.cancel_order(order_id, user.id, request.reason)
        return CancelOrderResponse(
            success=True,
            message=result["message"],
            data={
                "cancel_request": CancelRequestOut.model_validate(result["cancel_request"]),
                "order": OrderOut.model_validate(result["order"]),
            },
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"取消订单失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")
