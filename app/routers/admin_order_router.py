"""管理员订单 API 路由"""

from fastapi import APIRouter, HTTPException, Query, Path, Body
from typing import Optional
import logging

from app.core.dependencies import CurrentAdminDep, OrderServiceDep
from app.models.user import User
from app.services.order_service import OrderService
from app.schemas.order_api import (
    UpdateOrderStatusRequest,
    ProcessCancelRequestRequest,
    ConfirmPaymentRequest,
    ExpireUnpaidRequest,
    OrderOut,
    OrderDetailOut,
    OrderResponse,
    OrderDetailResponse,
    OrderListResponse,
    CancelRequestOut,
    CancelRequestListResponse,
    OperationResponse,
    CeleryTaskResponse,
)
from tasks.order_tasks import expire_unpaid_orders as celery_expire_task
from celery_app import app as celery_app

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin",
    tags=["订单管理"],
    responses={
        400: {"description": "业务规则校验失败"},
        401: {"description": "未登录"},
        403: {"description": "需要管理员权限"},
        404: {"description": "资源未找到"},
        429: {"description": "操作冲突，请稍后重试"},
        500: {"description": "服务器内部错误"}
    }
)


@router.get(
    "/orders",
    response_model=OrderListResponse,
    summary="全部订单",
)
async def get_all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(90, ge=1, le=200),
    status: Optional[str] = Query(None, description="订单状态"),
    search: Optional[str] = Query(None, max_length=100, description="订单号/用户/收货人"),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.get_all_orders(page=page, limit=limit, status=status, search=search)
        return OrderListResponse(
            success=True,
            message="查询成功",
            data=[OrderOut.model_validate(o) for o in result["data"]],
            pagination=result["pagination"],
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询全部订单失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.post(
    "/orders/expire-unpaid",
    response_model=CeleryTaskResponse,
    summary="提交超时未付款订单清理任务",
)
async def expire_unpaid_orders(
    request: Optional[ExpireUnpaidRequest] = Body(None),
    admin: User = CurrentAdminDep,
):
    """触发 Celery 异步任务，取消超时未付款的在线支付订单"""
    try:
        request = request or ExpireUnpaidRequest()
        task = celery_expire_task.delay(request.timeout_minutes, request.batch_size)
        return CeleryTaskResponse(
            success=True,
            message="已提交异步清理任务",
            task_id=task.id,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Celery 任务提交失败: {str(e)}")
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "/orders/expire-unpaid/status/{task_id}",
    summary="查询清理任务状态",
)
async def get_expire_task_status(
    task_id: str,
    admin: User = CurrentAdminDep,
):
    try:
        task = celery_app.AsyncResult(task_id)

        if task.state == 'PENDING':
            status = "任务等待中"
        elif task.state == 'SUCCESS':
            status = f"任务完成: {task.result}"
        elif task.state == 'FAILURE':
            status = "任务失败"
        else:
            status = f"任务状态: {task.state}"

        return {
            "task_id": task_id,
            "status": status,
            "state": task.state
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询任务状态失败: {str(e)}")
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "/orders/{order_id}",
    response_model=OrderDetailResponse,
    summary="订单详情（管理员）",
)
async def get_order_detail(
    order_id: int = Path(..., gt=0),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        order = service.get_order_detail(order_id)
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


@router.patch(
    "/orders/{order_id}/status",
    response_model=OperationResponse,
    summary="更新订单状态",
    description="""按状态机推进订单：pending → confirmed → shipping → delivered。

    **限制：**
    - 不能直接设为 cancelled，需通过取消申请审核
    - 有待处理的取消申请时不能流转
    - 在线支付订单未付款时不能确认/发货/送达
    - 货到付款订单送达时自动标记已付款
    """,
)
async def update_order_status(
    order_id: int = Path(..., gt=0),
    request: UpdateOrderStatusRequest = Body(...),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.update_order_status(
            order_id,
            request.status.value,
            note=request.note,
            admin_id=admin.id,
        )
        return OperationResponse(success=True, message=result["message"], data=result["data"])
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"更新订单状态失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.post(
    "/orders/{order_id}/payment",
    response_model=OrderResponse,
    summary="确认在线支付",
)
async def confirm_payment(
    order_id: int = Path(..., gt=0),
    request: Optional[ConfirmPaymentRequest] = Body(None),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    """支付回调确认到账后调用，此时扣减库存"""
    try:
        transaction_ref = request.transaction_ref if request else None
        order = service.confirm_payment(order_id, transaction_ref)
        return OrderResponse(
            success=True,
            message="支付已确认",
            data=OrderOut.model_validate(order),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"确认支付失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.get(
    "/cancel-requests",
    response_model=CancelRequestListResponse,
    summary="取消申请列表",
)
async def get_cancel_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    status: Optional[str] = Query(None, description="申请状态"),
    search: Optional[str] = Query(None, max_length=100, description="用户名/邮箱/电话/订单号"),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.get_cancel_requests(page=page, limit=limit, status=status, search=search)
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


@router.patch(
    "/cancel-requests/{request_id}",
    response_model=OperationResponse,
    summary="审核取消申请",
    description="""同意或拒绝取消申请，也可以修改之前的决定。

    - 同意：订单取消，已扣减的库存归还
    - 由同意改为拒绝：仅限取消后 24 小时内，订单恢复到取消前的状态（库存不会重新扣减）
    - 由拒绝改为同意：订单必须仍处于待确认或已确认
    """,
)
async def process_cancel_request(
    request_id: int = Path(..., gt=0),
    request: ProcessCancelRequestRequest = Body(...),
    admin: User = CurrentAdminDep,
    service: OrderService = OrderServiceDep,
):
    try:
        result = service.process_cancel_request(
            request_id,
            request.status.value,
            admin_response=request.admin_response,
            admin_id=admin.id,
        )
        return OperationResponse(success=True, message=result["message"], data=result["data"])
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"处理取消申请失败: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="服务器内部错误")
