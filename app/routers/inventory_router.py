"""库存查询 API 路由（带 Redis 缓存）"""

from fastapi import APIRouter, HTTPException, Path, Body
import logging

from app.core.dependencies import InventoryServiceDep
from app.services.inventory_service import InventoryService
from app.schemas.inventory_api import (
    BatchStockQueryRequest,
    StockResponse,
    BatchStockResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/inventory",
    tags=["库存查询"],
    responses={
        422: {"description": "请求验证失败"},
        500: {"description": "服务器内部错误"}
    }
)


@router.get(
    "/stock/{variant_id}/{size_id}",
    response_model=StockResponse,
    summary="查询库存单元可售数量",
    description="""先查 Redis 缓存，未命中再查数据库并缓存 5 分钟。
    下单、取消、确认支付后会主动失效相关缓存。
    """,
)
async def get_stock(
    variant_id: int = Path(..., gt=0, description="变体ID"),
    size_id: int = Path(..., gt=0, description="尺码ID"),
    service: InventoryService = InventoryServiceDep,
):
    try:
        quantity = service.get_available_quantity(variant_id, size_id)
        return StockResponse(
            success=True,
            message="查询成功",
            data={"variant_id": variant_id, "size_id": size_id, "available_quantity": quantity},
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail="服务器内部错误")


@router.post(
    "/stock/batch",
    response_model=BatchStockResponse,
    summary="批量查询库存",
)
async def batch_get_stocks(
    request: BatchStockQueryRequest = Body(..., description="批量查询请求参数"),
    service: InventoryService = InventoryServiceDep,
):
    """使用 Redis mget 与数据库 in 查询，单次最多 100 个库存单元"""
    try:
        pairs = [(item.variant_id, item.size_id) for item in request.items]
        stocks = service.batch_get_quantities(pairs)
        return BatchStockResponse(
            success=True,
            message="查询成功",
            data=[
                {"variant_id": v, "size_id": s, "available_quantity": stocks.get((v, s), 0)}
                for v, s in pairs
            ],
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"批量查询库存失败: {str(e)}")
        raise HTTPException(status_code=500, detail="服务器内部错误")
