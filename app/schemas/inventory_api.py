"""库存查询 API 的 Pydantic 模型"""

from pydantic import Field
from typing import List

from app.schemas.base import CamelSchema, BaseResponse


class StockKey(CamelSchema):
    """库存单元标识"""
    variant_id: int = Field(..., gt=0, description="变体ID", examples=[1])
    size_id: int = Field(..., gt=0, description="尺码ID", examples=[1])


class BatchStockQueryRequest(CamelSchema):
    """批量查询库存请求"""
    items: List[StockKey] = Field(
        ...,
        min_length=1,
        max_length=100,
        description="库存单元列表"
    )


class StockOut(StockKey):
    available_quantity: int = Field(..., ge=0, description="可售数量")


class StockResponse(BaseResponse):
    """单个库存单元响应"""
    data: StockOut


class BatchStockResponse(BaseResponse):
    """批量库存查询响应"""
    data: List[StockOut]
