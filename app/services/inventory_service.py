"""库存服务实现（变体 + 尺码维度）"""

from sqlalchemy import select, update, case
from sqlalchemy.orm import Session
from typing import Iterable, List, Optional, Tuple
import logging
from redis import Redis

from app.core.exceptions import NotFoundError
from app.db.base import utcnow
from app.models.product import Variant, VariantSize
from app.models.inventory_logs import InventoryLog, ChangeType

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 300


def stock_cache_key(variant_id: int, size_id: int) -> str:
    return f"stock:available:{variant_id}:{size_id}"


class InventoryService:
    """库存核心服务类

    deduct/restore 只写入当前会话，不提交事务，
    由调用方（订单服务）与订单一起提交。
    """

    def __init__(self, db: Session, redis: Redis = None):
        self.db = db
        self.redis = redis

    def find_variant_size(self, variant_id: int, size_id: int) -> VariantSize:
        """查询库存单元，不存在时抛出 NotFoundError"""
        variant = self.db.get(Variant, variant_id)
        if variant is None:
            raise NotFoundError("找不到商品变体")

        entry = self.db.execute(
            select(VariantSize).where(
                VariantSize.variant_id == variant_id,
                VariantSize.size_id == size_id,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise NotFoundError("该变体下不存在此尺码")
        return entry

    def check_availability(self, variant_id: int, size_id: int, quantity: int) -> Optional[str]:
        """校验是否可售，返回不可售原因；可售时返回 None"""
        try:
            entry = self.find_variant_size(variant_id, size_id)
        except NotFoundError as e:
            return e.message

        if not entry.is_size_available:
            return "该尺码当前不可售"
        if entry.quantity < quantity:
            return f"库存不足，当前仅剩 {entry.quantity} 件"
        return None

    def deduct(
        self,
        variant_id: int,
        size_id: int,
        quantity: int,
        order_code: str = None,
        source: str = "checkout",
    ) -> bool:
        """条件扣减库存（仅当 quantity >= 扣减数量时才更新）

        返回 False 表示并发下库存已不足，调用方应视为不可售。
        """
        result = self.db.execute(
            update(VariantSize)
            .where(
                VariantSize.variant_id == variant_id,
                VariantSize.size_id == size_id,
                VariantSize.is_size_available.is_(True),
                VariantSize.quantity >= quantity,
            )
            .values(
                quantity=VariantSize.quantity - quantity,
                is_size_available=case(
                    (VariantSize.quantity - quantity > 0, True),
                    else_=False,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.warning(
                f"条件扣减失败: variant_id={variant_id}, size_id={size_id}, quantity={quantity}"
            )
            return False

        # 刷新会话中可能已加载的旧对象
        entry = self.db.get(VariantSize, (variant_id, size_id), populate_existing=True)

        self.db.add(InventoryLog(
            variant_id=variant_id,
            size_id=size_id,
            order_code=order_code,
            change_type=ChangeType.DEDUCT,
            quantity=-quantity,
            before_quantity=entry.quantity + quantity,
            after_quantity=entry.quantity,
            operator=f"order_service_{order_code}" if order_code else "order_service",
            source=source,
        ))
        logger.info(
            f"扣减库存: order={order_code}, variant_id={variant_id}, size_id={size_id}, "
            f"{entry.quantity + quantity} → {entry.quantity}"
        )
        return True

    def restore(
        self,
        variant_id: int,
        size_id: int,
        quantity: int,
        order_code: str = None,
        source: str = "cancellation",
    ) -> VariantSize:
        """归还库存，库存单元不存在时抛出 NotFoundError"""
        result = self.db.execute(
            update(VariantSize)
            .where(
                VariantSize.variant_id == variant_id,
                VariantSize.size_id == size_id,
            )
            .values(
                quantity=VariantSize.quantity + quantity,
                is_size_available=case(
                    (VariantSize.quantity + quantity > 0, True),
                    else_=False,
                ),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise NotFoundError("找不到要归还的库存单元")

        entry = self.db.get(VariantSize, (variant_id, size_id), populate_existing=True)

        self.db.add(InventoryLog(
            variant_id=variant_id,
            size_id=size_id,
            order_code=order_code,
            change_type=ChangeType.RESTORE,
            quantity=quantity,
            before_quantity=entry.quantity - quantity,
            after_quantity=entry.quantity,
            operator=f"order_service_{order_code}" if order_code else "order_service",
            source=source,
        ))
        logger.info(
            f"归还库存: order={order_code}, variant_id={variant_id}, size_id={size_id}, "
            f"{entry.quantity - quantity} → {entry.quantity}"
        )
        return entry

    def invalidate_cache(self, pairs: Iterable[Tuple[int, int]]) -> None:
        """事务提交后失效相关库存缓存"""
        if not self.redis:
            return
        keys = [stock_cache_key(v, s) for v, s in set(pairs)]
        if keys:
            self.redis.delete(*keys)
            logger.debug(f"Cache invalidated: {keys}")

    def get_available_quantity(self, variant_id: int, size_id: int) -> int:
        """查询可售库存（带缓存）"""
        cache_key = stock_cache_key(variant_id, size_id)

        # 先查缓存
        if self.redis:
            cached = self.redis.get(cache_key)
            if cached is not None:
                logger.debug(f"Cache hit for {cache_key}")
                return int(cached)

        # 缓存未命中，查询数据库
        entry = self.db.execute(
            select(VariantSize).where(
                VariantSize.variant_id == variant_id,
                VariantSize.size_id == size_id,
            )
        ).scalar_one_or_none()
        available = entry.quantity if entry and entry.is_size_available else 0

        if self.redis:
            self.redis.setex(cache_key, CACHE_TTL_SECONDS, available)
            logger.debug(f"Cache set for {cache_key}: {available}")

        return available

    def batch_get_quantities(self, pairs: List[Tuple[int, int]]) -> dict:
        """批量查询可售库存，返回 {(variant_id, size_id): quantity}"""
        if not pairs:
            return {}

        results = {}
        uncached = []

        if self.redis:
            cached_values = self.redis.mget([stock_cache_key(v, s) for v, s in pairs])
            for pair, cached in zip(pairs, cached_values):
                if cached is not None:
                    results[pair] = int(cached)
                else:
                    uncached.append(pair)
        else:
            uncached = list(pairs)

        if uncached:
            variant_ids = {v for v, _ in uncached}
            entries = self.db.execute(
                select(VariantSize).where(VariantSize.variant_id.in_(variant_ids))
            ).scalars().all()
            stock_map = {
                (e.variant_id, e.size_id): (e.quantity if e.is_size_available else 0)
                for e in entries
            }

            if self.redis:
                pipe = self.redis.pipeline()

            for pair in uncached:
                available = stock_map.get(pair, 0)
                results[pair] = available
                if self.redis:
                    pipe.setex(stock_cache_key(*pair), CACHE_TTL_SECONDS, available)

            if self.redis:
                pipe.execute()

        return results
