"""优惠券核销（预留 → 提交）

reserve() 只做校验与折扣计算；commit() 在订单事务内做条件自增，
事务回滚即释放预留的使用次数。
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select, update, or_
from sqlalchemy.orm import Session

from app.core.exceptions import InvalidStateError
from app.db.base import utcnow
from app.models.coupon import Coupon, CouponStatus, CouponType, coupon_users

logger = logging.getLogger(__name__)


@dataclass
class CouponReservation:
    coupon: Coupon
    discount: int
    snapshot: dict


def calculate_discount(coupon: Coupon, sub_total: int) -> int:
    """百分比券受 max_discount 限制；任何折扣都不超过小计"""
    if coupon.type == CouponType.PERCENT:
        discount = sub_total * coupon.value // 100
        if coupon.max_discount:
            discount = min(discount, coupon.max_discount)
    else:
        discount = coupon.value
    return max(0, min(discount, sub_total))


class CouponService:

    def __init__(self, db: Session):
        self.db = db

    def find_usable(self, code: str, user_id: int) -> Coupon:
        now = utcnow()
        coupon = self.db.execute(
            select(Coupon).where(
                Coupon.code == code.strip().upper(),
                Coupon.status == CouponStatus.ACTIVE,
                Coupon.start_date <= now,
                Coupon.end_date >= now,
                or_(
                    Coupon.is_public.is_(True),
                    Coupon.id.in_(
                        select(coupon_users.c.coupon_id).where(coupon_users.c.user_id == user_id)
                    ),
                ),
            )
        ).scalar_one_or_none()
        if coupon is None:
            raise InvalidStateError("优惠码无效、已过期或尚未领取")
        return coupon

    def reserve(self, code: str, user_id: int, sub_total: int) -> CouponReservation:
        coupon = self.find_usable(code, user_id)

        if coupon.max_uses and coupon.current_uses >= coupon.max_uses:
            raise InvalidStateError("优惠码已达使用上限")

        if coupon.min_order_value and sub_total < coupon.min_order_value:
            raise InvalidStateError(
                f"订单金额未达到 {coupon.min_order_value:,} 的优惠券最低使用门槛"
            )

        return CouponReservation(
            coupon=coupon,
            discount=calculate_discount(coupon, sub_total),
            snapshot=coupon.snapshot(),
        )

    def commit(self, reservation: CouponReservation) -> None:
        """条件自增使用次数（并发下可能已被用完）"""
        coupon = reservation.coupon
        result = self.db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                or_(
                    Coupon.max_uses.is_(None),
                    Coupon.max_uses == 0,
                    Coupon.current_uses < Coupon.max_uses,
                ),
            )
            .values(current_uses=Coupon.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise InvalidStateError("优惠码已达使用上限")

        self.db.get(Coupon, coupon.id, populate_existing=True)
        logger.info(f"优惠券使用次数 +1: code={coupon.code}, current_uses={coupon.current_uses}")
