import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Boolean,
    ForeignKey,
    TIMESTAMP,
    Enum,
    Table,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


class CouponType(str, enum.Enum):
    PERCENT = "percent"   # 按百分比
    FIXED = "fixed"       # 固定金额


class CouponStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


# 非公开优惠券只对领取过的用户可用
coupon_users = Table(
    "coupon_users",
    Base.metadata,
    Column("coupon_id", BigInteger, ForeignKey("coupons.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Coupon(Base):
    __tablename__ = "coupons"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    code = Column(String(64), nullable=False, unique=True, comment="优惠码（大写）")

    type = Column(
        Enum(
            CouponType,
            name="coupon_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )

    value = Column(BigInteger, nullable=False, comment="百分比或固定金额")

    max_discount = Column(BigInteger, nullable=True, comment="百分比券的最高抵扣")

    min_order_value = Column(BigInteger, nullable=True, comment="最低订单金额")

    max_uses = Column(Integer, nullable=True, comment="总使用次数上限")

    current_uses = Column(Integer, nullable=False, default=0, server_default="0")

    start_date = Column(TIMESTAMP(timezone=True), nullable=False)

    end_date = Column(TIMESTAMP(timezone=True), nullable=False)

    status = Column(
        Enum(
            CouponStatus,
            name="coupon_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=CouponStatus.ACTIVE,
    )

    is_public = Column(Boolean, nullable=False, default=True, server_default="1")

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    users = relationship("User", secondary=coupon_users, lazy="selectin")

    def snapshot(self) -> dict:
        """订单上保存的优惠券快照，之后修改优惠券不影响历史订单"""
        return {
            "code": self.code,
            "type": self.type.value if isinstance(self.type, CouponType) else self.type,
            "value": self.value,
            "maxDiscount": self.max_discount,
        }
