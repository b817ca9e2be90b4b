import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Boolean,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    Text,
    JSON,
    Enum,
    Index,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


# 1️ 订单状态 / 支付枚举

class OrderStatus(str, enum.Enum):
    PENDING = "pending"       # 待确认
    CONFIRMED = "confirmed"   # 已确认
    SHIPPING = "shipping"     # 配送中
    DELIVERED = "delivered"   # 已送达
    CANCELLED = "cancelled"   # 已取消


class PaymentMethod(str, enum.Enum):
    COD = "COD"       # 货到付款
    VNPAY = "VNPAY"   # 在线支付


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


def _values(enum_cls):
    return [m.value for m in enum_cls]


# 订单表与状态历史共用同一个 PostgreSQL ENUM 类型
order_status_enum = Enum(
    OrderStatus,
    name="order_status_type",
    values_callable=_values,
)


# 2️ 订单表

class Order(Base):
    __tablename__ = "orders"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    code = Column(
        String(32),
        nullable=False,
        unique=True,
        comment="订单编号",
    )

    user_id = Column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="下单用户（创建后不可变）",
    )

    # 收货地址快照
    shipping_name = Column(String(255), nullable=False)
    shipping_phone = Column(String(32), nullable=False)
    shipping_province = Column(String(100), nullable=False)
    shipping_district = Column(String(100), nullable=False)
    shipping_ward = Column(String(100), nullable=False)
    shipping_detail = Column(String(500), nullable=False)

    note = Column(Text, nullable=False, default="")

    sub_total = Column(BigInteger, nullable=False, comment="商品小计")
    discount = Column(BigInteger, nullable=False, default=0, comment="优惠金额")
    shipping_fee = Column(BigInteger, nullable=False, default=0, comment="运费")
    total_after_discount_and_shipping = Column(
        BigInteger,
        nullable=False,
        comment="应付总额 = 小计 - 优惠 + 运费",
    )

    coupon_id = Column(
        BigInteger,
        ForeignKey("coupons.id", ondelete="SET NULL"),
        nullable=True,
    )

    coupon_detail = Column(
        JSON().with_variant(JSONB, "postgresql"),
        nullable=True,
        comment="优惠券快照",
    )

    status = Column(
        order_status_enum,
        nullable=False,
        default=OrderStatus.PENDING,
        comment="订单状态",
    )

    payment_method = Column(
        Enum(
            PaymentMethod,
            name="payment_method_type",
            values_callable=_values,
        ),
        nullable=False,
        default=PaymentMethod.COD,
    )

    payment_status = Column(
        Enum(
            PaymentStatus,
            name="payment_status_type",
            values_callable=_values,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    paid_at = Column(TIMESTAMP(timezone=True), nullable=True)

    payment_ref = Column(String(128), nullable=True, comment="支付流水号")

    inventory_deducted = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="库存是否已扣减，防止重复扣减/归还",
    )

    # 最近一次关联的取消申请（用于撤销判断）
    cancel_request_id = Column(BigInteger, nullable=True)

    # 待处理的取消申请；非空时阻止正常状态流转
    pending_cancel_request_id = Column(BigInteger, nullable=True, index=True)

    cancel_reason = Column(Text, nullable=False, default="")

    cancelled_at = Column(TIMESTAMP(timezone=True), nullable=True)
    confirmed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    shipping_at = Column(TIMESTAMP(timezone=True), nullable=True)
    delivered_at = Column(TIMESTAMP(timezone=True), nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    user = relationship("User", lazy="selectin")

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy="selectin",
    )

    status_history = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistory.id",
        lazy="selectin",
    )

    cancel_request = relationship(
        "CancelRequest",
        primaryjoin="foreign(Order.cancel_request_id) == CancelRequest.id",
        viewonly=True,
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint(
            "total_after_discount_and_shipping = sub_total - discount + shipping_fee",
            name="ck_order_total_consistent",
        ),
        CheckConstraint("discount >= 0", name="ck_order_discount_non_negative"),
    )

    @property
    def has_cancel_request(self) -> bool:
        return self.pending_cancel_request_id is not None

    @property
    def payment(self) -> dict:
        return {
            "method": self.payment_method,
            "payment_status": self.payment_status,
            "paid_at": self.paid_at,
        }

    @property
    def shipping_address(self) -> dict:
        return {
            "name": self.shipping_name,
            "phone": self.shipping_phone,
            "province": self.shipping_province,
            "district": self.shipping_district,
            "ward": self.shipping_ward,
            "detail": self.shipping_detail,
        }


# 3️ 订单明细（创建时快照，之后不再从商品目录重新计算）

class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    variant_id = Column(BigInteger, nullable=False, comment="变体ID")

    size_id = Column(BigInteger, nullable=False, comment="尺码ID")

    product_name = Column(String(255), nullable=False, comment="商品名称快照")

    quantity = Column(Integer, nullable=False, comment="数量")

    price = Column(BigInteger, nullable=False, comment="单价快照")

    image = Column(String(500), nullable=False, default="")

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_item_quantity_positive"),
    )


# 4️ 状态历史（只追加）

class OrderStatusHistory(Base):
    __tablename__ = "order_status_history"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status = Column(
        order_status_enum,
        nullable=False,
    )

    note = Column(Text, nullable=False, default="")

    updated_by = Column(BigInteger, nullable=True, comment="操作人ID")

    updated_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    order = relationship("Order", back_populates="status_history")


# 5️ 高频查询优化索引

Index(
    "idx_orders_user_status_created",
    Order.user_id,
    Order.status,
    Order.created_at.desc(),
)

Index(
    "idx_orders_unpaid_online",
    Order.payment_method,
    Order.payment_status,
    Order.status,
    Order.created_at,
)
