from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Boolean,
    ForeignKey,
    TIMESTAMP,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


class Cart(Base):
    __tablename__ = "carts"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    user_id = Column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        comment="用户ID，每个用户一个购物车",
    )

    total_items = Column(Integer, nullable=False, default=0, server_default="0")

    sub_total = Column(BigInteger, nullable=False, default=0, server_default="0")

    updated_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
        lazy="selectin",
    )


class CartItem(Base):
    """购物车行：价格在加入购物车时快照"""
    __tablename__ = "cart_items"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    cart_id = Column(
        BigInteger,
        ForeignKey("carts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    variant_id = Column(BigInteger, nullable=False, comment="变体ID")

    size_id = Column(BigInteger, nullable=False, comment="尺码ID")

    product_name = Column(String(255), nullable=False, comment="商品名称快照")

    quantity = Column(Integer, nullable=False, comment="数量")

    price = Column(BigInteger, nullable=False, comment="单价快照")

    image = Column(String(500), nullable=False, default="", server_default="")

    is_selected = Column(Boolean, nullable=False, default=True, server_default="1")

    is_available = Column(Boolean, nullable=False, default=True, server_default="1")

    cart = relationship("Cart", back_populates="items")
