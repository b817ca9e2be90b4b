from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    Boolean,
    ForeignKey,
    CheckConstraint,
    TIMESTAMP,
    func,
    Index,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


class Product(Base):
    __tablename__ = "products"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    slug = Column(
        String(255),
        nullable=False,
        unique=True,
        comment="商品唯一 slug",
    )

    name = Column(
        String(255),
        nullable=False,
        comment="商品名称",
    )

    is_active = Column(Boolean, nullable=False, default=True, server_default="1")

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    variants = relationship("Variant", back_populates="product", lazy="selectin")


class Size(Base):
    __tablename__ = "sizes"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    value = Column(String(32), nullable=False, comment="尺码值，例如 38 / XL")

    description = Column(String(255), nullable=True)


class Variant(Base):
    """商品变体（例如某个颜色），库存按尺码拆分"""
    __tablename__ = "variants"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    product_id = Column(
        BigInteger,
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="商品ID",
    )

    color = Column(String(64), nullable=True, comment="颜色")

    price = Column(BigInteger, nullable=False, default=0, comment="当前售价")

    is_active = Column(Boolean, nullable=False, default=True, server_default="1")

    product = relationship("Product", back_populates="variants")

    sizes = relationship(
        "VariantSize",
        back_populates="variant",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class VariantSize(Base):
    """库存单元：(变体, 尺码)"""
    __tablename__ = "variant_sizes"

    variant_id = Column(
        BigInteger,
        ForeignKey("variants.id", ondelete="CASCADE"),
        primary_key=True,
        comment="变体ID",
    )

    size_id = Column(
        BigInteger,
        ForeignKey("sizes.id", ondelete="CASCADE"),
        primary_key=True,
        comment="尺码ID",
    )

    quantity = Column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="当前可售库存",
    )

    is_size_available = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default="0",
        comment="是否可售（quantity > 0）",
    )

    updated_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    variant = relationship("Variant", back_populates="sizes")

    size = relationship("Size", lazy="selectin")

    __table_args__ = (
        CheckConstraint(
            "quantity >= 0",
            name="ck_variant_size_quantity_non_negative",
        ),
    )


# -----------------------------
# 组合索引（按商品名称搜索）
# -----------------------------
Index(
    "idx_products_name",
    Product.name,
)
