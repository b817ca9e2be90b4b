from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Boolean,
    ForeignKey,
    TIMESTAMP,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


class User(Base):
    """账户（由认证服务维护，这里只读取）"""
    __tablename__ = "users"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    name = Column(String(255), nullable=False, comment="用户名")

    email = Column(String(255), nullable=False, unique=True, comment="邮箱")

    phone = Column(String(32), nullable=True, comment="手机号")

    role = Column(
        String(20),
        nullable=False,
        default="user",
        server_default="user",
        comment="角色：user / admin",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    addresses = relationship(
        "UserAddress",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserAddress(Base):
    __tablename__ = "user_addresses"

    id = Column(BigIntId, primary_key=True, autoincrement=True)

    user_id = Column(
        BigInteger,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    full_name = Column(String(255), nullable=False, comment="收货人")
    phone = Column(String(32), nullable=False)
    province = Column(String(100), nullable=False)
    district = Column(String(100), nullable=False)
    ward = Column(String(100), nullable=False)
    address_detail = Column(String(500), nullable=False, comment="详细地址")

    is_default = Column(Boolean, nullable=False, default=False, server_default="0")

    user = relationship("User", back_populates="addresses")
