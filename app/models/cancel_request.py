import enum

from sqlalchemy import (
    Column,
    BigInteger,
    Text,
    ForeignKey,
    TIMESTAMP,
    Enum,
    Index,
    func,
)
from sqlalchemy.orm import relationship

from app.db.base import Base, BigIntId, utcnow


# 1️ 取消申请状态

class CancelRequestStatus(str, enum.Enum):
    PENDING = "pending"     # 待审核
    APPROVED = "approved"   # 已同意
    REJECTED = "rejected"   # 已拒绝


# 2️ 取消申请表（同一订单可累积多条已处理的历史申请）

class CancelRequest(Base):
    __tablename__ = "cancel_requests"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    order_id = Column(
        BigInteger,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="订单ID",
    )

    user_id = Column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
        comment="申请人",
    )

    reason = Column(Text, nullable=False, comment="取消原因")

    status = Column(
        Enum(
            CancelRequestStatus,
            name="cancel_request_status_type",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=CancelRequestStatus.PENDING,
        comment="审核状态",
    )

    admin_response = Column(Text, nullable=False, default="")

    processed_by = Column(
        BigInteger,
        ForeignKey("users.id"),
        nullable=True,
        comment="处理人（管理员）",
    )

    resolved_at = Column(TIMESTAMP(timezone=True), nullable=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )

    order = relationship("Order", foreign_keys=[order_id], lazy="selectin")

    user = relationship("User", foreign_keys=[user_id], lazy="selectin")

    processor = relationship("User", foreign_keys=[processed_by], lazy="selectin")


# 3️ 高频查询优化索引

Index(
    "idx_cancel_request_status_created",
    CancelRequest.status,
    CancelRequest.created_at.desc(),
)
