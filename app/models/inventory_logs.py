import enum

from sqlalchemy import (
    Column,
    BigInteger,
    String,
    Integer,
    TIMESTAMP,
    func,
    Enum,
    Index,
)
from app.db.base import Base, BigIntId, utcnow

# 1定义库存变更类型（数据库 ENUM）
class ChangeType(str, enum.Enum):
    DEDUCT = "DEDUCT"     # 下单/支付扣减
    RESTORE = "RESTORE"   # 取消归还
    ADJUST = "ADJUST"     # 人工调整
# 2️库存日志表
class InventoryLog(Base):
    __tablename__ = "inventory_logs"

    id = Column(
        BigIntId,
        primary_key=True,
        autoincrement=True,
    )

    variant_id = Column(
        BigInteger,
        nullable=False,
        index=True,
        comment="变体ID",
    )

    size_id = Column(
        BigInteger,
        nullable=False,
        comment="尺码ID",
    )

    order_code = Column(
        String(64),
        nullable=True,
        index=True,
        comment="订单编号（可能为空，例如库存调整）",
    )

    change_type = Column(
        Enum(
            ChangeType,
            name="inventory_change_type",  # 重要！PostgreSQL ENUM 类型名
        ),
        nullable=False,
        comment="库存变更类型",
    )

    quantity = Column(
        Integer,
        nullable=False,
        comment="变更数量",
    )

    before_quantity = Column(
        Integer,
        nullable=False,
        comment="变更前库存",
    )

    after_quantity = Column(
        Integer,
        nullable=False,
        comment="变更后库存",
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    operator = Column(
        String(64),
        nullable=True,
        comment="操作人/服务名",
    )

    source = Column(
        String(50),
        nullable=True,
        comment="来源：checkout / cancellation / payment / manual",
    )

# 3️组合索引（高频查询优化）


Index(
    "idx_inventory_logs_variant_size_created_desc",
    InventoryLog.variant_id,
    InventoryLog.size_id,
    InventoryLog.created_at.desc(),
)
