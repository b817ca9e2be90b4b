"""超时未付款订单清理本地执行脚本"""

import argparse
import logging
from datetime import timedelta

from sqlalchemy import select, func

from app.core.config import settings
from app.core.redis import redis_client, redlock
from app.db.base import utcnow
from app.db.session import SessionLocal
from app.models.order import Order, OrderStatus, PaymentMethod, PaymentStatus
from app.services.order_service import OrderService

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def count_expired(db, timeout_minutes: int) -> int:
    cutoff = utcnow() - timedelta(minutes=timeout_minutes)
    return db.execute(
        select(func.count(Order.id)).where(
            Order.payment_method == PaymentMethod.VNPAY,
            Order.payment_status == PaymentStatus.PENDING,
            Order.status == OrderStatus.PENDING,
            Order.pending_cancel_request_id.is_(None),
            Order.created_at <= cutoff,
        )
    ).scalar_one()


def run_expiry(timeout_minutes: int = None, batch_size: int = 100, dry_run: bool = False):
    """执行超时未付款订单清理

    Args:
        timeout_minutes: 超时分钟数
        batch_size: 批处理大小
        dry_run: 是否为试运行模式（只统计，不取消）
    """
    timeout = timeout_minutes or settings.UNPAID_ORDER_TIMEOUT_MINUTES
    db = SessionLocal()
    try:
        if dry_run:
            expired_count = count_expired(db, timeout)
            logger.info(f"试运行模式：发现 {expired_count} 个超时未付款订单")
            return expired_count

        service = OrderService(db, redis_client, redlock)
        count = service.expire_unpaid_orders(timeout, batch_size)
        logger.info(f"清理完成：取消了 {count} 个超时未付款订单")
        return count
    except Exception as e:
        logger.error(f"清理执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


def main(argv=None):
    """主函数"""
    parser = argparse.ArgumentParser(description='超时未付款订单清理工具')
    parser.add_argument(
        '--timeout-minutes',
        type=int,
        default=None,
        help=f'超时分钟数 (默认: {settings.UNPAID_ORDER_TIMEOUT_MINUTES})'
    )
    parser.add_argument(
        '--batch-size',
        type=int,
        default=100,
        help='批处理大小 (默认: 100)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='试运行模式，只统计不执行取消'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='详细输出模式'
    )

    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        result = run_expiry(args.timeout_minutes, args.batch_size, args.dry_run)
        if args.dry_run:
            print(f"📊 试运行结果：发现 {result} 个超时订单")
        else:
            print(f"✅ 清理完成：取消了 {result} 个订单")
    except Exception as e:
        print(f"❌ 执行失败: {str(e)}")
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
