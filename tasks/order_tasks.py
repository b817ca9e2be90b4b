"""订单相关的 Celery 任务"""

from celery_app import app
from app.db.session import SessionLocal
from app.services.order_service import OrderService
from app.core.redis import redis_client, redlock
import logging

logger = logging.getLogger(__name__)


@app.task(name='tasks.orders.expire_unpaid_orders')
def expire_unpaid_orders(timeout_minutes: int = None, batch_size: int = 100):
    """取消超时未付款的在线支付订单

    Args:
        timeout_minutes: 超时分钟数，默认取 UNPAID_ORDER_TIMEOUT_MINUTES
        batch_size: 批处理大小，默认100条

    Returns:
        取消的订单数量描述
    """
    db = SessionLocal()
    try:
        service = OrderService(db, redis_client, redlock)
        count = service.expire_unpaid_orders(timeout_minutes, batch_size)
        result = f"成功取消 {count} 个超时未付款订单"
        logger.info(result)
        return result
    except Exception as e:
        logger.error(f"超时未付款订单清理任务执行失败: {str(e)}")
        db.rollback()
        raise
    finally:
        db.close()


# 导出任务
__all__ = ['expire_unpaid_orders']
