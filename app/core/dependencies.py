"""依赖注入配置模块"""

import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException

# 数据库会话依赖
from app.db.session import SessionLocal
from sqlalchemy.orm import Session

# Redis 依赖
from app.core.redis import redis_client, redlock, async_redis

from app.models.user import User
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService

logger = logging.getLogger(__name__)


def get_redis():
    """获取同步 Redis 客户端，不可用时返回 None（降级为无缓存）"""
    try:
        redis_client.ping()
        return redis_client
    except Exception as e:
        logger.warning(f"Redis unavailable, running without cache: {e}")
        return None

def get_async_redis():
    """获取异步 Redis 客户端"""
    return async_redis

def get_redlock():
    """获取 Redlock 分布式锁实例，未配置服务器时返回 None"""
    if not redlock.servers:
        return None
    return redlock

def get_db() -> Session:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_inventory_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
) -> InventoryService:
    """获取库存服务实例（依赖注入）"""
    return InventoryService(db=db, redis=redis)


def get_order_service(
    db: Session = Depends(get_db),
    redis = Depends(get_redis),
    rlock = Depends(get_redlock)
) -> OrderService:
    """获取订单服务实例（依赖注入）"""
    return OrderService(db=db, redis=redis, rlock=rlock)


def get_current_user(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    db: Session = Depends(get_db),
) -> User:
    """当前用户（由上游认证网关写入 X-User-Id）"""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="未登录")
    user = db.get(User, x_user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="用户不存在或登录已失效")
    return user


def get_current_admin(user: User = Depends(get_current_user)) -> User:
    """当前管理员"""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="需要管理员权限")
    return user


# 常用的依赖注入别名
DatabaseDep = Depends(get_db)
RedisDep = Depends(get_redis)
AsyncRedisDep = Depends(get_async_redis)
RedlockDep = Depends(get_redlock)
InventoryServiceDep = Depends(get_inventory_service)
OrderServiceDep = Depends(get_order_service)
CurrentUserDep = Depends(get_current_user)
CurrentAdminDep = Depends(get_current_admin)
