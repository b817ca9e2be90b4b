"""依赖注入单元测试"""
import pytest
from unittest.mock import Mock, patch
from fastapi import HTTPException
from sqlalchemy.orm import Session
from redis import Redis

from app.core.dependencies import (
    get_db,
    get_redis,
    get_redlock,
    get_inventory_service,
    get_order_service,
    get_current_user,
    get_current_admin,
)
from app.models.user import User
from app.services.inventory_service import InventoryService
from app.services.order_service import OrderService


class TestDependencies:
    """依赖注入测试类"""

    def test_get_db(self):
        """测试数据库会话依赖"""
        with patch('app.core.dependencies.SessionLocal') as mock_session_local:
            db_mock = Mock(spec=Session)
            mock_session_local.return_value = db_mock

            # 获取生成器
            gen = get_db()
            db = next(gen)

            assert db == db_mock
            mock_session_local.assert_called_once()

            # 测试清理
            gen.close()
            db_mock.close.assert_called_once()

    def test_get_redis_success(self):
        """测试 Redis 连接成功"""
        with patch('app.core.dependencies.redis_client') as mock_redis_client:
            mock_redis_client.ping.return_value = True

            redis_conn = get_redis()

            assert redis_conn == mock_redis_client
            mock_redis_client.ping.assert_called_once()

    def test_get_redis_failure(self):
        """测试 Redis 连接失败"""
        with patch('app.core.dependencies.redis_client') as mock_redis_client:
            mock_redis_client.ping.side_effect = Exception("连接失败")

            redis_conn = get_redis()

            # 连接失败应该返回 None
            assert redis_conn is None

    def test_get_redlock_success(self):
        """测试 Redlock 有服务器配置"""
        with patch('app.core.dependencies.redlock') as mock_redlock:
            mock_redlock.servers = [Mock()]

            assert get_redlock() == mock_redlock

    def test_get_redlock_failure(self):
        """测试 Redlock 无服务器配置"""
        with patch('app.core.dependencies.redlock') as mock_redlock:
            mock_redlock.servers = []

            assert get_redlock() is None

    def test_get_inventory_service(self):
        """测试库存服务依赖注入"""
        db_mock = Mock(spec=Session)
        redis_mock = Mock(spec=Redis)

        service = get_inventory_service(db=db_mock, redis=redis_mock)

        assert isinstance(service, InventoryService)
        assert service.db == db_mock
        assert service.redis == redis_mock

    def test_get_order_service_partial_deps(self):
        """测试 Redis/Redlock 不可用时的服务创建"""
        db_mock = Mock(spec=Session)

        service = get_order_service(db=db_mock, redis=None, rlock=None)

        assert isinstance(service, OrderService)
        assert service.db == db_mock
        assert service.redis is None
        assert service.rlock is None
        assert service.inventory.db == db_mock

    def test_get_current_user(self):
        user = User(id=7, name="A", email="a@example.com", role="user")
        db_mock = Mock(spec=Session)
        db_mock.get.return_value = user

        assert get_current_user(x_user_id=7, db=db_mock) is user
        db_mock.get.assert_called_once_with(User, 7)

    def test_get_current_user_missing_header(self):
        with pytest.raises(HTTPException) as exc_info:
            get_current_user(x_user_id=None, db=Mock(spec=Session))

        assert exc_info.value.status_code == 401

    def test_get_current_user_unknown(self):
        db_mock = Mock(spec=Session)
        db_mock.get.return_value = None

        with pytest.raises(HTTPException) as exc_info:
            get_current_user(x_user_id=99, db=db_mock)

        assert exc_info.value.detail == "用户不存在或登录已失效"

    def test_get_current_admin(self):
        admin = User(id=1, name="Admin", email="admin@example.com", role="admin")
        user = User(id=7, name="A", email="a@example.com", role="user")

        assert get_current_admin(user=admin) is admin
        with pytest.raises(HTTPException) as exc_info:
            get_current_admin(user=user)
        assert exc_info.value.status_code == 403
