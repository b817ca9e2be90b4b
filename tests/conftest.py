"""测试配置和 fixtures"""
import pytest
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import Mock
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from redis import Redis
from redlock import Redlock

import app.models  # noqa: F401  注册所有表
from app.db.base import Base, utcnow
from app.models.user import User, UserAddress
from app.models.product import Product, Variant, Size, VariantSize
from app.models.cart import Cart, CartItem
from app.models.coupon import Coupon, CouponType, CouponStatus


@pytest.fixture
def db_session():
    """内存 SQLite 数据库会话（与生产会话配置一致）"""
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    db = TestingSession()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def mock_db_session():
    """创建模拟数据库会话"""
    return Mock()


@pytest.fixture
def mock_redis():
    """创建模拟 Redis 客户端"""
    redis_mock = Mock(spec=Redis)
    redis_mock.get.return_value = None
    redis_mock.setex.return_value = True
    redis_mock.delete.return_value = 1
    redis_mock.mget.return_value = [None, None]
    redis_mock.pipeline.return_value = Mock()
    return redis_mock


@pytest.fixture
def mock_redlock():
    """创建模拟 Redlock 分布式锁"""
    redlock_mock = Mock(spec=Redlock)
    lock_mock = Mock()
    redlock_mock.lock.return_value = lock_mock
    redlock_mock.unlock.return_value = True
    return redlock_mock


@pytest.fixture
def shop(db_session):
    """基础数据：普通用户（含地址）、管理员、一个商品变体和两个尺码"""
    customer = User(name="Nguyen Van A", email="a@example.com", phone="0900000001")
    admin = User(name="Admin", email="admin@example.com", phone="0900000009", role="admin")
    db_session.add_all([customer, admin])
    db_session.flush()

    address = UserAddress(
        user_id=customer.id,
        full_name="Nguyen Van A",
        phone="0900000001",
        province="Ho Chi Minh",
        district="Quan 1",
        ward="Ben Nghe",
        address_detail="12 Le Loi",
        is_default=True,
    )
    product = Product(slug="running-shoe", name="Running Shoe")
    size_s = Size(value="S")
    size_m = Size(value="M")
    db_session.add_all([address, product, size_s, size_m])
    db_session.flush()

    variant = Variant(product_id=product.id, color="black", price=100000)
    db_session.add(variant)
    db_session.flush()

    stock_s = VariantSize(variant_id=variant.id, size_id=size_s.id, quantity=10, is_size_available=True)
    stock_m = VariantSize(variant_id=variant.id, size_id=size_m.id, quantity=2, is_size_available=True)
    db_session.add_all([stock_s, stock_m])
    db_session.commit()

    return SimpleNamespace(
        customer=customer,
        admin=admin,
        address=address,
        product=product,
        variant=variant,
        size_s=size_s,
        size_m=size_m,
        stock_s=stock_s,
        stock_m=stock_m,
    )


@pytest.fixture
def add_cart_line(db_session):
    """向用户购物车添加一行"""
    def _add(user, variant, size, quantity, price=None, name="Running Shoe",
             is_selected=True, is_available=True):
        cart = db_session.execute(
            select(Cart).where(Cart.user_id == user.id)
        ).scalar_one_or_none()
        if cart is None:
            cart = Cart(user_id=user.id)
            db_session.add(cart)
            db_session.flush()
        line = CartItem(
            cart_id=cart.id,
            variant_id=variant.id,
            size_id=size.id,
            product_name=name,
            quantity=quantity,
            price=variant.price if price is None else price,
            image="shoe.jpg",
            is_selected=is_selected,
            is_available=is_available,
        )
        cart.items.append(line)
        cart.total_items = sum(i.quantity for i in cart.items)
        cart.sub_total = sum(i.quantity * i.price for i in cart.items)
        db_session.commit()
        return line
    return _add


@pytest.fixture
def make_coupon(db_session):
    """创建当前有效的优惠券"""
    def _make(code="SALE20", type=CouponType.PERCENT, value=20, **kwargs):
        now = utcnow()
        coupon = Coupon(
            code=code,
            type=type,
            value=value,
            start_date=kwargs.pop("start_date", now - timedelta(days=1)),
            end_date=kwargs.pop("end_date", now + timedelta(days=30)),
            status=kwargs.pop("status", CouponStatus.ACTIVE),
            **kwargs,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon
    return _make
