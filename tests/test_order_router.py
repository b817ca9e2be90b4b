"""订单路由单元测试"""
import pytest
from unittest.mock import Mock, patch
from fastapi.testclient import TestClient

from app.main import app
from app.core.dependencies import get_current_user, get_order_service
from app.core.exceptions import InvalidStateError, ForbiddenError, LockConflictError
from app.models.user import User
from app.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from app.models.cancel_request import CancelRequest, CancelRequestStatus


def build_order(**overrides):
    """构造一个未入库的订单对象"""
    fields = dict(
        id=1,
        code="ORD20250101ABCDEF",
        user_id=7,
        shipping_name="Nguyen Van A",
        shipping_phone="0900000001",
        shipping_province="Ho Chi Minh",
        shipping_district="Quan 1",
        shipping_ward="Ben Nghe",
        shipping_detail="12 Le Loi",
        note="",
        sub_total=200000,
        discount=0,
        shipping_fee=30000,
        total_after_discount_and_shipping=230000,
        status=OrderStatus.PENDING,
        payment_method=PaymentMethod.COD,
        payment_status=PaymentStatus.PENDING,
        inventory_deducted=True,
        cancel_reason="",
        items=[OrderItem(id=1, variant_id=1, size_id=2, product_name="Running Shoe",
                         quantity=2, price=100000, image="shoe.jpg")],
    )
    fields.update(overrides)
    return Order(**fields)


def build_cancel_request(**overrides):
    fields = dict(
        id=5,
        order_id=1,
        user_id=7,
        reason="买错了",
        status=CancelRequestStatus.PENDING,
        admin_response="",
    )
    fields.update(overrides)
    return CancelRequest(**fields)


def pagination(total=1):
    return {"page": 1, "limit": 90, "total": total, "totalPages": 1, "hasNext": False, "hasPrev": False}


class TestOrderRouter:
    """用户订单路由测试类"""

    @pytest.fixture
    def customer(self):
        return User(id=7, name="Nguyen Van A", email="a@example.com", role="user")

    @pytest.fixture
    def mock_service(self, customer):
        """替换订单服务与当前用户"""
        service_mock = Mock()
        app.dependency_overrides[get_order_service] = lambda: service_mock
        app.dependency_overrides[get_current_user] = lambda: customer
        yield service_mock
        app.dependency_overrides.clear()

    @pytest.fixture
    def client(self):
        """创建测试客户端"""
        return TestClient(app)

    def test_create_order_success(self, client, mock_service):
        mock_service.create_order.return_value = build_order()

        response = client.post("/api/v1/orders", json={
            "addressId": 3,
            "paymentMethod": "COD",
            "couponCode": "SALE20",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["message"] == "下单成功"
        assert data["data"]["code"] == "ORD20250101ABCDEF"
        assert data["data"]["totalAfterDiscountAndShipping"] == 230000
        assert data["data"]["payment"]["method"] == "COD"
        assert data["data"]["shippingAddress"]["detail"] == "12 Le Loi"
        assert data["data"]["hasCancelRequest"] is False
        assert data["data"]["items"][0]["productName"] == "Running Shoe"
        mock_service.create_order.assert_called_once_with(
            user_id=7,
            address_id=3,
            payment_method="COD",
            note=None,
            coupon_code="SALE20",
        )

    def test_create_order_business_error(self, client, mock_service):
        """业务异常透传，由全局处理器渲染"""
        mock_service.create_order.side_effect = InvalidStateError("购物车为空，无法创建订单")

        response = client.post("/api/v1/orders", json={"addressId": 3})

        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["message"] == "购物车为空，无法创建订单"

    def test_create_order_lock_conflict(self, client, mock_service):
        mock_service.create_order.side_effect = LockConflictError("订单操作冲突，请稍后重试")

        response = client.post("/api/v1/orders", json={"addressId": 3})

        assert response.status_code == 429

    def test_create_order_unknown_exception(self, client, mock_service):
        """未知异常转换为 500，不泄露内部信息"""
        mock_service.create_order.side_effect = ValueError("数据库连接失败")

        response = client.post("/api/v1/orders", json={"addressId": 3})

        assert response.status_code == 500
        data = response.json()
        assert data["message"] == "服务器内部错误"
        assert "数据库连接失败" not in response.text

    def test_create_order_validation_error(self, client, mock_service):
        response = client.post("/api/v1/orders", json={"addressId": 3, "paymentMethod": "CASH"})

        assert response.status_code == 422
        assert response.json()["message"] == "请求参数验证失败"
        mock_service.create_order.assert_not_called()

    def test_get_user_orders(self, client, mock_service):
        mock_service.get_user_orders.return_value = {
            "data": [build_order()],
            "pagination": pagination(),
            "stats": {"pending": 1, "confirmed": 0, "shipping": 0, "delivered": 0, "cancelled": 0, "total": 1},
        }

        response = client.get("/api/v1/orders", params={"status": "pending", "search": "ORD"})

        assert response.status_code == 200
        data = response.json()
        assert len(data["data"]) == 1
        assert data["pagination"]["totalPages"] == 1
        assert data["stats"]["total"] == 1
        mock_service.get_user_orders.assert_called_once_with(7, page=1, limit=90, status="pending", search="ORD")

    def test_get_order_forbidden(self, client, mock_service):
        mock_service.get_order_by_id.side_effect = ForbiddenError("您无权查看此订单")

        response = client.get("/api/v1/orders/1")

        assert response.status_code == 403
        assert response.json()["message"] == "您无权查看此订单"

    def test_get_order_detail(self, client, mock_service):
        mock_service.get_order_by_id.return_value = build_order(pending_cancel_request_id=5)

        response = client.get("/api/v1/orders/1")

        assert response.status_code == 200
        assert response.json()["data"]["hasCancelRequest"] is True
        mock_service.get_order_by_id.assert_called_once_with(1, 7)

    def test_cancel_order(self, client, mock_service):
        mock_service.cancel_order.return_value = {
            "message": "取消申请已提交，等待处理",
            "cancel_request": build_cancel_request(),
            "order": build_order(status=OrderStatus.CONFIRMED, pending_cancel_request_id=5),
        }

        response = client.post("/api/v1/orders/1/cancel", json={"reason": "买错了"})

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "取消申请已提交，等待处理"
        assert data["data"]["cancelRequest"]["status"] == "pending"
        assert data["data"]["order"]["status"] == "confirmed"
        mock_service.cancel_order.assert_called_once_with(1, 7, "买错了")

    def test_user_cancel_requests(self, client, mock_service):
        mock_service.get_user_cancel_requests.return_value = {
            "data": [build_cancel_request()],
            "pagination": pagination(),
        }

        response = client.get("/api/v1/orders/cancel-requests/me")

        assert response.status_code == 200
        assert response.json()["data"][0]["reason"] == "买错了"

    def test_missing_user_header(self, client):
        """没有 X-User-Id 时返回 401"""
        app.dependency_overrides[get_order_service] = lambda: Mock()
        try:
            response = client.get("/api/v1/orders")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert response.json()["message"] == "未登录"


class TestAdminOrderRouter:
    """管理员订单路由测试类"""

    @pytest.fixture
    def admin(self):
        return User(id=1, name="Admin", email="admin@example.com", role="admin")

    @pytest.fixture
    def mock_service(self, admin):
        service_mock = Mock()
        app.dependency_overrides[get_order_service] = lambda: service_mock
        app.dependency_overrides[get_current_user] = lambda: admin
        yield service_mock
        app.dependency_overrides.clear()

    @pytest.fixture
    def client(self):
        return TestClient(app)

    def test_requires_admin_role(self, client):
        user = User(id=7, name="A", email="a@example.com", role="user")
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_order_service] = lambda: Mock()
        try:
            response = client.get("/api/v1/admin/orders")
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 403
        assert response.json()["message"] == "需要管理员权限"

    def test_get_all_orders(self, client, mock_service):
        mock_service.get_all_orders.return_value = {"data": [build_order()], "pagination": pagination()}

        response = client.get("/api/v1/admin/orders", params={"search": "a@example"})

        assert response.status_code == 200
        assert response.json()["data"][0]["id"] == 1
        mock_service.get_all_orders.assert_called_once_with(page=1, limit=90, status=None, search="a@example")

    def test_get_order_detail(self, client, mock_service):
        mock_service.get_order_detail.return_value = build_order()

        response = client.get("/api/v1/admin/orders/1")

        assert response.status_code == 200
        assert response.json()["data"]["cancelRequest"] is None

    def test_update_order_status(self, client, mock_service):
        mock_service.update_order_status.return_value = {
            "message": "订单状态已从 pending 更新为 confirmed",
            "data": {"orderId": 1, "previousStatus": "pending", "currentStatus": "confirmed"},
        }

        response = client.patch("/api/v1/admin/orders/1/status", json={"status": "confirmed", "note": "ok"})

        assert response.status_code == 200
        data = response.json()
        assert data["data"]["currentStatus"] == "confirmed"
        mock_service.update_order_status.assert_called_once_with(1, "confirmed", note="ok", admin_id=1)

    def test_update_order_status_rejected(self, client, mock_service):
        mock_service.update_order_status.side_effect = InvalidStateError("订单有待处理的取消申请，请先处理取消申请")

        response = client.patch("/api/v1/admin/orders/1/status", json={"status": "shipping"})

        assert response.status_code == 400
        assert response.json()["message"] == "订单有待处理的取消申请，请先处理取消申请"

    def test_confirm_payment(self, client, mock_service):
        mock_service.confirm_payment.return_value = build_order(
            payment_method=PaymentMethod.VNPAY,
            payment_status=PaymentStatus.PAID,
        )

        response = client.post("/api/v1/admin/orders/1/payment", json={"transactionRef": "VNP1"})

        assert response.status_code == 200
        assert response.json()["data"]["payment"]["paymentStatus"] == "paid"
        mock_service.confirm_payment.assert_called_once_with(1, "VNP1")

    def test_confirm_payment_without_body(self, client, mock_service):
        mock_service.confirm_payment.return_value = build_order(payment_method=PaymentMethod.VNPAY)

        response = client.post("/api/v1/admin/orders/1/payment")

        assert response.status_code == 200
        mock_service.confirm_payment.assert_called_once_with(1, None)

    def test_get_cancel_requests(self, client, mock_service):
        mock_service.get_cancel_requests.return_value = {
            "data": [build_cancel_request()],
            "pagination": pagination(),
        }

        response = client.get("/api/v1/admin/cancel-requests", params={"status": "pending"})

        assert response.status_code == 200
        assert response.json()["pagination"]["total"] == 1
        mock_service.get_cancel_requests.assert_called_once_with(page=1, limit=50, status="pending", search=None)

    def test_process_cancel_request(self, client, mock_service):
        mock_service.process_cancel_request.return_value = {
            "message": "已同意取消申请",
            "data": {"cancelRequest": {"id": 5, "status": "approved"}, "order": {"id": 1, "status": "cancelled"}},
        }

        response = client.patch(
            "/api/v1/admin/cancel-requests/5",
            json={"status": "approved", "adminResponse": "同意"},
        )

        assert response.status_code == 200
        assert response.json()["message"] == "已同意取消申请"
        mock_service.process_cancel_request.assert_called_once_with(
            5, "approved", admin_response="同意", admin_id=1
        )

    def test_expire_unpaid_orders_task(self, client, mock_service):
        """提交 Celery 清理任务"""
        with patch('app.routers.admin_order_router.celery_expire_task') as mock_task:
            mock_task.delay.return_value = Mock(id="task-123")

            response = client.post("/api/v1/admin/orders/expire-unpaid", json={"timeoutMinutes": 15})

        assert response.status_code == 200
        data = response.json()
        assert data["taskId"] == "task-123"
        mock_task.delay.assert_called_once_with(15, 100)

    def test_expire_task_status(self, client, mock_service):
        with patch('app.routers.admin_order_router.celery_app') as mock_celery:
            mock_celery.AsyncResult.return_value = Mock(state="SUCCESS", result="成功取消 2 个超时未付款订单")

            response = client.get("/api/v1/admin/orders/expire-unpaid/status/task-123")

        assert response.status_code == 200
        assert response.json()["state"] == "SUCCESS"
