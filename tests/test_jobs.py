"""本地清理脚本单元测试"""
from datetime import timedelta
from unittest.mock import Mock, patch

from app.db.base import utcnow
from app.jobs import expire_unpaid_orders as job


class TestExpireUnpaidJob:

    def test_count_expired(self, db_session, shop, add_cart_line):
        from app.services.order_service import OrderService

        add_cart_line(shop.customer, shop.variant, shop.size_s, 1)
        order = OrderService(db_session).create_order(shop.customer.id, shop.address.id, payment_method="VNPAY")
        order.created_at = utcnow() - timedelta(hours=1)
        db_session.commit()

        assert job.count_expired(db_session, 30) == 1
        assert job.count_expired(db_session, 120) == 0

    def test_dry_run_does_not_cancel(self):
        db_mock = Mock()

        with patch('app.jobs.expire_unpaid_orders.SessionLocal', return_value=db_mock), \
             patch('app.jobs.expire_unpaid_orders.count_expired', return_value=4) as mock_count, \
             patch('app.jobs.expire_unpaid_orders.OrderService') as mock_service:

            assert job.run_expiry(timeout_minutes=10, dry_run=True) == 4

        mock_count.assert_called_once_with(db_mock, 10)
        mock_service.assert_not_called()
        db_mock.close.assert_called_once()

    def test_run_expiry(self):
        db_mock = Mock()
        service_mock = Mock()
        service_mock.expire_unpaid_orders.return_value = 2

        with patch('app.jobs.expire_unpaid_orders.SessionLocal', return_value=db_mock), \
             patch('app.jobs.expire_unpaid_orders.OrderService', return_value=service_mock):

            assert job.run_expiry(timeout_minutes=10, batch_size=20) == 2

        service_mock.expire_unpaid_orders.assert_called_once_with(10, 20)

    def test_main_reports_failure(self):
        with patch('app.jobs.expire_unpaid_orders.run_expiry', side_effect=Exception("db down")):
            assert job.main(["--batch-size", "5"]) == 1

    def test_main_passes_arguments(self):
        with patch('app.jobs.expire_unpaid_orders.run_expiry', return_value=0) as mock_run:
            assert job.main(["--timeout-minutes", "45", "--dry-run"]) == 0

        mock_run.assert_called_once_with(45, 100, True)
