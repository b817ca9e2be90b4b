"""订单生命周期服务：下单、状态流转、取消申请与审核"""

import logging
import secrets
from contextlib import contextmanager
from datetime import timedelta

from redis import Redis
from redlock import Redlock
from sqlalchemy import select, func, or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    NotFoundError,
    InvalidStateError,
    ForbiddenError,
    ValidationFailureError,
    LockConflictError,
)
from app.db.base import utcnow, as_utc
from app.models.order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.models.cancel_request import CancelRequest, CancelRequestStatus
from app.models.user import User
from app.services.cart_service import CartService
from app.services.coupon_service import CouponService
from app.services.inventory_service import InventoryService
from app.services.pagination import paginate

logger = logging.getLogger(__name__)

# 已同意的取消申请可在此时间窗口内被撤销
CANCEL_REVERSAL_WINDOW = timedelta(hours=24)

CANCELLABLE_STATUSES = (OrderStatus.PENDING, OrderStatus.CONFIRMED)

# cancelled 只能通过取消申请流程进入
VALID_STATUS_TRANSITIONS = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED,),
    OrderStatus.CONFIRMED: (OrderStatus.SHIPPING,),
    OrderStatus.SHIPPING: (OrderStatus.DELIVERED,),
    OrderStatus.DELIVERED: (),
    OrderStatus.CANCELLED: (),
}

# 在线支付订单进入这些状态前必须已支付
PAID_REQUIRED_STATUSES = (
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPING,
    OrderStatus.DELIVERED,
)

UNPAID_TIMEOUT_REASON = "在线支付超时未付款，系统自动取消"


def calculate_shipping_fee(sub_total: int) -> int:
    if sub_total >= settings.FREE_SHIPPING_THRESHOLD:
        return 0
    return settings.SHIPPING_FEE


def generate_order_code() -> str:
    return f"ORD{utcnow():%Y%m%d}{secrets.token_hex(3).upper()}"


def _parse_status(value, enum_cls, message):
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationFailureError(message)


class OrderService:
    """订单核心服务类"""

    def __init__(self, db: Session, redis: Redis = None, rlock: Redlock = None):
        self.db = db
        self.redis = redis
        self.rlock = rlock
        self.inventory = InventoryService(db, redis)
        self.carts = CartService(db)
        self.coupons = CouponService(db)

    # ==================== 内部工具 ====================

    @contextmanager
    def _locked(self, lock_key: str):
        """Redlock 分布式锁；未配置 Redlock 时直接执行"""
        lock = None
        if self.rlock:
            lock = self.rlock.lock(lock_key, settings.ORDER_LOCK_TTL_MS)
            if not lock:
                raise LockConflictError("订单操作冲突，请稍后重试")
        try:
            yield
        finally:
            if self.rlock and lock:
                self.rlock.unlock(lock)

    def _get_order(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("找不到订单")
        return order

    def _append_history(self, order: Order, status: OrderStatus, note: str = "", actor_id: int = None) -> bool:
        """追加状态历史；与最后一条状态相同则不追加"""
        if order.status_history and order.status_history[-1].status == status:
            return False
        order.status_history.append(OrderStatusHistory(
            status=status,
            note=note or "",
            updated_by=actor_id,
            updated_at=utcnow(),
        ))
        return True

    def _deduct_inventory(self, order: Order, source: str) -> None:
        failed = []
        for item in order.items:
            if not self.inventory.deduct(item.variant_id, item.size_id, item.quantity, order.code, source):
                failed.append(item.product_name)
        if failed:
            raise InvalidStateError(f"以下商品库存不足: {', '.join(failed)}")
        order.inventory_deducted = True

    def _restore_inventory(self, order: Order, source: str) -> None:
        """归还已扣减的库存；单行失败只记录日志，不影响取消"""
        if not order.inventory_deducted:
            return
        for item in order.items:
            try:
                self.inventory.restore(item.variant_id, item.size_id, item.quantity, order.code, source)
            except NotFoundError as e:
                logger.error(
                    f"归还库存失败: order={order.code}, variant_id={item.variant_id}, "
                    f"size_id={item.size_id}, error={e.message}"
                )
        order.inventory_deducted = False
        logger.info(f"已归还订单库存: order={order.code}")

    def _cancel_now(self, order: Order, cancel_request: CancelRequest, note: str, actor_id: int = None) -> None:
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = utcnow()
        order.cancel_reason = cancel_request.reason
        order.cancel_request_id = cancel_request.id
        if order.pending_cancel_request_id == cancel_request.id:
            order.pending_cancel_request_id = None
        self._append_history(order, OrderStatus.CANCELLED, note, actor_id)
        self._restore_inventory(order, source="cancellation")

    def _status_before_cancellation(self, order: Order) -> OrderStatus:
        for entry in reversed(order.status_history):
            if entry.status != OrderStatus.CANCELLED:
                return entry.status
        return OrderStatus.PENDING

    def _item_pairs(self, order: Order):
        return [(item.variant_id, item.size_id) for item in order.items]

    # ==================== 下单 ====================

    def create_order(
        self,
        user_id: int,
        address_id: int,
        payment_method: str = "COD",
        note: str = None,
        coupon_code: str = None,
    ) -> Order:
        """从购物车中已选中的商品创建订单"""
        if not address_id:
            raise ValidationFailureError("请提供收货地址")
        try:
            method = PaymentMethod(payment_method)
        except ValueError:
            raise ValidationFailureError("支付方式无效")

        with self._locked(f"lock:checkout:{user_id}"):
            try:
                order = self._build_order(user_id, address_id, method, note, coupon_code)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"创建订单失败: user_id={user_id}, error={str(e)}")
                raise

        if order.inventory_deducted:
            self.inventory.invalidate_cache(self._item_pairs(order))
        logger.info(
            f"创建订单成功: code={order.code}, user_id={user_id}, "
            f"total={order.total_after_discount_and_shipping}, payment={method.value}"
        )
        return order

    def _build_order(self, user_id, address_id, method, note, coupon_code) -> Order:
        address = self.carts.find_user_address(user_id, address_id)

        cart = self.carts.get_cart_snapshot(user_id)
        if cart is None or not cart.items:
            raise InvalidStateError("购物车为空，无法创建订单")

        selected = [item for item in cart.items if item.is_selected]
        if not selected:
            raise InvalidStateError("请至少选择一件商品进行结算")

        # 整单校验：收集所有不可售的行，一次性报错
        order_items = []
        unavailable = []
        for line in selected:
            reason = self.inventory.check_availability(line.variant_id, line.size_id, line.quantity)
            if reason:
                unavailable.append(f"{line.product_name}（{reason}）")
                continue
            order_items.append(OrderItem(
                variant_id=line.variant_id,
                size_id=line.size_id,
                product_name=line.product_name,
                quantity=line.quantity,
                price=line.price,
                image=line.image or "",
            ))

        if unavailable:
            raise InvalidStateError(f"部分商品不可购买: {', '.join(unavailable)}")

        sub_total = sum(item.price * item.quantity for item in order_items)

        reservation = None
        discount = 0
        if coupon_code:
            reservation = self.coupons.reserve(coupon_code, user_id, sub_total)
            discount = reservation.discount

        shipping_fee = calculate_shipping_fee(sub_total)

        order = Order(
            code=generate_order_code(),
            user_id=user_id,
            shipping_name=address.full_name,
            shipping_phone=address.phone,
            shipping_province=address.province,
            shipping_district=address.district,
            shipping_ward=address.ward,
            shipping_detail=address.address_detail,
            note=note or "",
            sub_total=sub_total,
            discount=discount,
            shipping_fee=shipping_fee,
            total_after_discount_and_shipping=sub_total - discount + shipping_fee,
            status=OrderStatus.PENDING,
            payment_method=method,
            payment_status=PaymentStatus.PENDING,
            inventory_deducted=False,
            cancel_reason="",
            items=order_items,
        )
        self._append_history(order, OrderStatus.PENDING, "订单已创建", user_id)

        if reservation:
            order.coupon_id = reservation.coupon.id
            order.coupon_detail = reservation.snapshot
            self.coupons.commit(reservation)

        self.db.add(order)

        # 货到付款立即扣减库存；在线支付在确认支付后扣减
        if method == PaymentMethod.COD:
            self._deduct_inventory(order, source="checkout")

        self.carts.clear_consumed_lines(cart, lambda item: item.is_selected and item.is_available)
        self.db.flush()
        return order

    # ==================== 用户取消 ====================

    def cancel_order(self, order_id: int, user_id: int, reason: str) -> dict:
        """用户取消订单

        待确认订单立即取消（申请自动同意）；已确认订单只提交申请，等待管理员审核。
        """
        with self._locked(f"lock:order:{order_id}"):
            try:
                order = self._get_order(order_id)

                if order.user_id != user_id:
                    raise ForbiddenError("您无权取消此订单")

                if order.status not in CANCELLABLE_STATUSES:
                    raise InvalidStateError("只有待确认或已确认的订单可以取消")

                reason = (reason or "").strip()
                if not reason:
                    raise ValidationFailureError("请提供取消原因")

                if order.has_cancel_request:
                    raise InvalidStateError("该订单已有待处理的取消申请")

                cancel_request = CancelRequest(
                    order_id=order.id,
                    user_id=user_id,
                    reason=reason,
                    status=CancelRequestStatus.PENDING,
                    admin_response="",
                )
                self.db.add(cancel_request)
                self.db.flush()

                restored = order.inventory_deducted
                if order.status == OrderStatus.PENDING:
                    cancel_request.status = CancelRequestStatus.APPROVED
                    cancel_request.resolved_at = utcnow()
                    cancel_request.admin_response = "订单尚未确认，已自动取消"
                    self._cancel_now(order, cancel_request, f"订单已自动取消。原因: {reason}", user_id)
                    message = "订单已取消"
                else:
                    order.cancel_request_id = cancel_request.id
                    order.pending_cancel_request_id = cancel_request.id
                    restored = False
                    message = "取消申请已提交，等待处理"

                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"取消订单失败: order_id={order_id}, error={str(e)}")
                raise

        if restored:
            self.inventory.invalidate_cache(self._item_pairs(order))
        logger.info(f"{message}: order={order.code}, cancel_request_id={cancel_request.id}")
        return {"message": message, "cancel_request": cancel_request, "order": order}

    # ==================== 管理员状态流转 ====================

    def update_order_status(self, order_id: int, status: str, note: str = None, admin_id: int = None) -> dict:
        target = _parse_status(status, OrderStatus, "订单状态无效")
        if target is None:
            raise ValidationFailureError("订单状态无效")

        with self._locked(f"lock:order:{order_id}"):
            try:
                order = self._get_order(order_id)

                if order.status == target:
                    raise InvalidStateError(f"订单已处于 {target.value} 状态")

                if target == OrderStatus.CANCELLED:
                    raise InvalidStateError("不能直接取消订单，请通过取消申请处理")

                if order.has_cancel_request:
                    raise InvalidStateError("订单有待处理的取消申请，请先处理取消申请")

                if target not in VALID_STATUS_TRANSITIONS[order.status]:
                    raise InvalidStateError(
                        f"无法从 {order.status.value} 变更为 {target.value}"
                    )

                if (
                    order.payment_method == PaymentMethod.VNPAY
                    and target in PAID_REQUIRED_STATUSES
                    and order.payment_status != PaymentStatus.PAID
                ):
                    raise InvalidStateError(
                        f"在线支付订单尚未付款，无法变更为 {target.value}"
                    )

                previous = order.status
                now = utcnow()
                order.status = target
                self._append_history(order, target, note, admin_id)

                if target == OrderStatus.CONFIRMED:
                    order.confirmed_at = now
                elif target == OrderStatus.SHIPPING:
                    order.shipping_at = now
                elif target == OrderStatus.DELIVERED:
                    order.delivered_at = now
                    # 货到付款在送达时收款
                    if order.payment_method == PaymentMethod.COD and order.payment_status != PaymentStatus.PAID:
                        order.payment_status = PaymentStatus.PAID
                        order.paid_at = now

                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"更新订单状态失败: order_id={order_id}, error={str(e)}")
                raise

        logger.info(f"订单状态更新: order={order.code}, {previous.value} → {target.value}")
        return {
            "message": f"订单状态已从 {previous.value} 更新为 {target.value}",
            "data": {
                "orderId": order.id,
                "code": order.code,
                "previousStatus": previous.value,
                "currentStatus": target.value,
                "updatedAt": now.isoformat(),
            },
        }

    # ==================== 管理员审核取消申请 ====================

    def process_cancel_request(
        self,
        request_id: int,
        status: str,
        admin_response: str = None,
        admin_id: int = None,
    ) -> dict:
        """审核取消申请（可撤销之前的决定）"""
        decision = _parse_status(status, CancelRequestStatus, "处理状态无效")
        if decision not in (CancelRequestStatus.APPROVED, CancelRequestStatus.REJECTED):
            raise ValidationFailureError("处理状态无效")

        cancel_request = self.db.get(CancelRequest, request_id)
        if cancel_request is None:
            raise NotFoundError("找不到取消申请")

        with self._locked(f"lock:order:{cancel_request.order_id}"):
            try:
                self.db.refresh(cancel_request)
                if cancel_request.status == decision:
                    raise InvalidStateError(f"取消申请已处于 {decision.value} 状态")

                order = self.db.get(Order, cancel_request.order_id)
                if order is None:
                    raise NotFoundError("找不到关联订单")

                previous = cancel_request.status
                was_approved = previous == CancelRequestStatus.APPROVED
                was_rejected = previous == CancelRequestStatus.REJECTED
                restored = order.inventory_deducted
                now = utcnow()

                if was_approved and decision == CancelRequestStatus.REJECTED:
                    self._reverse_cancellation(order, cancel_request, admin_id, now)
                    restored = False
                elif decision == CancelRequestStatus.APPROVED:
                    if order.status not in CANCELLABLE_STATUSES:
                        raise InvalidStateError(
                            f"订单当前状态为 {order.status.value}，无法取消"
                        )
                    self._cancel_now(
                        order,
                        cancel_request,
                        f"订单已按申请取消。原因: {cancel_request.reason}",
                        admin_id,
                    )
                else:
                    restored = False

                # 只清除指向本申请的阻塞标记；订单已取消时不再有可阻塞的流转
                if order.pending_cancel_request_id == cancel_request.id or order.status == OrderStatus.CANCELLED:
                    order.pending_cancel_request_id = None

                cancel_request.status = decision
                cancel_request.admin_response = admin_response or ""
                cancel_request.resolved_at = now
                cancel_request.processed_by = admin_id

                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"处理取消申请失败: request_id={request_id}, error={str(e)}")
                raise

        if restored:
            self.inventory.invalidate_cache(self._item_pairs(order))

        if decision == CancelRequestStatus.APPROVED:
            message = "已改为同意取消申请" if was_rejected else "已同意取消申请"
        else:
            message = "已改为拒绝取消申请" if was_approved else "已拒绝取消申请"

        logger.info(f"{message}: request_id={cancel_request.id}, order={order.code}")
        return {
            "message": message,
            "data": {
                "cancelRequest": {
                    "id": cancel_request.id,
                    "status": cancel_request.status.value,
                    "previousStatus": previous.value,
                    "decisionChanged": previous != CancelRequestStatus.PENDING,
                    "resolvedAt": cancel_request.resolved_at.isoformat(),
                    "adminResponse": cancel_request.admin_response,
                },
                "order": {
                    "id": order.id,
                    "code": order.code,
                    "status": order.status.value,
                    "previouslyHadCancelRequest": previous != CancelRequestStatus.PENDING,
                },
            },
        }

    def _reverse_cancellation(self, order: Order, cancel_request: CancelRequest, admin_id: int, now) -> None:
        """撤销已同意的取消：恢复到取消前的状态

        已归还的库存不会重新扣减。
        """
        if order.status != OrderStatus.CANCELLED or order.cancel_request_id != cancel_request.id:
            raise InvalidStateError("订单未处于取消状态或并非由该申请取消，无法拒绝")

        cancelled_at = as_utc(order.cancelled_at)
        if cancelled_at is None or now - cancelled_at > CANCEL_REVERSAL_WINDOW:
            raise InvalidStateError("订单取消已超过 24 小时，无法拒绝取消申请")

        restored_status = self._status_before_cancellation(order)
        order.status = restored_status
        order.cancel_reason = ""
        order.cancelled_at = None
        self._append_history(order, restored_status, "拒绝取消申请，订单已恢复", admin_id)

    # ==================== 在线支付 ====================

    def confirm_payment(self, order_id: int, transaction_ref: str = None) -> Order:
        """确认在线支付到账，并在此时扣减库存"""
        with self._locked(f"lock:order:{order_id}"):
            try:
                order = self._get_order(order_id)

                if order.payment_method != PaymentMethod.VNPAY:
                    raise InvalidStateError("只有在线支付订单需要确认支付")
                if order.status == OrderStatus.CANCELLED:
                    raise InvalidStateError("订单已取消，无法确认支付")
                if order.payment_status == PaymentStatus.PAID:
                    raise InvalidStateError("订单已支付")

                order.payment_status = PaymentStatus.PAID
                order.paid_at = utcnow()
                order.payment_ref = transaction_ref

                deducted_now = not order.inventory_deducted
                if deducted_now:
                    self._deduct_inventory(order, source="payment")

                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"确认支付失败: order_id={order_id}, error={str(e)}")
                raise

        if deducted_now:
            self.inventory.invalidate_cache(self._item_pairs(order))
        logger.info(f"确认支付成功: order={order.code}, ref={transaction_ref}")
        return order

    def _is_expirable(self, order: Order) -> bool:
        return (
            order.payment_method == PaymentMethod.VNPAY
            and order.payment_status == PaymentStatus.PENDING
            and order.status == OrderStatus.PENDING
            and order.pending_cancel_request_id is None
        )

    def expire_unpaid_orders(self, timeout_minutes: int = None, batch_size: int = 100) -> int:
        """取消超时未付款的在线支付订单，返回取消数量"""
        timeout = timeout_minutes or settings.UNPAID_ORDER_TIMEOUT_MINUTES
        cutoff = utcnow() - timedelta(minutes=timeout)

        orders = self.db.execute(
            select(Order)
            .where(
                Order.payment_method == PaymentMethod.VNPAY,
                Order.payment_status == PaymentStatus.PENDING,
                Order.status == OrderStatus.PENDING,
                Order.pending_cancel_request_id.is_(None),
                Order.created_at <= cutoff,
            )
            .order_by(Order.created_at)
            .limit(batch_size)
            .with_for_update(skip_locked=True)
        ).scalars().all()

        if not orders:
            return 0

        logger.info(f"本次处理 {len(orders)} 个超时未付款订单")
        total_cancelled = 0
        for order in orders:
            try:
                with self._locked(f"lock:order:{order.id}"):
                    # 等锁期间订单可能已付款或已被用户取消
                    self.db.refresh(order)
                    if not self._is_expirable(order):
                        logger.info(f"订单状态已变化，跳过自动取消: order={order.code}")
                        continue

                    cancel_request = CancelRequest(
                        order_id=order.id,
                        user_id=order.user_id,
                        reason=UNPAID_TIMEOUT_REASON,
                        status=CancelRequestStatus.APPROVED,
                        admin_response="系统自动取消",
                        resolved_at=utcnow(),
                    )
                    self.db.add(cancel_request)
                    self.db.flush()
                    restored = order.inventory_deducted
                    self._cancel_now(order, cancel_request, UNPAID_TIMEOUT_REASON)
                    self.db.commit()
                if restored:
                    self.inventory.invalidate_cache(self._item_pairs(order))
                total_cancelled += 1
            except LockConflictError:
                logger.warning(f"订单正在被处理，跳过: order={order.code}")
            except Exception as e:
                logger.error(f"自动取消订单失败: order={order.code}, error={str(e)}")
                self.db.rollback()

        logger.info(f"超时未付款订单处理完成，共取消 {total_cancelled} 个")
        return total_cancelled

    # ==================== 查询 ====================

    def get_user_orders(self, user_id: int, page: int = 1, limit: int = 90, status: str = None, search: str = None) -> dict:
        stmt = select(Order).where(Order.user_id == user_id)

        status_filter = _parse_status(status, OrderStatus, "订单状态无效")
        if status_filter:
            stmt = stmt.where(Order.status == status_filter)

        if search:
            pattern = f"%{search}%"
            stmt = stmt.where(or_(
                Order.code.ilike(pattern),
                Order.shipping_name.ilike(pattern),
                Order.shipping_phone.ilike(pattern),
            ))

        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
        data, pagination = paginate(self.db, stmt, page, limit)

        # 按状态统计
        stats = {s.value: 0 for s in OrderStatus}
        stats["total"] = 0
        rows = self.db.execute(
            select(Order.status, func.count())
            .where(Order.user_id == user_id)
            .group_by(Order.status)
        ).all()
        for order_status, count in rows:
            stats[OrderStatus(order_status).value] = count
            stats["total"] += count

        return {"data": data, "pagination": pagination, "stats": stats}

    def get_order_by_id(self, order_id: int, user_id: int) -> Order:
        order = self._get_order(order_id)
        if order.user_id != user_id:
            raise ForbiddenError("您无权查看此订单")
        return order

    def get_all_orders(self, page: int = 1, limit: int = 90, status: str = None, search: str = None) -> dict:
        stmt = select(Order)

        status_filter = _parse_status(status, OrderStatus, "订单状态无效")
        if status_filter:
            stmt = stmt.where(Order.status == status_filter)

        if search:
            pattern = f"%{search}%"
            user_ids = select(User.id).where(or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone.ilike(pattern),
            ))
            stmt = stmt.where(or_(
                Order.code.ilike(pattern),
                Order.user_id.in_(user_ids),
                Order.shipping_name.ilike(pattern),
                Order.shipping_phone.ilike(pattern),
            ))

        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())
        data, pagination = paginate(self.db, stmt, page, limit)
        return {"data": data, "pagination": pagination}

    def get_order_detail(self, order_id: int) -> Order:
        return self._get_order(order_id)

    def get_cancel_requests(self, page: int = 1, limit: int = 50, status: str = None, search: str = None) -> dict:
        stmt = select(CancelRequest)

        status_filter = _parse_status(status, CancelRequestStatus, "取消申请状态无效")
        if status_filter:
            stmt = stmt.where(CancelRequest.status == status_filter)

        if search:
            pattern = f"%{search}%"
            user_ids = select(User.id).where(or_(
                User.name.ilike(pattern),
                User.email.ilike(pattern),
                User.phone.ilike(pattern),
            ))
            order_ids = select(Order.id).where(Order.code.ilike(pattern))
            stmt = stmt.where(or_(
                CancelRequest.user_id.in_(user_ids),
                CancelRequest.order_id.in_(order_ids),
            ))

        stmt = stmt.order_by(CancelRequest.created_at.desc(), CancelRequest.id.desc())
        data, pagination = paginate(self.db, stmt, page, limit)
        return {"data": data, "pagination": pagination}

    def get_user_cancel_requests(self, user_id: int, page: int = 1, limit: int = 50, status: str = None) -> dict:
        stmt = select(CancelRequest).where(CancelRequest.user_id == user_id)

        status_filter = _parse_status(status, CancelRequestStatus, "取消申请状态无效")
        if status_filter:
            stmt = stmt.where(CancelRequest.status == status_filter)

        stmt = stmt.order_by(CancelRequest.created_at.desc(), CancelRequest.id.desc())
        data, pagination = paginate(self.db, stmt, page, limit)
        return {"data": data, "pagination": pagination}
