"""购物车与收货地址（订单服务的外部协作方）"""

import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models.cart import Cart, CartItem
from app.models.user import User, UserAddress

logger = logging.getLogger(__name__)


class CartService:

    def __init__(self, db: Session):
        self.db = db

    def find_user_address(self, user_id: int, address_id: int) -> UserAddress:
        """从用户地址列表中查找收货地址"""
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("找不到用户")

        address = next((a for a in user.addresses if a.id == address_id), None)
        if address is None:
            raise NotFoundError("找不到收货地址")
        return address

    def get_cart_snapshot(self, user_id: int) -> Optional[Cart]:
        return self.db.execute(
            select(Cart).where(Cart.user_id == user_id)
        ).scalar_one_or_none()

    def clear_consumed_lines(self, cart: Cart, predicate: Callable[[CartItem], bool]) -> int:
        """删除已下单的购物车行并重新计算合计，返回删除行数"""
        consumed = [item for item in cart.items if predicate(item)]
        if not consumed:
            return 0

        for item in consumed:
            cart.items.remove(item)

        cart.total_items = sum(item.quantity for item in cart.items)
        cart.sub_total = sum(item.price * item.quantity for item in cart.items)
        logger.info(f"已从购物车移除 {len(consumed)} 件商品: cart_id={cart.id}")
        return len(consumed)
