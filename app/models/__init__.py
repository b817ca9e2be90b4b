# Models
from .user import User, UserAddress
from .product import Product, Size, Variant, VariantSize
from .cart import Cart, CartItem
from .coupon import Coupon, CouponStatus, CouponType
from .order import (
    Order,
    OrderItem,
    OrderStatusHistory,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from .cancel_request import CancelRequest, CancelRequestStatus
from .inventory_logs import InventoryLog, ChangeType

__all__ = [
    "User",
    "UserAddress",
    "Product",
    "Size",
    "Variant",
    "VariantSize",
    "Cart",
    "CartItem",
    "Coupon",
    "CouponStatus",
    "CouponType",
    "Order",
    "OrderItem",
    "OrderStatusHistory",
    "OrderStatus",
    "PaymentMethod",
    "PaymentStatus",
    "CancelRequest",
    "CancelRequestStatus",
    "InventoryLog",
    "ChangeType",
]
