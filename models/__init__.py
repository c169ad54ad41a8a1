# models/__init__.py
"""
Models package initialization.
Exports the declarative base, the enums and every model.
"""

from .models import (
    Base,
    UserRole,
    ShopStatus,
    OrderStatus,
    ApprovalStatus,
    DeliveryStatus,
    DeliveryAgentStatus,
    PaymentMethod,
    PaymentStatus,
    NotificationType,
    User,
    CustomerAddress,
    Shop,
    Product,
    Order,
    OrderItem,
    DeliveryAgent,
    Delivery,
    Notification,
)

__all__ = [
    'Base',
    'UserRole',
    'ShopStatus',
    'OrderStatus',
    'ApprovalStatus',
    'DeliveryStatus',
    'DeliveryAgentStatus',
    'PaymentMethod',
    'PaymentStatus',
    'NotificationType',
    'User',
    'CustomerAddress',
    'Shop',
    'Product',
    'Order',
    'OrderItem',
    'DeliveryAgent',
    'Delivery',
    'Notification',
]
