from enum import Enum


class NotificationKind(str, Enum):
    ORDER_CONFIRMATION = "order_confirmation"
    SHIPPING_NOTIFICATION = "shipping_notification"
    DELIVERY_CONFIRMATION = "delivery_confirmation"
    CUSTOM = "custom"
