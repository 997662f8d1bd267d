from rakhimart.notifications.events import NotificationKind
from rakhimart.notifications.channels import Channel


NOTIFICATION_RULES = {

    NotificationKind.ORDER_CONFIRMATION: {
        Channel.EMAIL_USER: True,
        Channel.EMAIL_ADMIN: True,
    },

    NotificationKind.SHIPPING_NOTIFICATION: {
        Channel.EMAIL_USER: True,
    },

    NotificationKind.DELIVERY_CONFIRMATION: {
        Channel.EMAIL_USER: True,
    },

    NotificationKind.CUSTOM: {
        Channel.EMAIL_USER: True,
    },

}
