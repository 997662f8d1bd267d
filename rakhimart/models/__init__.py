from rakhimart.models.product import Product
from rakhimart.models.order_item import OrderItem
from rakhimart.models.order import Order
from rakhimart.models.order_event import OrderEvent
from rakhimart.models.email import EmailLog
from rakhimart.models.operator_alert import OperatorAlert, AlertKind
from rakhimart.models.app_setting import AppSetting
from rakhimart.models.profile import Profile

# add ALL models here
