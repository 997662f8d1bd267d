import json

from rakhimart.routes.user_orders import sse_events
from rakhimart.services.order_feed import OrderFeed
from rakhimart.services.order_lifecycle import OrderLifecycle
from rakhimart.services.order_state_machine import PaymentSucceeded
from tests.conftest import make_order


def test_subscribers_only_see_their_orders(session, products, feed):
    mine = feed.subscribe(user_id="user-1")
    theirs = feed.subscribe(user_id="user-2")
    everyone = feed.subscribe()

    order = make_order(session, products["designer-rakhi"])
    OrderLifecycle(session, feed).apply(PaymentSucceeded(order.order_number))

    assert mine.get(timeout=0)["status"] == "confirmed"
    assert theirs.get(timeout=0) is None
    assert everyone.get(timeout=0)["order_number"] == order.order_number


def test_closed_subscription_stops_receiving(session, products, feed):
    with feed.subscribe(user_id="user-1") as subscription:
        pass

    order = make_order(session, products["designer-rakhi"])
    OrderLifecycle(session, feed).apply(PaymentSucceeded(order.order_number))

    assert subscription.get(timeout=0) is None


def test_slow_consumer_drops_updates(session, products):
    feed = OrderFeed(maxsize=1)
    subscription = feed.subscribe()
    order = make_order(session, products["designer-rakhi"])

    assert feed.publish(order) == 1
    assert feed.publish(order) == 0
    assert subscription.get(timeout=0) is not None
    assert subscription.get(timeout=0) is None


def test_sse_framing(session, products, feed):
    subscription = feed.subscribe(user_id="user-1")
    order = make_order(session, products["designer-rakhi"])
    feed.publish(order)

    frames = list(sse_events(subscription, heartbeat=0, max_events=1))

    assert len(frames) == 1
    event, data = frames[0].strip().split("\n")
    assert event == "event: order"
    assert json.loads(data[len("data: "):])["order_number"] == order.order_number

    # generator closes the subscription when it finishes
    feed.publish(order)
    assert subscription.get(timeout=0) is None


def test_sse_heartbeat_when_idle(feed):
    stream = sse_events(feed.subscribe(), heartbeat=0)

    assert next(stream) == ": keep-alive\n\n"
    stream.close()
