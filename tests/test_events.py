from decimal import Decimal
from unittest.mock import patch

from kombu.exceptions import OperationalError

from marketplace.events import (
    ApplicationAccepted,
    ApplicationSubmitted,
    CeleryEventDispatcher,
    InMemoryEventDispatcher,
    OrderCompleted,
    dispatch_all,
)
from core.config import get_settings
from marketplace.celery_app import EVENTS_QUEUE, celery_app, make_celery
from marketplace.tasks import deliver_domain_event


def test_payload_is_json_friendly():
    event = ApplicationAccepted(order_id=1, application_id=2, executor_id=3, rejected_application_ids=(4, 5))
    assert event.as_payload() == {
        "order_id": 1,
        "application_id": 2,
        "executor_id": 3,
        "rejected_application_ids": (4, 5),
    }
    submitted = ApplicationSubmitted(
        order_id=1, application_id=2, executor_id=3, customer_id=4, proposed_price=Decimal("350000.00")
    )
    assert submitted.as_payload()["proposed_price"] == "350000.00"


def test_celery_dispatcher_queues_task():
    event = OrderCompleted(order_id=7, customer_id=100, executor_id=3, rating=5)
    with patch("marketplace.tasks.deliver_domain_event.delay") as delay:
        CeleryEventDispatcher().dispatch(event)
    delay.assert_called_once_with(
        "order_completed", {"order_id": 7, "customer_id": 100, "executor_id": 3, "rating": 5}
    )


def test_celery_dispatcher_survives_broker_outage():
    event = OrderCompleted(order_id=7, customer_id=100, executor_id=3)
    with patch("marketplace.tasks.deliver_domain_event.delay", side_effect=OperationalError("broker down")) as delay:
        CeleryEventDispatcher().dispatch(event)
    delay.assert_called_once()


def test_dispatch_all_keeps_order():
    dispatcher = InMemoryEventDispatcher()
    events = [
        ApplicationSubmitted(order_id=1, application_id=1, executor_id=1, customer_id=1),
        OrderCompleted(order_id=1, customer_id=1, executor_id=1),
    ]
    dispatch_all(dispatcher, events)
    assert dispatcher.events == events
    assert dispatcher.of_type(OrderCompleted) == [events[1]]


def test_deliver_domain_event_returns_receipt():
    receipt = deliver_domain_event("order_completed", {"order_id": 7})
    assert receipt == {"status": "queued", "event": "order_completed", "order_id": 7}


def test_deliver_domain_event_is_bound_to_configured_app():
    assert deliver_domain_event.app is celery_app
    assert deliver_domain_event.app.main == "orderhub"
    assert celery_app.conf.broker_url == get_settings().celery_broker
    assert celery_app.conf.task_default_queue == EVENTS_QUEUE


def test_make_celery_bounds_publish_retries():
    settings = get_settings().model_copy(update={"celery_publish_retries": 0})
    app = make_celery(settings)
    assert app.conf.task_publish_retry_policy["max_retries"] == 0
