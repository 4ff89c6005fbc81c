import logging
from typing import Any

from marketplace.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="deliver_domain_event")
def deliver_domain_event(self, event_name: str, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Hand a domain event to the notification subsystem.

    Args:
        event_name: Event name, e.g. ``application_accepted``
        payload: JSON-serialisable event fields

    Returns:
        Dict: delivery receipt for the result backend
    """
    logger.info(
        "Delivering domain event",
        extra={"event": event_name, "order_id": payload.get("order_id")},
    )
    return {
        "status": "queued",
        "event": event_name,
        "order_id": payload.get("order_id"),
    }
