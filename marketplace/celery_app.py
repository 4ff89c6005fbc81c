"""Celery application that carries domain events to the notification worker.

Run the worker with ``celery -A marketplace.celery_app worker -Q domain_events``.
"""
from celery import Celery

from core.config import Settings, get_settings

EVENTS_QUEUE = "domain_events"


def make_celery(settings: Settings | None = None) -> Celery:
    settings = settings or get_settings()
    app = Celery(
        'orderhub',
        broker=settings.celery_broker,
        backend=settings.celery_backend,
        include=['marketplace.tasks'],
    )
    app.conf.update(
        broker_url=settings.celery_broker,
        result_backend=settings.celery_backend,

        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='Asia/Tashkent',
        enable_utc=True,

        task_default_queue=EVENTS_QUEUE,
        worker_prefetch_multiplier=1,
        task_acks_late=True,  # Acknowledge only after the event has been handed over
        task_default_retry_delay=60,
        task_max_retries=3,

        # Publishing happens inside request handlers
        task_publish_retry_policy={
            'max_retries': settings.celery_publish_retries,
            'interval_start': 0,
            'interval_step': 0.2,
            'interval_max': 0.5,
        },
        result_expires=24 * 60 * 60,
    )
    return app


celery_app = make_celery()

if __name__ == '__main__':
    celery_app.start()
