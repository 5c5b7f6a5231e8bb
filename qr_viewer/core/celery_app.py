"""
Celery application for DETECTION_BACKEND=celery

- Detection has its own queue so workers can be scaled separately
- At-most-once delivery: ack on receipt, never retry, never redeliver
- Beat runs retention cleanup once a day
"""

from celery import Celery
from kombu import Queue

from qr_viewer.core.config import settings

DETECTION_QUEUE = "detection"

celery_app = Celery(
    "qr_viewer",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["qr_viewer.pipeline.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    task_queues=(
        Queue("default", routing_key="default"),
        Queue(DETECTION_QUEUE, routing_key="detection.#"),
    ),
    task_default_queue="default",
    task_routes={
        "qr_viewer.pipeline.tasks.detect_codes": {"queue": DETECTION_QUEUE},
        "qr_viewer.pipeline.tasks.cleanup_old_uploads": {"queue": "default"},
    },

    # A detection run must never be delivered twice
    task_acks_late=False,
    task_reject_on_worker_lost=False,
    task_max_retries=0,

    # Decoding is CPU bound; one prefetched message per worker process
    worker_prefetch_multiplier=1,
    result_expires=3600,
)

celery_app.conf.beat_schedule = {
    "cleanup-old-uploads": {
        "task": "qr_viewer.pipeline.tasks.cleanup_old_uploads",
        "schedule": 86400.0,
    },
}
