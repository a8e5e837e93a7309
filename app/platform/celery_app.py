from celery import Celery
from kombu import Queue

from app.platform.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Queue Structure:
    - waitlist.events: verification events that may trigger referral rewards
    - waitlist.maintenance: recompute / drift repair of campaign positions
    """
    celery_app = Celery(
        "waitlist_ranking",
        broker=settings.CELERY_BROKER_URL,
        backend=settings.CELERY_RESULT_BACKEND,
    )

    celery_app.conf.update(
        task_serializer=settings.CELERY_TASK_SERIALIZER,
        result_serializer=settings.CELERY_RESULT_SERIALIZER,
        accept_content=[settings.CELERY_ACCEPT_CONTENT],
        timezone="UTC",
        enable_utc=True,
        task_time_limit=settings.CELERY_TASK_TIME_LIMIT,

        result_expires=3600,

        task_routes={
            "app.features.waitlist.workers.tasks.process_entrant_verified": {"queue": "waitlist.events"},
            "app.features.waitlist.workers.tasks.recompute_campaign_positions": {"queue": "waitlist.maintenance"},
            "app.features.waitlist.workers.tasks.recompute_active_campaigns": {"queue": "waitlist.maintenance"},
        },

        task_queues=(
            Queue("default"),
            Queue("waitlist.events"),
            Queue("waitlist.maintenance"),
        ),

        task_default_queue="default",

        worker_prefetch_multiplier=1,  # Fair distribution

        task_acks_late=True,  # Acknowledge after task completes
        task_reject_on_worker_lost=True,  # Requeue if worker dies

        beat_schedule={
            "recompute-active-campaigns": {
                "task": "app.features.waitlist.workers.tasks.recompute_active_campaigns",
                "schedule": settings.RECOMPUTE_INTERVAL_SECONDS,
            },
        },
    )

    celery_app.autodiscover_tasks(["app.features.waitlist.workers"])

    return celery_app


# Global Celery app instance
celery_app = create_celery_app()
