from celery import Celery

from contrib_leaderboard.core.config import settings

celery_app = Celery(
    "contrib_leaderboard",
    broker=settings.celery_broker_url or str(settings.redis_url),
    backend=settings.celery_result_backend or str(settings.redis_url),
    include=[
        "contrib_leaderboard.workers.tasks.leaderboard_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.job_default_timeout,
    task_soft_time_limit=settings.job_default_timeout - 60,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Periodic tasks
celery_app.conf.beat_schedule = {
    "refresh-all-users-daily": {
        "task": "contrib_leaderboard.workers.tasks.leaderboard_tasks.refresh_all_users_daily",
        "schedule": 3600.0,  # Every hour
    },
}
