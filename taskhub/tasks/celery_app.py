"""Celery application and beat schedule."""
from celery import Celery

from taskhub.config import settings

celery_app = Celery(
    "taskhub",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["taskhub.tasks.proofs", "taskhub.tasks.archive"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_routes={
        "taskhub.tasks.proofs.store_task_proofs": {"queue": "proof_upload"},
        "taskhub.tasks.proofs.store_task_shared_proofs": {"queue": "shared_proof_upload"},
    },
    beat_schedule={
        "archive-tasks": {
            "task": "taskhub.tasks.archive.archive_tasks",
            "schedule": float(settings.CELERY_BEAT_ARCHIVE_INTERVAL),
        },
        "archive-overdue-after-shift": {
            "task": "taskhub.tasks.archive.archive_overdue_after_shift",
            "schedule": float(settings.CELERY_BEAT_POST_SHIFT_INTERVAL),
        },
        "cleanup-temp-proof-uploads": {
            "task": "taskhub.tasks.proofs.cleanup_temp_proof_uploads",
            "schedule": float(settings.CELERY_BEAT_TEMP_CLEANUP_INTERVAL),
        },
    },
)
