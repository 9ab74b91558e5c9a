# payrecon/workers/celery_app.py
import os
from datetime import timedelta

from celery import Celery
from celery.signals import setup_logging

from payrecon.logging_config import configure_logging_for_worker

celery = Celery(
    "payrecon",
    broker=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    backend=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
    include=["payrecon.workers.tasks"],
)

celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging_for_worker()


def build_beat_schedule(config):
    return {
        "expire-grace-periods": {
            "task": "payrecon.workers.tasks.expire_grace_periods",
            "schedule": timedelta(seconds=config.get("GRACE_SWEEP_INTERVAL", 3600)),
        },
        "cleanup-abandoned-checkouts": {
            "task": "payrecon.workers.tasks.cleanup_abandoned_checkouts",
            "schedule": timedelta(seconds=config.get("CHECKOUT_SWEEP_INTERVAL", 900)),
        },
    }


def init_celery(app):
    celery.conf.update(
        broker_url=app.config.get("REDIS_URL"),
        result_backend=app.config.get("REDIS_URL"),
        beat_schedule=build_beat_schedule(app.config),
        task_always_eager=app.config.get("TESTING", False),
    )

    class ContextTask(celery.Task):
        abstract = True

        def __call__(self, *args, **kwargs):
            with app.app_context():
                return super().__call__(*args, **kwargs)

    celery.Task = ContextTask
    app.extensions["celery"] = celery
    return celery
