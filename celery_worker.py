"""Entry point for `celery -A celery_worker.celery worker|beat`."""

import os

from dotenv import load_dotenv

load_dotenv()

from payrecon import create_app  # noqa: E402
from payrecon.workers.celery_app import celery  # noqa: E402,F401

app = create_app(os.getenv("APP_ENV", "production"))
