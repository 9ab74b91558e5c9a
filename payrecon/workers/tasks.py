from celery import shared_task
from celery.utils.log import get_task_logger

from payrecon.workers.sweeper import Sweeper

logger = get_task_logger(__name__)


@shared_task(name="payrecon.workers.tasks.expire_grace_periods")
def expire_grace_periods():
    count = Sweeper().expire_grace_periods()
    logger.info(f"Downgraded {count} users with expired grace periods")
    return count


@shared_task(name="payrecon.workers.tasks.cleanup_abandoned_checkouts")
def cleanup_abandoned_checkouts():
    count = Sweeper().cleanup_abandoned_checkouts()
    logger.info(f"Marked {count} checkout sessions abandoned")
    return count
