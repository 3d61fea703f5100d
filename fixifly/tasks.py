# fixifly/tasks.py

from celery import shared_task
from django.utils import timezone
import logging

logger = logging.getLogger(__name__)


@shared_task
def auto_decline_overdue_assignments_task():
    """
    Decline assignments nobody answered within the response window and
    charge the decline penalty. Scheduled every minute by beat.
    """
    from fixifly.services.task_lifecycle import auto_decline_overdue_assignments

    declined = auto_decline_overdue_assignments(now=timezone.now())
    return {'declined': declined}


@shared_task
def retry_failed_penalties_task():
    from fixifly.services.task_lifecycle import retry_failed_penalties

    recovered = retry_failed_penalties()
    return {'recovered': recovered}


@shared_task
def dispatch_domain_events_task(limit: int = 100):
    """Deliver outbox events as in-app notifications and websocket pushes."""
    from fixifly.services.events import dispatch_pending

    delivered = dispatch_pending(limit=limit)
    return {'delivered': delivered}
