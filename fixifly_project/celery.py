import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'fixifly_project.settings')

app = Celery('fixifly_project')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()

# Beat schedule - same logic as the management commands
app.conf.beat_schedule = {
    'auto-decline-overdue-assignments': {
        'task': 'fixifly.tasks.auto_decline_overdue_assignments_task',
        'schedule': crontab(),  # Every minute
    },
    'retry-failed-penalties': {
        'task': 'fixifly.tasks.retry_failed_penalties_task',
        'schedule': crontab(minute='*/10'),
    },
    'dispatch-domain-events': {
        'task': 'fixifly.tasks.dispatch_domain_events_task',
        'schedule': crontab(),
    },
}
