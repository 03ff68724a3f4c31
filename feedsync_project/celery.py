import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'feedsync_project.settings')

app = Celery('feedsync')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
