"""
Celery application for background jobs (integration reconciliation,
ledger verification).
"""
import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('retail_ledger')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
