# config/celery.py

import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('marketplace')

# All CELERY_* keys from Django settings
app.config_from_object('django.conf:settings', namespace='CELERY')

# tasks.py of every installed app
app.autodiscover_tasks()
