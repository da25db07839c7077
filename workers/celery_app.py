import os
from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

load_dotenv()

broker = os.getenv("REDIS_URL", "redis://localhost:6379/0")
backend = broker

celery = Celery("personalization_workers", broker=broker, backend=backend, include=["workers.tasks"])
celery.conf.task_routes = {
    "tasks.record_interaction": {"queue": "personalization"},
    "tasks.cleanup_user_state": {"queue": "personalization"},
    "tasks.cleanup_expired_state": {"queue": "personalization"},
}

# Beat schedule for periodic tasks
celery.conf.beat_schedule = {
    "cleanup-expired-state-daily": {
        "task": "tasks.cleanup_expired_state",
        "schedule": crontab(hour=3, minute=30),  # Daily 3:30 AM
    },
}
