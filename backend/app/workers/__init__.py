from celery import Celery
from dotenv import load_dotenv
from app.config import settings

load_dotenv()

celery_app = Celery(
    "qahub",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.task_serializer = "json"
celery_app.conf.result_serializer = "json"

celery_app.autodiscover_tasks(["app.workers"])
