# adaptive_escrow/tasks/celery_app.py
# Worker entrypoint: celery -A adaptive_escrow.tasks.celery_app.celery worker -Q blockchain,celery
import os
import logging
from celery import Celery

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Simulated chain work gets its own queue so a slow "network" never starves other tasks
TASK_ROUTES = {"blockchain.*": {"queue": "blockchain"}}


def make_celery(broker_url: str, result_backend: str) -> Celery:
    """
    Celery instance for the escrow workers.
    Probes the broker once so a misconfigured URL shows up in the worker log.
    """
    celery_app = Celery("adaptive_escrow")
    celery_app.conf.update(
        broker_url=broker_url,
        result_backend=result_backend,
        task_routes=TASK_ROUTES,
        task_track_started=True,
        task_time_limit=int(os.getenv("CELERY_TASK_TIME_LIMIT", "60")),
        result_expires=int(os.getenv("CELERY_RESULT_EXPIRES", "3600")),
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
    )

    try:
        celery_app.connection().ensure_connection(max_retries=1)
        logger.info("celery broker reachable: %s", broker_url)
    except Exception as e:
        logger.error("celery broker unreachable (%s): %s", broker_url, e)

    return celery_app


def init_celery(flask_app) -> Celery:
    """Build the Celery app from Flask config and run every task inside an app context."""
    broker = flask_app.config["CELERY_BROKER_URL"]
    backend = flask_app.config.get("CELERY_RESULT_BACKEND") or broker
    celery_app = make_celery(broker, backend)

    TaskBase = celery_app.Task

    class ContextTask(TaskBase):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return TaskBase.__call__(self, *args, **kwargs)

    celery_app.Task = ContextTask
    celery_app.set_default()

    # shared_task definitions bind to the default app on import
    from adaptive_escrow.tasks import blockchain_tasks  # noqa: F401

    return celery_app


def _worker_app():
    from adaptive_escrow import create_app
    return create_app(os.getenv("FLASK_ENV", "development"))


flask_app = _worker_app()
celery = init_celery(flask_app)
