# Gunicorn configuration for the tuition backup service
# Only one worker may own the backup scheduler, otherwise every worker
# would start its own 2 AM backup.

import os
import logging

logger = logging.getLogger('gunicorn.error')

bind = os.environ.get('GUNICORN_BIND', '0.0.0.0:8000')
workers = int(os.environ.get('GUNICORN_WORKERS', '2'))
timeout = int(os.environ.get('GUNICORN_TIMEOUT', '120'))


def post_worker_init(worker):
    """
    Mark the first worker (age 0) as the scheduler owner via SCHEDULER_WORKER,
    which create_app() reads before starting APScheduler.
    """
    is_owner = worker.age == 0
    os.environ['SCHEDULER_WORKER'] = 'true' if is_owner else 'false'
    role = 'backup scheduler owner' if is_owner else 'HTTP worker (scheduler disabled)'
    logger.info(f"Worker PID {worker.pid} (age={worker.age}): {role}")
