# gunicorn.conf.py
# Run with: gunicorn -c gunicorn.conf.py app:app

import logging
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '5001')}"

# One worker keeps the per-user playback trackers and the pool in one
# process; threads cover concurrent requests
workers = int(os.environ.get('WEB_CONCURRENCY', '1'))
worker_class = 'gthread'
threads = int(os.environ.get('GUNICORN_THREADS', '4'))

# Album parsing waits on the LLM
timeout = 120

accesslog = '-'
errorlog = '-'
loglevel = os.environ.get('LOG_LEVEL', 'info')


def post_worker_init(worker):
    """Each worker owns its pool, so the keepalive starts after the fork"""
    import db_utils

    logging.getLogger(__name__).info(f"Worker {os.getpid()} ready, starting database keepalive")
    db_utils.start_keepalive_thread()


def worker_exit(server, worker):
    import db_utils

    logging.getLogger(__name__).info(f"Worker {worker.pid} exiting, closing database pool")
    db_utils.stop_keepalive_thread()
    db_utils.close_connection_pool()
