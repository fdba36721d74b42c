import multiprocessing
import os

bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8000")
worker_class = "uvicorn.workers.UvicornWorker"
workers = int(os.getenv("GUNICORN_WORKERS", os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() + 1)))
# Base64 uploads of several MB are decoded and pushed to Drive inside the request
timeout = int(os.getenv("GUNICORN_TIMEOUT", "180"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))
max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "100"))
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")
accesslog = "-"
errorlog = "-"
forwarded_allow_ips = "*"
capture_output = True
worker_tmp_dir = "/dev/shm"


def when_ready(server):
    backend = os.getenv("FOLDER_LOCKS_BACKEND", "memory").strip().lower()
    if workers > 1 and backend != "redis":
        server.log.warning(
            "Folder locks are per process (FOLDER_LOCKS_BACKEND=%s) with %s workers; "
            "concurrent uploads may create duplicate Drive folders until they are consolidated",
            backend,
            workers,
        )


def on_exit(server):
    server.log.info("Gunicorn master shutting down")


def worker_exit(server, worker):
    server.log.info("Worker exiting", extra={"pid": worker.pid})
