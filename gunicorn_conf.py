"""
Gunicorn Configuration for the STUDEX marketplace API
Production worker management with uvicorn workers

    gunicorn -c gunicorn_conf.py api_server:app
"""
import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '3000')}"
backlog = 2048

# Worker processes
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
max_requests = 10000  # Restart workers after 10k requests to prevent memory leaks
max_requests_jitter = 1000
timeout = 120  # Large multipart uploads are proxied to the media host
keepalive = 30

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "studex_api"

# Server mechanics
daemon = False
pidfile = None
umask = 0
user = None
group = None
tmp_upload_dir = None

# Each worker owns its connection pool and scheduler, so nothing is preloaded
preload_app = False


def on_starting(server):
    """Called just before the master process is initialized."""
    print("🚀 Gunicorn master process starting...")


def when_ready(server):
    """Called just after the server is started."""
    print(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    print(f"🔧 Worker {worker.pid} started")


def worker_abort(worker):
    print(f"❌ Worker {worker.pid} aborted")


def worker_exit(server, worker):
    print(f"👋 Worker {worker.pid} exited")
