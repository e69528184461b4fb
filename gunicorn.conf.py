"""
Gunicorn configuration for the Tourbook service.
Log and pid locations default to ./logs and can be overridden from the environment.
"""

import multiprocessing
import os

LOG_DIR = os.environ.get("TOURBOOK_LOG_DIR", "logs")
os.makedirs(LOG_DIR, exist_ok=True)

# Server socket
bind = os.environ.get("GUNICORN_BIND", "127.0.0.1:8000")
backlog = 2048

# Worker processes
workers = int(os.environ.get("GUNICORN_WORKERS", multiprocessing.cpu_count() * 2 + 1))
worker_class = "sync"
timeout = 30
keepalive = 2

# Restart workers after this many requests
max_requests = 1000
max_requests_jitter = 50

# Logging
accesslog = os.path.join(LOG_DIR, "access.log")
errorlog = os.path.join(LOG_DIR, "error.log")
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'

# Process naming
proc_name = "tourbook"

daemon = False
pidfile = os.path.join(LOG_DIR, "gunicorn.pid")

# Preload application so index creation runs once
preload_app = True

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def on_starting(server):
    server.log.info("Starting Tourbook")


def on_reload(server):
    server.log.info("Reloading Tourbook")


def when_ready(server):
    server.log.info("Tourbook is ready. Listening on: %s", server.address)


def on_exit(server):
    server.log.info("Shutting down Tourbook")
