"""
Gunicorn configuration for the CoachCards API.

    gunicorn coachcards.main:app -c gunicorn.conf.py

Env vars that override defaults:
  PORT     — TCP port to bind
  WORKERS  — number of worker processes (default: 2)
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Cooldown writes are serialized per row (SELECT ... FOR UPDATE on app_state),
# so several workers may record displayed cards concurrently.
workers = int(os.environ.get("WORKERS", "2"))

worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# Card generation is a handful of queries plus in-memory detection.
timeout = 60

# stdout only; application logs go through coachcards.core.logging_config.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
