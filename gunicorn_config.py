import os

# Dashboard:   gunicorn -c gunicorn_config.py app:app
# Worker host: gunicorn -c gunicorn_config.py worker_server:app
bind = f"0.0.0.0:{os.environ.get('PORT', '10000')}"

# The worker host keeps its single-flight flag in process memory, so it must
# run with exactly one worker process. Threads let /health answer mid-run.
workers = 1
worker_class = "gthread"
threads = int(os.environ.get("GUNICORN_THREADS", "4"))
timeout = 120  # MongoDB cold starts
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

graceful_timeout = 30

# Max requests per worker before restart (prevent memory leaks)
max_requests = 1000
max_requests_jitter = 100
