import multiprocessing
import os

# Serve with: gunicorn -c gunicorn.conf.py 'evoke:create_app()'
workers = int(os.environ.get('WEB_CONCURRENCY', (multiprocessing.cpu_count() * 2) + 1))
threads = 2
worker_class = "gthread"
preload_app = True
bind = os.environ.get('BIND', ":8000")
# Render style proxy headers
forwarded_allow_ips = "*"
timeout = 30
keepalive = 75
# Logs to stdout/stderr, level shared with the app
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
