import multiprocessing
import os

bind = os.environ.get('TILLPOINT_BIND', '0.0.0.0:8000')

# A till owns one SQLite ledger and one embedded sync worker, so it runs a
# single process. The sync server scales out: (2x CPU Count) + 1.
_embedded_worker = os.environ.get('SYNC_EMBEDDED_WORKER', '').lower() in ('1', 'true', 'yes')
workers = 1 if _embedded_worker else int(
    os.environ.get('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1)
)
threads = 4 if _embedded_worker else 2
worker_class = 'gthread'

# Resilience
timeout = 120
max_requests = 0 if _embedded_worker else 1000   # recycling would restart the sync timer
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = os.environ.get('LOG_LEVEL', 'info')
capture_output = True
