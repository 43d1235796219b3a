import os

wsgi_app = "config.wsgi:application"


# Admin subscribers live in a per-process registry, so events only reach
# streams held by the worker that placed the order
workers = int(os.getenv("GUNI_WORKERS", "1"))

# Threads per worker; each open admin event stream holds one thread
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "8"))

# Timeouts
timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

# Worker recycling
preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
