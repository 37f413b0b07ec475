import os

bind = os.getenv("GUNI_BIND", "0.0.0.0:8000")
wsgi_app = "config.wsgi:application"

workers = int(os.getenv("GUNI_WORKERS", str(min(max(2, (os.cpu_count() or 1) * 2), 8))))

# threads per worker, for blocking calls to the payments service
worker_class = "gthread"
threads = int(os.getenv("GTHREADS", "4"))

timeout = int(os.getenv("GUNI_TIMEOUT", "60"))
graceful_timeout = int(os.getenv("GUNI_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNI_KEEPALIVE", "5"))

preload_app = True
max_requests = int(os.getenv("GUNI_MAX_REQUESTS", "2000"))
max_requests_jitter = int(os.getenv("GUNI_MAX_REQUESTS_JITTER", "200"))

accesslog = "-"
errorlog = "-"
loglevel = os.getenv("GUNI_LOGLEVEL", "info")
