import multiprocessing
import os

# Gunicorn production configuration for the storefront API
bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

# Requests mostly wait on Stripe and the database: (2x CPU) + 1 threaded workers
workers = int(os.environ.get('WEB_CONCURRENCY', multiprocessing.cpu_count() * 2 + 1))
threads = 2
worker_class = 'gthread'

# Stripe Tax + PaymentIntent round-trips stay well under this
timeout = 60
graceful_timeout = 30
max_requests = 1000
max_requests_jitter = 100
keepalive = 5

# Logging
accesslog = '-'       # Stdout
errorlog = '-'        # Stderr
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
capture_output = True
