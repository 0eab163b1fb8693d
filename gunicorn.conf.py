"""
Gunicorn configuration.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Sync workers: every request is one blocking chain of BillFree/Shopify calls
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
# Must stay above BILLFREE_TIMEOUT * (1 + BILLFREE_READ_RETRIES) plus Shopify time
timeout = int(os.getenv('GUNICORN_TIMEOUT', '60'))
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'billfree-loyalty'

preload_app = True

graceful_timeout = 30


def on_starting(server):
    server.log.info("Starting BillFree loyalty server...")


def on_exit(server):
    server.log.info("BillFree loyalty server shutting down...")
