"""
Logging setup for the BillFree loyalty app.

Logs go to stdout so gunicorn/Railway capture them. Level comes from LOG_LEVEL.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """Configure the root logger once per process."""
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    root.addHandler(handler)

    # Connection-level chatter from the HTTP clients is rarely useful
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)

    _configured = True


def mask_phone(phone: str) -> str:
    """Mask all but the last four digits of a phone number for logs."""
    if not phone:
        return ''
    phone = str(phone)
    if len(phone) <= 4:
        return '*' * len(phone)
    return '*' * (len(phone) - 4) + phone[-4:]
