"""
tillpoint/utils/logging.py
──────────────────────────
Configures structured logging for the till and the sync server.

app.logger is the 'tillpoint' logger, so service modules that log via
logging.getLogger(__name__) (migration, sync client, scheduler) share
these handlers.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request


class RequestFormatter(logging.Formatter):
    """
    Custom formatter that injects request info (URL, remote address)
    into logs if a request context is available.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
        else:
            record.url = None
            record.remote_addr = None
        return super().format(record)


def setup_logging(app):
    """
    Configure rotating file logging: logs/app.log
    Max size: 5MB
    Backup count: 5 files
    Format: timestamp | level | module | message
    """
    logger = app.logger
    if getattr(logger, '_tillpoint_configured', False):
        return   # create_app() runs once per test; don't stack handlers

    # 1. File Logger (skipped under test; tolerate read-only filesystems)
    if not app.testing:
        try:
            log_dir = os.path.join(app.root_path, '..', 'logs')
            os.makedirs(log_dir, exist_ok=True)

            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5
            )
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(logging.INFO)
            logger.addHandler(file_handler)
        except OSError:
            pass  # Fallback to stdout if filesystem is read-only

    # 2. Stdout Logger
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    logger.addHandler(stream_handler)

    logger.setLevel(logging.INFO)
    logger._tillpoint_configured = True
    logger.info("Tillpoint POS startup")
