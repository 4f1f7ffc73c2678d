"""
storefront/utils/logging.py
---------------------------
Configures structured logging for production.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import g, has_request_context, request


class RequestFormatter(logging.Formatter):
    """
    Injects request info (url, client IP, request id) into log records
    when a request context is available.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.request_id = getattr(g, 'request_id', None)
        else:
            record.url = None
            record.remote_addr = None
            record.request_id = None
        return super().format(record)


def setup_logging(app):
    """
    Configure rotating file logging: logs/app.log
    Max size: 5MB
    Backup count: 5 files
    Format: timestamp | level | module | request id | message
    """
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    # 1. File logger; skipped on read-only filesystems
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
                '%(asctime)s | %(levelname)s | %(name)s | %(request_id)s | '
                '%(remote_addr)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(level)
            app.logger.addHandler(file_handler)
        except OSError:
            pass

    # 2. Stdout logger (container / platform logs)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    ))
    stream_handler.setLevel(level)
    app.logger.addHandler(stream_handler)

    # app.logger is the "storefront" logger, so module loggers
    # (logging.getLogger(__name__)) propagate into these handlers.
    app.logger.setLevel(level)
    app.logger.info("Storefront startup")
