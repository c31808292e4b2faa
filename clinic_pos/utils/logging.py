"""
clinic_pos/utils/logging.py
───────────────────────────
Configures structured logging for the POS app.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request


class RequestFormatter(logging.Formatter):
    """
    Formatter that injects request info (URL, remote address)
    into log records when a request context is available.
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
    Configure logging on app.logger:
      - rotating file logs/app.log (5MB × 5) when LOG_TO_FILE is set
      - stdout stream for container / cloud logs
    Format: timestamp | level | module | message
    """
    if getattr(app.logger, '_pos_configured', False):
        return

    if app.config.get('LOG_TO_FILE'):
        log_dir = os.path.join(app.root_path, '..', 'logs')
        try:
            os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(log_dir, 'app.log'),
                maxBytes=5 * 1024 * 1024,
                backupCount=5
            )
        except OSError:
            file_handler = None  # read-only filesystem: stdout only
        if file_handler is not None:
            file_handler.setFormatter(RequestFormatter(
                '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | %(url)s | %(message)s'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    app.logger.addHandler(stream_handler)

    app.logger.setLevel(logging.INFO)
    app.logger._pos_configured = True
    app.logger.info("Clinic POS startup")
