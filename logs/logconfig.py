import logging
import os
from logging.config import dictConfig
from config import settings


def configure_logging(session_id_run, log_dir='./logs'):
    # Set the default logging level
    log_level = logging.INFO if settings.PROD else logging.DEBUG

    handlers = ['h', 'file'] if settings.PROD else ['h']
    if settings.PROD:
        os.makedirs(log_dir, exist_ok=True)

    LOGGING_CONFIG = dict(
        version=1,
        disable_existing_loggers=False,
        formatters={
            'f': {
                'format': f'%(asctime)s %(name)-12s %(levelname)-8s [SESSION_ID: {session_id_run}] %(message)s',
            },
        },
        handlers={
            'h': {
                'class': 'logging.StreamHandler',
                'formatter': 'f',
                'level': log_level,
            },
        },
        root={
            'handlers': handlers,
            'level': log_level,
        },
    )

    if settings.PROD:
        LOGGING_CONFIG['handlers']['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'filename': os.path.join(log_dir, 'logs.log'),
            'formatter': 'f',
            'level': log_level,
            'maxBytes': 1024 * 1024 * 5,  # 5 MB
            'backupCount': 10,  # Keep up to 10 backup logs
        }

    dictConfig(LOGGING_CONFIG)
