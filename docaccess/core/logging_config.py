"""
Logging setup for CLI and embedding applications.
"""
import logging.config

from .config import settings


def build_logging_config(level: str = None) -> dict:
    level = (level or settings.LOG_LEVEL).upper()
    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'verbose': {
                'format': '[{levelname}] {asctime} {name} {message}',
                'style': '{',
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'verbose',
            },
        },
        'root': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
        'loggers': {
            'docaccess': {
                'handlers': ['console'],
                'level': level,
                'propagate': False,
            },
            'sqlalchemy.engine': {
                'handlers': ['console'],
                'level': 'INFO' if settings.DEBUG else 'WARNING',
                'propagate': False,
            },
        },
    }


def configure_logging(level: str = None):
    """Apply the console logging configuration"""
    logging.config.dictConfig(build_logging_config(level))
