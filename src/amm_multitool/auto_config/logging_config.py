"""
logging_config.py

Centralized logging configuration for the amm_multitool project.
"""

import logging
import logging.config
from pathlib import Path
from datetime import datetime
from typing import Optional

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def setup_logging(
    file_log_level: str = 'INFO',
    console_log_level: str = 'ERROR',
    log_dir: Path | str | None = None
) -> Optional[Path]:
    """
    Configures logging for the entire application.
    The RichHandler for the console will not interfere with Rich spinners.

    Returns the path of the log file.
    """
    log_path = Path(log_dir) if log_dir else PROJECT_ROOT / "logs"
    log_path.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_filename = log_path / f"amm_multitool_{timestamp}.log"

    LOGGING_CONFIG = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'file_formatter': {
                'format': '%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s',
            },
            'console_formatter': {
                'format': '%(message)s',
            },
        },
        'handlers': {
            'console': {
                'class': 'rich.logging.RichHandler',
                'level': console_log_level.upper(),
                'formatter': 'console_formatter',
            },
            'file': {
                'class': 'logging.handlers.RotatingFileHandler',
                'level': file_log_level.upper(),
                'formatter': 'file_formatter',
                'filename': log_filename,
                'maxBytes': 10*1024*1024,
                'backupCount': 5,
                'encoding': 'utf-8',
            },
        },
        'root': {
            'level': 'DEBUG', # Let all messages pass to handlers
            'handlers': ['console', 'file'],
        },
        'loggers': {
            # urllib3 logs every connection at DEBUG
            'urllib3': {'level': 'WARNING'},
        },
    }

    logging.config.dictConfig(LOGGING_CONFIG)
    logging.getLogger().info(f"Logging configured. Log file at: {log_filename}")
    return log_filename
