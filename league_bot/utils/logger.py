import logging
import sys
from datetime import datetime
from pathlib import Path

from league_bot.config import Config

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# discord.py logs every gateway event and HTTP call at INFO
NOISY_LOGGERS = ('discord.gateway', 'discord.http', 'discord.client')

_file_handler = None


def _daily_file_handler(formatter: logging.Formatter) -> logging.Handler:
    """One dated file per process, shared by every league logger"""
    global _file_handler
    if _file_handler is None:
        log_dir = Path(Config.LOG_DIR)
        log_dir.mkdir(parents=True, exist_ok=True)
        _file_handler = logging.FileHandler(
            log_dir / f'league_bot_{datetime.now():%Y%m%d}.log',
            encoding='utf-8'
        )
        _file_handler.setLevel(logging.DEBUG)
        _file_handler.setFormatter(formatter)
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
    return _file_handler


def setup_logger(name: str) -> logging.Logger:
    """Console + daily file logger for a league_bot module"""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = logging.DEBUG if Config.DEBUG else logging.INFO
    logger.setLevel(level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)
    logger.addHandler(console)
    logger.addHandler(_daily_file_handler(formatter))

    return logger
