import logging
import sys

from utils.env import LOG_LEVEL


def get_logger(name: str = "dispatch") -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger  # reuse an already configured logger

    logger.setLevel(LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    fmt = "[%(asctime)s] [%(levelname)s] %(name)s - %(message)s"
    handler.setFormatter(logging.Formatter(fmt))

    logger.addHandler(handler)
    return logger
