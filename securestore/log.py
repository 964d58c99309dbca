import logging
from logging.handlers import RotatingFileHandler

log_formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
handler = RotatingFileHandler("securestore.log", maxBytes=10 * 1024 * 1024, delay=True)
handler.setFormatter(log_formatter)
log = logging.getLogger("securestore")
log.setLevel(logging.DEBUG)
log.addHandler(handler)


def get_logger() -> logging.Logger:
    return log


def set_logger(logger: logging.Logger):
    """Route every securestore module through ``logger`` instead of the default file logger."""
    global log
    log = logger
    log.debug(f"Logger set to: {logger.name}")
