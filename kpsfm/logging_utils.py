import logging
import time
from contextlib import contextmanager

# verbosity names accepted on the command line -> logging levels
VERBOSE_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": 5,
}


def level_from_name(name: str) -> int:
    try:
        return VERBOSE_LEVELS[name.strip().lower()]
    except KeyError:
        raise ValueError(
            f"Unknown verbose level: {name!r}. Use one of {', '.join(VERBOSE_LEVELS)}"
        ) from None


def make_logger(name: str = "kpsfm", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        h = logging.StreamHandler()
        fmt = logging.Formatter("[%(levelname)s] %(message)s")
        h.setFormatter(fmt)
        logger.addHandler(h)
    logger.setLevel(level)
    return logger


@contextmanager
def timed(logger: logging.Logger, msg: str):
    t0 = time.time()
    logger.info(f"{msg} ...")
    yield
    dt = time.time() - t0
    logger.info(f"{msg} done in {dt:.2f}s")
