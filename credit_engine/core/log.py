# credit_engine/core/log.py
import hashlib
import logging
import os

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)


def get_file_logger(name: str, filename: str, log_dir: str = "logs") -> logging.Logger:
    """
    Logger that also writes to log_dir/filename (payment traffic is kept apart).

    Each target file gets its own child of `name`, so two callers with different
    log_dir values never share a handler. Records still propagate to `name`.
    """
    path = os.path.abspath(os.path.join(log_dir, filename))
    suffix = hashlib.md5(path.encode("utf-8")).hexdigest()[:8]
    logger = logging.getLogger(f"{name}.{suffix}")
    if not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(path)
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
        logger.setLevel(logging.INFO)
        logger.addHandler(handler)
    return logger
