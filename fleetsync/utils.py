# fleetsync/utils.py
"""Shared utilities such as logging, retry decorators and clock helpers."""
import os
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from dotenv import load_dotenv

load_dotenv()

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s"

def get_logger(name=__name__):
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    # basicConfig is a no-op once the root logger has handlers (uvicorn, pytest)
    logging.basicConfig(format=LOG_FORMAT, level=getattr(logging, level, logging.INFO))
    return logging.getLogger(name)

logger = get_logger("fleet-sync")

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def retry(exceptions, tries=3, delay=1, backoff=2, max_delay=30, logger=logger):
    """Retry ``f`` on ``exceptions`` with exponential backoff; the last attempt raises."""
    def deco_retry(f):
        @wraps(f)
        def f_retry(*args, **kwargs):
            attempts_left, mdelay = tries, delay
            while attempts_left > 1:
                try:
                    return f(*args, **kwargs)
                except exceptions as e:
                    attempts_left -= 1
                    logger.warning(
                        "%s failed: %s, retrying in %s sec (%d attempt(s) left)",
                        getattr(f, "__name__", "call"), e, mdelay, attempts_left,
                    )
                    time.sleep(mdelay)
                    mdelay = min(mdelay * backoff, max_delay)
            return f(*args, **kwargs)
        return f_retry
    return deco_retry
