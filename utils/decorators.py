import logging
import time
from functools import wraps

from . import misc

log = logging.getLogger("decorators")


def timed(method):
    @wraps(method)
    def timer(*args, **kw):
        start_time = time.time()
        result = method(*args, **kw)
        time_taken = time.time() - start_time

        log.info(f"{method.__name__!r} from {method.__module__!r} finished in {misc.seconds_to_string(time_taken)}")
        return result

    return timer
