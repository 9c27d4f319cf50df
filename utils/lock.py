import fcntl
import logging
import os

from .errors import FatalError

log = logging.getLogger('lock')


class Lock:
    """Instance lock held with flock, the owning pid is written to the lock file"""

    def __init__(self, lock_path):
        self.lock_path = lock_path
        self.fd = None

    def owner(self):
        try:
            with open(self.lock_path, 'r') as f:
                return f.read().strip() or None
        except OSError:
            return None

    def is_locked(self):
        if self.fd is not None:
            return True
        fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return True
        else:
            fcntl.flock(fd, fcntl.LOCK_UN)
            return False
        finally:
            os.close(fd)

    def acquire(self):
        fd = os.open(self.lock_path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            return False
        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode('utf-8'))
        self.fd = fd
        log.debug(f"Acquired lock {self.lock_path}")
        return True

    def release(self):
        if self.fd is None:
            return
        os.ftruncate(self.fd, 0)
        fcntl.flock(self.fd, fcntl.LOCK_UN)
        os.close(self.fd)
        self.fd = None
        log.debug(f"Released lock {self.lock_path}")

    def __enter__(self):
        if not self.acquire():
            raise FatalError(f"Another instance is running, lock {self.lock_path} is held by pid {self.owner()}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
