import threading
from contextlib import contextmanager


class ReadWriteLock:
    """
    Shared/exclusive lock with alternating preference.

    After a reader leaves, pending writers go first; after a writer leaves,
    readers go first. Readers cannot starve a writer and the other way round,
    but there is no FIFO ordering between individual requests.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self.reading_readers = 0
        self.waiting_writers = 0
        self.writing_writers = 0
        self.prefer_writer = True

    def read_lock(self):
        with self._cond:
            while self.writing_writers > 0 or (self.prefer_writer and self.waiting_writers > 0):
                self._cond.wait()
            self.reading_readers += 1

    def read_unlock(self):
        with self._cond:
            self.reading_readers -= 1
            self.prefer_writer = True
            self._cond.notify_all()

    def write_lock(self):
        with self._cond:
            self.waiting_writers += 1
            try:
                while self.reading_readers > 0 or self.writing_writers > 0:
                    self._cond.wait()
            finally:
                self.waiting_writers -= 1
            self.writing_writers += 1

    def write_unlock(self):
        with self._cond:
            self.writing_writers -= 1
            self.prefer_writer = False
            self._cond.notify_all()

    @contextmanager
    def read(self):
        self.read_lock()
        try:
            yield self
        finally:
            self.read_unlock()

    @contextmanager
    def write(self):
        self.write_lock()
        try:
            yield self
        finally:
            self.write_unlock()
