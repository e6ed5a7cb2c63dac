"""
Compensation stack for operations that span the orchestrator and the
local store.

Each successful step registers the action that undoes it. If a later
step raises, the registered actions run newest first and the original
exception propagates. Compensation failures are logged and do not mask
the original error.

    with Saga('zone.add_host') as saga:
        hid = one.call_checked('one.host.allocate', ...)
        saga.on_rollback(one.call_checked, 'one.host.delete', session, hid)
        ...
"""

from contextlib import contextmanager

import structlog

from vpe.exceptions import ServiceException

LOGGER = structlog.get_logger("vpe.saga")

ERROR_SEPARATOR = '; '


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._compensations = []

    def on_rollback(self, fn, *args, description=None, **kwargs):
        self._compensations.append((description or getattr(fn, '__name__', repr(fn)), fn, args, kwargs))

    def replace_compensations(self, fn, *args, description=None, **kwargs):
        """Drop every registered compensation in favour of a single one."""
        self._compensations.clear()
        self.on_rollback(fn, *args, description=description, **kwargs)

    def commit(self):
        self._compensations.clear()

    def rollback(self):
        while self._compensations:
            description, fn, args, kwargs = self._compensations.pop()
            try:
                fn(*args, **kwargs)
                LOGGER.info("compensation executed", saga=self.name, step=description)
            except Exception as e:
                LOGGER.error("compensation failed", saga=self.name, step=description, error=str(e))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            LOGGER.warning("saga aborted", saga=self.name, error=str(exc_val))
            self.rollback()
        else:
            self.commit()
        return False


class ErrorAccumulator:
    """
    Collects failures of best-effort cleanup steps so every step runs.

        errors = ErrorAccumulator()
        with errors.attempt():
            remove_network(...)
        errors.raise_if_any()
    """

    def __init__(self):
        self.messages = []

    def add(self, message):
        if message:
            self.messages.append(str(message))

    @contextmanager
    def attempt(self):
        try:
            yield
        except ServiceException as e:
            self.add(e.message)
        except Exception as e:
            LOGGER.exception("cleanup step failed", error=str(e))
            self.add(str(e) or type(e).__name__)

    def add_call(self, result):
        """Record a failed `(ok, payload)` orchestrator result."""
        ok, payload = result
        if not ok:
            self.add(payload)
        return ok

    @property
    def message(self) -> str:
        return ERROR_SEPARATOR.join(self.messages)

    def __bool__(self):
        return bool(self.messages)

    def raise_if_any(self):
        if self.messages:
            raise ServiceException(self.message, "CLEANUP_INCOMPLETE", 500)
