from dataclasses import dataclass
from functools import wraps
from typing import Callable

import structlog
from flask import request

from vpe.db.models import User
from vpe.db.store import ResourceStore
from vpe.exceptions import AuthenticationError, AuthorizationError, ServiceException
from vpe.services.one_client import AuthResult, OneClient, SESSION_SEPARATOR, user_from_session
from vpe.utils.read_write_lock import ReadWriteLock

LOGGER = structlog.get_logger("vpe.auth")

READ = 'read'
WRITE = 'write'

ADMIN_REQUIRED_MESSAGE = 'The operation requires the admin privilege.'


@dataclass
class AuthContext:
    """Who is running the current operation."""
    session: str
    user: User
    is_admin: bool

    @property
    def name(self) -> str:
        return self.user.name

    def require_admin(self, message: str = None):
        if not self.is_admin:
            LOGGER.warning("admin privilege required", user=self.name, message=message)
            raise AuthorizationError(message or ADMIN_REQUIRED_MESSAGE, "ADMIN_REQUIRED")

    def require_owner_or_admin(self, owner_id: int, message: str = None):
        if owner_id != self.user.id:
            self.require_admin(message)


class AuthGate:
    """
    Runs operations of one resource handler: lock, authenticate, run, log.

    Write operations through the same gate are serialized; read operations
    share the lock. Gates of different handlers do not block each other.
    Whatever happens, the caller gets `(ok, payload_or_message)` back.
    """

    def __init__(self, one_client: OneClient, name: str):
        self.one = one_client
        self.name = name
        self._lock = ReadWriteLock()

    def read_task(self, op_name: str, session: str, body: Callable, require_admin: bool = False):
        return self.execute(op_name, session, require_admin, body, mode=READ)

    def write_task(self, op_name: str, session: str, body: Callable, require_admin: bool = False):
        return self.execute(op_name, session, require_admin, body, mode=WRITE)

    def execute(self, op_name: str, session: str, require_admin: bool, body: Callable, mode: str = WRITE):
        task = f"{self.name}.{op_name}"
        user_name = user_from_session(session)
        failure = None

        lock = self._lock.read() if mode == READ else self._lock.write()
        with lock:
            try:
                ctx = self._authenticate(session, require_admin)
                result = (True, body(ctx))
            except ServiceException as e:
                failure = e
                result = (False, e.message)
            except Exception as e:
                failure = e
                result = (False, str(e) or type(e).__name__)
            if failure is not None:
                # drop half-applied changes of the failed body
                ResourceStore.rollback()

        if failure is None:
            LOGGER.info("task succeeded", user=user_name, task=task)
        elif isinstance(failure, ServiceException):
            LOGGER.error("task failed", user=user_name, task=task, error=failure.message,
                         error_code=failure.error_code)
        else:
            LOGGER.error("task failed", user=user_name, task=task, error=result[1],
                         exc_info=(type(failure), failure, failure.__traceback__))
        return result

    def _authenticate(self, session: str, require_admin: bool) -> AuthContext:
        user_name = user_from_session(session)
        user = ResourceStore.find_by_name(User, user_name)
        if user is None:
            LOGGER.warning("user is not found", user=user_name)
            raise AuthenticationError(f"User is not found: {user_name}", "UNKNOWN_USER")
        if not user.enabled:
            LOGGER.warning("user is not enabled", user=user_name)
            raise AuthenticationError(f"User is not enabled: {user_name}", "USER_DISABLED")

        status, message = self.one.authenticate(session)
        if status == AuthResult.FAILED:
            LOGGER.warning("authentication failed", user=user_name, message=message)
            raise AuthenticationError(message, "INVALID_SESSION")
        if status == AuthResult.NOT_ADMIN and require_admin:
            LOGGER.warning("admin privilege required", user=user_name, message=message)
            raise AuthorizationError(ADMIN_REQUIRED_MESSAGE, "ADMIN_REQUIRED")
        return AuthContext(session=session, user=user, is_admin=status == AuthResult.ADMIN)


def requires_session(f):
    """Pass the `Authorization: Bearer <user:secret>` session to the route."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization')
        if not auth_header:
            raise AuthenticationError("Session is missing", "SESSION_MISSING")

        try:
            scheme, session = auth_header.split(" ", 1)  # Bearer <session>
        except ValueError:
            raise AuthenticationError("Invalid session format", "INVALID_SESSION_FORMAT")
        if scheme.lower() != 'bearer' or SESSION_SEPARATOR not in session:
            raise AuthenticationError("Invalid session format", "INVALID_SESSION_FORMAT")

        return f(session.strip(), *args, **kwargs)

    return decorated
