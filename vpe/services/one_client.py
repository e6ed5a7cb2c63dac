"""
Client for the orchestrator's XML-RPC interface.

Every remote method takes the caller's session string as its first
argument and answers with an array whose first element is a success flag
and whose second element is either the payload or an error message. The
client folds transport failures into the same `(ok, payload)` shape.

Calls are synchronous, bounded by a socket timeout and never retried:
the orchestrator is not idempotent, so a repeated allocate could create
a second resource.
"""

import xmlrpc.client
from enum import IntEnum

import structlog
from lxml import etree

from vpe.exceptions import ExternalCallError, ValidationError

LOGGER = structlog.get_logger("vpe.one_client")

# Default timeout in seconds for xmlrpc requests to the orchestrator.
DEFAULT_TIMEOUT = 30

AUTH_METHOD = 'one.userpool.info'
NOT_ADMIN_PATTERN = 'perform INFO on USER Pool'
SESSION_SEPARATOR = ':'


class AuthResult(IntEnum):
    ADMIN = 0
    FAILED = 1
    NOT_ADMIN = 2


def user_from_session(session: str) -> str:
    return (session or '').split(SESSION_SEPARATOR)[0]


class _TimeoutMixin:
    def __init__(self, timeout, **kwargs):
        super().__init__(**kwargs)
        self._timeout = timeout

    def make_connection(self, host):
        conn = super().make_connection(host)
        conn.timeout = self._timeout
        return conn


class TimeoutTransport(_TimeoutMixin, xmlrpc.client.Transport):
    pass


class SafeTimeoutTransport(_TimeoutMixin, xmlrpc.client.SafeTransport):
    pass


class OneClient:
    def __init__(self, endpoint: str, timeout: float = DEFAULT_TIMEOUT):
        self.endpoint = endpoint
        self.timeout = timeout

    def _make_proxy(self):
        # ServerProxy is not thread safe, one per call
        transport_class = SafeTimeoutTransport if self.endpoint.startswith('https') else TimeoutTransport
        return xmlrpc.client.ServerProxy(
            self.endpoint, transport=transport_class(self.timeout), allow_none=True)

    def call_nolog(self, method: str, session: str, *args):
        """Issue one remote call and return `(ok, payload_or_message)`."""
        try:
            response = getattr(self._make_proxy(), method)(session, *args)
        except xmlrpc.client.Fault as e:
            return False, e.faultString
        except xmlrpc.client.ProtocolError as e:
            return False, f"Orchestrator returned HTTP {e.errcode}: {e.errmsg}"
        except OSError as e:
            return False, f"Could not reach orchestrator at {self.endpoint}: {e}"
        if not isinstance(response, (list, tuple)) or not response:
            return False, f"Malformed response to {method}: {response!r}"
        payload = response[1] if len(response) > 1 else ''
        return bool(response[0]), payload

    def call(self, method: str, session: str, *args):
        ok, payload = self.call_nolog(method, session, *args)
        user = user_from_session(session)
        if ok:
            LOGGER.debug("orchestrator call succeeded", user=user, method=method, args=args)
        else:
            LOGGER.error("orchestrator call failed", user=user, method=method, args=args, error=payload)
        return ok, payload

    def call_checked(self, method: str, session: str, *args):
        """Like call(), but a failed call raises ExternalCallError."""
        ok, payload = self.call(method, session, *args)
        if not ok:
            raise ExternalCallError(str(payload))
        return payload

    def info(self, method: str, session: str, *args):
        """Call an info method and parse the XML document it returns."""
        return parse_document(self.call_checked(method, session, *args))

    def authenticate(self, session: str):
        """
        Classify a session as admin, non-admin or failed.

        Only admins may read the user pool, so a permission error on that
        call still proves the credentials are valid.
        """
        ok, payload = self.call_nolog(AUTH_METHOD, session)
        user = user_from_session(session)
        if ok:
            return AuthResult.ADMIN, f"Authentication succeeded: {user}"
        if str(payload).strip().endswith(NOT_ADMIN_PATTERN):
            return AuthResult.NOT_ADMIN, f"Not the administrator: {user}"
        return AuthResult.FAILED, f"Authentication failed: {user} ({payload})"


def parse_document(payload):
    try:
        if isinstance(payload, str):
            payload = payload.encode('utf-8')
        return etree.fromstring(payload)
    except etree.XMLSyntaxError as e:
        raise ExternalCallError(f"Orchestrator returned malformed XML: {e}") from e


def text_at(doc, path: str, default=None, required: str = None):
    """Return the text of the first node matching `path` in `doc`."""
    nodes = doc.xpath(path)
    if nodes:
        node = nodes[0]
        text = node if isinstance(node, str) else node.text
        if text is not None:
            return text.strip()
    if required:
        raise ValidationError(required, "MISSING_ATTRIBUTE")
    return default
