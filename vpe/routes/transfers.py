import base64
import binascii

from flask import Blueprint

from vpe.exceptions import ValidationError
from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

transfers_bp = Blueprint('transfers', __name__)


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("data must be base64 encoded", "INVALID_DATA")


@transfers_bp.route('/init', methods=['POST'])
@requires_session
def init(session):
    """Open a put or get session; the result carries the token and chunk size"""
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.transfers.init(ctx, field(args, 'type'), field(args, 'seed', default=''),
                                  field(args, 'size', int, default=0))

    return respond(reg.gates['transfer'].write_task('init', session, body))


@transfers_bp.route('/put', methods=['POST'])
@requires_session
def put(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.transfers.put(field(args, 'token'), _decode(field(args, 'data')))

    return respond(reg.gates['transfer'].read_task('put', session, body))


@transfers_bp.route('/get', methods=['POST'])
@requires_session
def get(session):
    args, reg = arguments(), registry()

    def body(ctx):
        chunk = reg.transfers.get(field(args, 'token'), field(args, 'offset', int, default=0))
        return base64.b64encode(chunk).decode('ascii')

    return respond(reg.gates['transfer'].read_task('get', session, body))


@transfers_bp.route('/finalize', methods=['POST'])
@requires_session
def finalize(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['transfer'].write_task(
        'finalize', session, lambda ctx: reg.transfers.finalize(field(args, 'token'))))


@transfers_bp.route('/cancel', methods=['POST'])
@requires_session
def cancel(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['transfer'].write_task(
        'cancel', session, lambda ctx: reg.transfers.cancel(field(args, 'token'))))


@transfers_bp.route('/delete', methods=['POST'])
@requires_session
def delete(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['transfer'].write_task(
        'delete', session, lambda ctx: reg.transfers.delete(field(args, 'path')), require_admin=True))
