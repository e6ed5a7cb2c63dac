from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond
from vpe.services.lease_service import LeaseService

leases_bp = Blueprint('leases', __name__)


@leases_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    """List leases: -2 all, -1 mine and free ones, >= 0 those of a user"""
    args, reg = arguments(), registry()
    return respond(reg.gates['lease'].read_task(
        'pool', session, lambda ctx: LeaseService.pool(ctx, field(args, 'flag', int, default=-1))))


@leases_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['lease'].read_task(
        'ask_id', session, lambda ctx: LeaseService.ask_id(field(args, 'name'))))


@leases_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['lease'].read_task(
        'info', session, lambda ctx: LeaseService.info(ctx, field(args, 'id', int))))


@leases_bp.route('/assign', methods=['POST'])
@requires_session
def assign(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return LeaseService.assign(field(args, 'id', int), field(args, 'user_name'))

    return respond(reg.gates['lease'].write_task('assign', session, body, require_admin=True))


@leases_bp.route('/release', methods=['POST'])
@requires_session
def release(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['lease'].write_task(
        'release', session, lambda ctx: LeaseService.release(field(args, 'id', int)), require_admin=True))
