from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

users_bp = Blueprint('users', __name__)


@users_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    """List every user"""
    reg = registry()
    return respond(reg.gates['user'].read_task('pool', session, lambda ctx: reg.users.pool(), require_admin=True))


@users_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['user'].read_task(
        'ask_id', session, lambda ctx: reg.users.ask_id(field(args, 'name'))))


@users_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['user'].read_task(
        'info', session, lambda ctx: reg.users.info(ctx, field(args, 'id', int))))


@users_bp.route('/allocate', methods=['POST'])
@requires_session
def allocate(session):
    """Create a user in the orchestrator and register it locally"""
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.users.allocate(ctx, field(args, 'name'), field(args, 'passwd'))

    return respond(reg.gates['user'].write_task('allocate', session, body, require_admin=True))


@users_bp.route('/delete', methods=['POST'])
@requires_session
def delete(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['user'].write_task(
        'delete', session, lambda ctx: reg.users.delete(ctx, field(args, 'id', int)), require_admin=True))


@users_bp.route('/enable', methods=['POST'])
@requires_session
def enable(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.users.enable(field(args, 'id', int), field(args, 'enabled', bool))

    return respond(reg.gates['user'].write_task('enable', session, body, require_admin=True))


@users_bp.route('/passwd', methods=['POST'])
@requires_session
def passwd(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.users.passwd(ctx, field(args, 'id', int), field(args, 'passwd'))

    return respond(reg.gates['user'].write_task('passwd', session, body, require_admin=True))


@users_bp.route('/enable_zone', methods=['POST'])
@requires_session
def enable_zone(session):
    """Grant a zone to a user (with a VM quota) or revoke it"""
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.users.enable_zone(field(args, 'id', int), field(args, 'enabled', bool),
                                     field(args, 'zone_id', None), field(args, 'limit', None, default=-1))

    return respond(reg.gates['user'].write_task('enable_zone', session, body, require_admin=True))
