from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

hosts_bp = Blueprint('hosts', __name__)


@hosts_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    reg = registry()
    return respond(reg.gates['host'].read_task('pool', session, lambda ctx: reg.hosts.pool(ctx)))


@hosts_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['host'].read_task(
        'ask_id', session, lambda ctx: reg.hosts.ask_id(ctx, field(args, 'name'))))


@hosts_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['host'].read_task(
        'info', session, lambda ctx: reg.hosts.info(ctx, field(args, 'id', int))))


@hosts_bp.route('/enable', methods=['POST'])
@requires_session
def enable(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.hosts.enable(ctx, field(args, 'id', int), field(args, 'enabled', bool))

    return respond(reg.gates['host'].write_task('enable', session, body, require_admin=True))
