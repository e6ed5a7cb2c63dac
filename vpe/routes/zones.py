from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

zones_bp = Blueprint('zones', __name__)


@zones_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    reg = registry()
    return respond(reg.gates['zone'].read_task('pool', session, lambda ctx: reg.zones.pool(ctx)))


@zones_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['zone'].read_task(
        'ask_id', session, lambda ctx: reg.zones.ask_id(field(args, 'name'))))


@zones_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['zone'].read_task(
        'info', session, lambda ctx: reg.zones.info(ctx, field(args, 'id', int))))


@zones_bp.route('/allocate', methods=['POST'])
@requires_session
def allocate(session):
    """Create a zone (with its hosts and networks) from a YAML template"""
    args, reg = arguments(), registry()
    return respond(reg.gates['zone'].write_task(
        'allocate', session, lambda ctx: reg.zones.allocate(ctx, field(args, 'template', None)),
        require_admin=True))


@zones_bp.route('/delete', methods=['POST'])
@requires_session
def delete(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['zone'].write_task(
        'delete', session, lambda ctx: reg.zones.delete(ctx, field(args, 'id', int)), require_admin=True))


@zones_bp.route('/add_host', methods=['POST'])
@requires_session
def add_host(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.zones.add_host(ctx, field(args, 'id', int), field(args, 'host'))

    return respond(reg.gates['zone'].write_task('add_host', session, body, require_admin=True))


@zones_bp.route('/remove_host', methods=['POST'])
@requires_session
def remove_host(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.zones.remove_host(ctx, field(args, 'id', int), field(args, 'host'))

    return respond(reg.gates['zone'].write_task('remove_host', session, body, require_admin=True))


@zones_bp.route('/add_vnet', methods=['POST'])
@requires_session
def add_vnet(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.zones.add_vnet(ctx, field(args, 'id', int), field(args, 'template', None))

    return respond(reg.gates['zone'].write_task('add_vnet', session, body, require_admin=True))


@zones_bp.route('/remove_vnet', methods=['POST'])
@requires_session
def remove_vnet(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.zones.remove_vnet(ctx, field(args, 'id', int), field(args, 'vnet'))

    return respond(reg.gates['zone'].write_task('remove_vnet', session, body, require_admin=True))


@zones_bp.route('/sync', methods=['POST'])
@requires_session
def sync(session):
    """Ask the orchestrator to push its probes to every host again"""
    reg = registry()
    return respond(reg.gates['zone'].write_task('sync', session, lambda ctx: reg.zones.sync(ctx),
                                                require_admin=True))
