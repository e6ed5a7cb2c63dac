from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

vnets_bp = Blueprint('vnets', __name__)


@vnets_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    reg = registry()
    return respond(reg.gates['vnet'].read_task('pool', session, lambda ctx: reg.vnets.pool(ctx)))


@vnets_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    """Resolve a zone-qualified network name (`zone::name`) to its id"""
    args, reg = arguments(), registry()
    return respond(reg.gates['vnet'].read_task(
        'ask_id', session, lambda ctx: reg.vnets.ask_id(field(args, 'name'))))


@vnets_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vnet'].read_task(
        'info', session, lambda ctx: reg.vnets.info(ctx, field(args, 'id', int))))


def _server_route(op_name, kind, add):
    def view(session):
        args, reg = arguments(), registry()

        def body(ctx):
            edit = reg.vnets.add_servers if add else reg.vnets.remove_servers
            return edit(field(args, 'id', int), kind, field(args, 'servers', None))

        return respond(reg.gates['vnet'].write_task(op_name, session, body, require_admin=True))

    view.__name__ = op_name
    vnets_bp.route(f'/{op_name}', methods=['POST'])(requires_session(view))


_server_route('add_dns', 'dns', add=True)
_server_route('remove_dns', 'dns', add=False)
_server_route('add_ntp', 'ntp', add=True)
_server_route('remove_ntp', 'ntp', add=False)


@vnets_bp.route('/add_lease', methods=['POST'])
@requires_session
def add_lease(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vnets.add_lease(ctx, field(args, 'id', int), field(args, 'name'), field(args, 'address'))

    return respond(reg.gates['vnet'].write_task('add_lease', session, body, require_admin=True))


@vnets_bp.route('/remove_lease', methods=['POST'])
@requires_session
def remove_lease(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vnets.remove_lease(ctx, field(args, 'id', int), field(args, 'name'))

    return respond(reg.gates['vnet'].write_task('remove_lease', session, body, require_admin=True))
