from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond

vms_bp = Blueprint('vms', __name__)


@vms_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    """List VMs: -2 all, -1 mine, >= 0 those of a user; `history` adds finished ones"""
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vms.pool(ctx, field(args, 'flag', int, default=-1), field(args, 'history', bool, default=False))

    return respond(reg.gates['vm'].read_task('pool', session, body))


@vms_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vm'].read_task('ask_id', session, lambda ctx: reg.vms.ask_id(ctx, field(args, 'name'))))


@vms_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vm'].read_task('info', session, lambda ctx: reg.vms.info(ctx, field(args, 'id', int))))


@vms_bp.route('/allocate', methods=['POST'])
@requires_session
def allocate(session):
    """
    Start a VM. `networks` is `net[#lease];net[#lease]...` (or a list of
    such items) naming networks of the zone; the first one is primary.
    """
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vms.allocate(
            ctx,
            field(args, 'type', None),
            field(args, 'image_id', None),
            field(args, 'sshkey'),
            field(args, 'zone', None),
            field(args, 'networks', None),
        )

    return respond(reg.gates['vm'].write_task('allocate', session, body))


@vms_bp.route('/action', methods=['POST'])
@requires_session
def action(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vms.action(ctx, field(args, 'id', int), field(args, 'action'))

    return respond(reg.gates['vm'].write_task('action', session, body))


@vms_bp.route('/mark_save', methods=['POST'])
@requires_session
def mark_save(session):
    """Have the orchestrator save the boot disk as a new image on shutdown"""
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.vms.mark_save(ctx, field(args, 'id', int), field(args, 'image_name'),
                                 field(args, 'description', default=''))

    return respond(reg.gates['vm'].write_task('mark_save', session, body))
