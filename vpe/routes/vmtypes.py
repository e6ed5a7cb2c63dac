from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond
from vpe.services.vm_type_service import VMTypeService

vmtypes_bp = Blueprint('vmtypes', __name__)


@vmtypes_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    reg = registry()
    return respond(reg.gates['vmtype'].read_task('pool', session, lambda ctx: VMTypeService.pool()))


@vmtypes_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vmtype'].read_task(
        'ask_id', session, lambda ctx: VMTypeService.ask_id(field(args, 'name'))))


@vmtypes_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vmtype'].read_task(
        'info', session, lambda ctx: VMTypeService.info(field(args, 'id', int))))


@vmtypes_bp.route('/allocate', methods=['POST'])
@requires_session
def allocate(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vmtype'].write_task(
        'allocate', session, lambda ctx: VMTypeService.allocate(field(args, 'template', None)),
        require_admin=True))


@vmtypes_bp.route('/delete', methods=['POST'])
@requires_session
def delete(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['vmtype'].write_task(
        'delete', session, lambda ctx: VMTypeService.delete(field(args, 'id', int)), require_admin=True))
