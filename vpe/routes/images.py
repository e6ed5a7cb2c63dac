from flask import Blueprint

from vpe.middleware.auth import requires_session
from vpe.routes.common import arguments, field, registry, respond
from vpe.services.image_service import POOL_MINE_AND_PUBLIC

images_bp = Blueprint('images', __name__)


@images_bp.route('/pool', methods=['POST'])
@requires_session
def pool(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['image'].read_task(
        'pool', session, lambda ctx: reg.images.pool(ctx, field(args, 'flag', int, POOL_MINE_AND_PUBLIC))))


@images_bp.route('/ask_id', methods=['POST'])
@requires_session
def ask_id(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['image'].read_task(
        'ask_id', session, lambda ctx: reg.images.ask_id(ctx, field(args, 'name'))))


@images_bp.route('/info', methods=['POST'])
@requires_session
def info(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['image'].read_task(
        'info', session, lambda ctx: reg.images.info(ctx, field(args, 'id', int))))


@images_bp.route('/allocate', methods=['POST'])
@requires_session
def allocate(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['image'].write_task(
        'allocate', session, lambda ctx: reg.images.allocate(ctx, field(args, 'template', None))))


@images_bp.route('/delete', methods=['POST'])
@requires_session
def delete(session):
    args, reg = arguments(), registry()
    return respond(reg.gates['image'].write_task(
        'delete', session, lambda ctx: reg.images.delete(ctx, field(args, 'id', int))))


def _flag_route(op_name, flag_name):
    """Operations that set one boolean attribute of an image."""
    def view(session):
        args, reg = arguments(), registry()

        def body(ctx):
            return getattr(reg.images, op_name)(ctx, field(args, 'id', int), field(args, flag_name, bool))

        return respond(reg.gates['image'].write_task(op_name, session, body))

    view.__name__ = op_name
    images_bp.route(f'/{op_name}', methods=['POST'])(requires_session(view))


_flag_route('enable', 'enabled')
_flag_route('publish', 'published')
_flag_route('persistent', 'persistent')


@images_bp.route('/description', methods=['POST'])
@requires_session
def description(session):
    args, reg = arguments(), registry()

    def body(ctx):
        return reg.images.description(ctx, field(args, 'id', int), field(args, 'description', str, ''))

    return respond(reg.gates['image'].write_task('description', session, body))
