import os

import structlog

from vpe.exceptions import ConflictError, NotFoundError, ValidationError
from vpe.services.one_client import OneClient, parse_document, text_at
from vpe.utils import resource_file

LOGGER = structlog.get_logger("vpe.image")

# imagepool.info filters
POOL_ALL = -2
POOL_MINE_AND_PUBLIC = -1

DEFAULT_TYPE = 'OS'
DEFAULT_BUS = 'virtio'
DEFAULT_NIC_MODEL = 'virtio'
DEV_PREFIXES = {'virtio': 'vd', 'ide': 'hd'}
FALLBACK_DEV_PREFIX = 'sd'

PUBLIC_AND_PERSISTENT_MESSAGE = "An image can't be public and persistent at the same time."


def dev_prefix_for(bus: str) -> str:
    return DEV_PREFIXES.get(str(bus).lower(), FALLBACK_DEV_PREFIX)


def _yes_no(value) -> str:
    # YAML reads YES/NO as booleans
    if isinstance(value, str):
        return 'YES' if value.strip().upper() in ('YES', 'TRUE', '1') else 'NO'
    return 'YES' if value else 'NO'


def render_image_definition(image_def: dict) -> str:
    """Build the orchestrator template of an image from a parsed image file."""
    name = image_def.get('NAME')
    if not name:
        raise ValidationError("Specify NAME in Image file.", "MISSING_FIELD")
    path = image_def.get('PATH')
    if not path:
        raise ValidationError("Specify PATH in Image file.", "MISSING_FIELD")

    public, persistent = _yes_no(image_def.get('PUBLIC')), _yes_no(image_def.get('PERSISTENT'))
    if public == 'YES' and persistent == 'YES':
        raise ValidationError(PUBLIC_AND_PERSISTENT_MESSAGE, "PUBLIC_AND_PERSISTENT")
    bus = str(image_def.get('IO_BUS') or DEFAULT_BUS)

    return '\n'.join([
        f'NAME        = "{name}"',
        f'DESCRIPTION = "{image_def.get("DESCRIPTION") or ""}"',
        f'TYPE        = "{image_def.get("TYPE") or DEFAULT_TYPE}"',
        f'PUBLIC      = "{public}"',
        f'PERSISTENT  = "{persistent}"',
        f'BUS         = "{bus}"',
        f'DEV_PREFIX  = "{dev_prefix_for(bus)}"',
        f'NIC_MODEL   = "{image_def.get("NIC_MODEL") or DEFAULT_NIC_MODEL}"',
        f'PATH        = "{path}"',
    ]) + '\n'


def file_size(source):
    if source and os.path.isfile(source):
        return os.path.getsize(source)
    return '-'


def image_to_dict(node) -> dict:
    source = text_at(node, 'SOURCE', default='')
    return {
        'id': int(text_at(node, 'ID')),
        'uid': int(text_at(node, 'UID', default=-1)),
        'name': text_at(node, 'NAME'),
        'type': text_at(node, 'TYPE', default=''),
        'public': text_at(node, 'PUBLIC', default='0') == '1',
        'persistent': text_at(node, 'PERSISTENT', default='0') == '1',
        'state': text_at(node, 'STATE', default=''),
        'source': source,
        'size': file_size(source),
        'description': text_at(node, 'TEMPLATE/DESCRIPTION', default=''),
        'bus': text_at(node, 'TEMPLATE/BUS', default=''),
        'dev_prefix': text_at(node, 'TEMPLATE/DEV_PREFIX', default=''),
        'nic_model': text_at(node, 'TEMPLATE/NIC_MODEL', default=''),
    }


class ImageService:
    """
    Disk images live in the orchestrator only. Users see their own and
    public images; only the owner or an admin may change one.
    """

    def __init__(self, one_client: OneClient):
        self.one = one_client

    def _pool(self, ctx, flag: int):
        return parse_document(self.one.call_checked('one.imagepool.info', ctx.session, flag))

    def pool(self, ctx, flag: int = POOL_MINE_AND_PUBLIC) -> list[dict]:
        """
        `flag` is -1 for the caller's and public images; -2 (every image)
        and user ids (that user's images) are for admins.
        """
        flag = int(flag)
        if flag != POOL_MINE_AND_PUBLIC:
            ctx.require_admin()
        return [image_to_dict(node) for node in self._pool(ctx, flag).xpath('/IMAGE_POOL/IMAGE')]

    def ask_id(self, ctx, name: str) -> int:
        flag = POOL_ALL if ctx.is_admin else POOL_MINE_AND_PUBLIC
        matches = [node for node in self._pool(ctx, flag).xpath('/IMAGE_POOL/IMAGE')
                   if text_at(node, 'NAME') == name]
        if not matches:
            raise NotFoundError(f"Image[{name}] is not found.", "IMAGE_NOT_FOUND")
        return int(text_at(matches[-1], 'ID'))

    def info(self, ctx, image_id) -> dict:
        image = image_to_dict(self.one.info('one.image.info', ctx.session, image_id))
        if not image['public']:
            self._require_owner(ctx, image, "You don't have permission to access the image.")
        return image

    def allocate(self, ctx, template) -> int:
        image_def = resource_file.parse(template)
        definition = render_image_definition(image_def)
        name = str(image_def['NAME'])
        taken = self._pool(ctx, POOL_ALL).xpath('/IMAGE_POOL/IMAGE/NAME/text()')
        if name in taken:
            raise ConflictError(f"Image[{name}] already exists.  Use another name.", "IMAGE_EXISTS")

        image_id = int(self.one.call_checked('one.image.allocate', ctx.session, definition))
        LOGGER.info("image registered", image=name, id=image_id, user=ctx.name)
        return image_id

    def delete(self, ctx, image_id) -> int:
        self._checked_image(ctx, image_id, "You don't have permission to delete the image.")
        self.one.call_checked('one.image.delete', ctx.session, image_id)
        LOGGER.info("image deleted", id=image_id, user=ctx.name)
        return int(image_id)

    def enable(self, ctx, image_id, enabled: bool) -> int:
        self._checked_image(ctx, image_id, "You don't have permission to enable/disable the image.")
        self.one.call_checked('one.image.enable', ctx.session, image_id, bool(enabled))
        return int(image_id)

    def publish(self, ctx, image_id, published: bool) -> int:
        self._checked_image(ctx, image_id, "You don't have permission to publish/unpublish the image.")
        ok, payload = self.one.call('one.image.publish', ctx.session, image_id, bool(published))
        if not ok:
            LOGGER.warning("image publish refused", id=image_id, reason=payload)
            raise ConflictError("A persistent image can't be public.", "IMAGE_PERSISTENT")
        return int(image_id)

    def persistent(self, ctx, image_id, persistent: bool) -> int:
        self._checked_image(ctx, image_id, "You don't have permission to make the image persistent.")
        ok, payload = self.one.call('one.image.persistent', ctx.session, image_id, bool(persistent))
        if not ok:
            LOGGER.warning("image persistent refused", id=image_id, reason=payload)
            raise ConflictError("A public or used image can't be persistent.", "IMAGE_PUBLIC_OR_USED")
        return int(image_id)

    def description(self, ctx, image_id, text: str) -> int:
        self._checked_image(ctx, image_id,
                            "You don't have permission to modify the description of the image.")
        self.one.call_checked('one.image.update', ctx.session, image_id, 'DESCRIPTION', text or '')
        return int(image_id)

    def _checked_image(self, ctx, image_id, message: str) -> dict:
        image = image_to_dict(self.one.info('one.image.info', ctx.session, image_id))
        self._require_owner(ctx, image, message)
        return image

    @staticmethod
    def _require_owner(ctx, image: dict, message: str):
        # image owners are orchestrator users
        if image['uid'] != ctx.user.oid:
            ctx.require_admin(message)
