import re

import structlog

from vpe.db.models import User, VirtualMachine, Zone
from vpe.db.store import ResourceStore
from vpe.exceptions import AuthorizationError, ConflictError, ValidationError
from vpe.services.lease_service import LeaseAllocator
from vpe.services.one_client import OneClient, parse_document, text_at
from vpe.services.saga import ErrorAccumulator, Saga
from vpe.services.vm_service import VM_STATE_DONE, VM_STATE_FAILED

LOGGER = structlog.get_logger("vpe.user")


class UserService:
    def __init__(self, one_client: OneClient, config):
        self.one = one_client
        self.config = config

    def pool(self) -> list[dict]:
        return [user.to_dict() for user in ResourceStore.all(User)]

    def ask_id(self, name: str) -> int:
        return ResourceStore.get(User, name, by='name').id

    def info(self, ctx, user_id) -> dict:
        user = ResourceStore.get(User, user_id)
        ctx.require_owner_or_admin(user.id, f"You don't have permission to see info. of User[{user.name}].")
        return user.to_dict()

    def allocate(self, ctx, name: str, passwd: str) -> int:
        if ResourceStore.find_by_name(User, name) is not None:
            raise ConflictError(f"User[{name}] already exists.", "USER_EXISTS")

        with Saga('user.allocate') as saga:
            oid = self.one.call_checked('one.user.allocate', ctx.session, name, passwd)
            saga.on_rollback(self.one.call_checked, 'one.user.delete', ctx.session, oid,
                             description='one.user.delete')
            user = ResourceStore.save(User(oid=oid, name=name, enabled=True))
        LOGGER.info("user allocated", name=name, oid=oid)
        return user.id

    def delete(self, ctx, user_id) -> int:
        user = ResourceStore.get(User, user_id)

        for vm in ResourceStore.all(VirtualMachine, VirtualMachine.user_id == user.id):
            doc = self.one.info('one.vm.info', ctx.session, vm.oid)
            state = int(text_at(doc, '/VM/STATE', default=VM_STATE_DONE))
            if state not in (VM_STATE_DONE, VM_STATE_FAILED):
                raise AuthorizationError(
                    "Can't delete a user who has incomplete VMs (whose state is neither 'done' nor 'failed'): "
                    f"User[{user.name}]", "USER_HAS_VMS")

        pool = parse_document(self.one.call_checked('one.imagepool.info', ctx.session, user.oid))
        if pool.xpath('/IMAGE_POOL/IMAGE'):
            raise AuthorizationError(f"Can't delete a user who has OS Images: User[{user.name}]",
                                     "USER_HAS_IMAGES")

        errors = ErrorAccumulator()
        errors.add_call(self.one.call('one.user.delete', ctx.session, user.oid))
        with errors.attempt():
            LeaseAllocator.release_all(user)
        with errors.attempt():
            ResourceStore.delete(user)
        errors.raise_if_any()
        return int(user_id)

    def enable(self, user_id, enabled: bool) -> int:
        user = ResourceStore.get(User, user_id)
        user.enabled = bool(enabled)
        ResourceStore.save(user)
        if not enabled:
            LeaseAllocator.release_all(user)
        return user.id

    def passwd(self, ctx, user_id, passwd: str):
        user = ResourceStore.get(User, user_id)
        return self.one.call_checked('one.user.passwd', ctx.session, user.oid, passwd)

    def enable_zone(self, user_id, enabled: bool, zone_id, limit):
        """Grant or revoke a zone. A negative limit means the default quota."""
        user = ResourceStore.get(User, user_id)
        zone = ResourceStore.get(Zone, zone_id)
        limit = _parse_limit(limit)
        if limit < 0:
            limit = self.config['USER_LIMIT']
        user.modify_zone(zone.id, bool(enabled), limit)
        ResourceStore.save(user)
        return limit if enabled else ''


def _parse_limit(limit) -> int:
    if isinstance(limit, bool):
        raise ValidationError(f"limit attribute must be an integer: Can't specify '{limit}'", "INVALID_LIMIT")
    if isinstance(limit, int):
        return limit
    text = str(limit).strip()
    if re.fullmatch(r"-?\d+", text):
        return int(text)
    raise ValidationError(f"limit attribute must be an integer: Can't specify '{limit}'", "INVALID_LIMIT")
