import structlog

from vpe.db.models import Lease, VirtualNetwork
from vpe.db.store import ResourceStore
from vpe.exceptions import ConflictError, NotFoundError, ValidationError
from vpe.services.one_client import OneClient, text_at
from vpe.services.saga import ErrorAccumulator, Saga

LOGGER = structlog.get_logger("vpe.vnet")

UNIQUE_NAME_SEPARATOR = '::'


def unique_name(zone_name: str, vnet_name: str) -> str:
    return f"{zone_name}{UNIQUE_NAME_SEPARATOR}{vnet_name}"


def lease_query(address: str) -> str:
    return f'LEASES=[IP="{address}"]'


class VNetService:
    def __init__(self, one_client: OneClient):
        self.one = one_client

    def pool(self, ctx) -> list[dict]:
        return [self._describe(ctx, vnet) for vnet in ResourceStore.all(VirtualNetwork)]

    def ask_id(self, name: str) -> int:
        return ResourceStore.get(VirtualNetwork, name, by='name').id

    def info(self, ctx, vnet_id) -> dict:
        return self._describe(ctx, ResourceStore.get(VirtualNetwork, vnet_id))

    def _describe(self, ctx, vnet: VirtualNetwork) -> dict:
        doc = self.one.info('one.vn.info', ctx.session, vnet.oid)
        return vnet.to_dict(bridge=text_at(doc, '/VNET/BRIDGE', default=''))

    def add_servers(self, vnet_id, kind: str, servers: str) -> int:
        vnet = ResourceStore.get(VirtualNetwork, vnet_id)
        for server in _split_servers(servers):
            vnet.add_server(kind, server)
        ResourceStore.save(vnet)
        return vnet.id

    def remove_servers(self, vnet_id, kind: str, servers: str) -> int:
        vnet = ResourceStore.get(VirtualNetwork, vnet_id)
        for server in _split_servers(servers):
            vnet.remove_server(kind, server)
        ResourceStore.save(vnet)
        return vnet.id

    def add_lease(self, ctx, vnet_id, name: str, address: str) -> int:
        vnet = ResourceStore.get(VirtualNetwork, vnet_id)
        query = lease_query(address)
        with Saga('vnet.add_lease') as saga:
            self.one.call_checked('one.vn.addleases', ctx.session, vnet.oid, query)
            saga.on_rollback(self.one.call_checked, 'one.vn.rmleases', ctx.session, vnet.oid, query,
                             description='one.vn.rmleases')
            self.add_lease_to_vnet(name, address, vnet)
        return vnet.id

    def remove_lease(self, ctx, vnet_id, name: str) -> int:
        vnet = ResourceStore.get(VirtualNetwork, vnet_id)
        lease = ResourceStore.get(Lease, name, by='name')
        if lease.used == 1:
            raise ConflictError(f"Lease[{name}] is used.", "LEASE_IN_USE")
        if not vnet.include_lease(lease.id):
            raise ValidationError(f"Lease[{name}] is not included in VirtualNetwork[{vnet.unique_name}]",
                                  "LEASE_NOT_IN_VNET")

        errors = ErrorAccumulator()
        address = lease.address
        with errors.attempt():
            self.remove_lease_from_vnet(lease, vnet)
        errors.add_call(self.one.call('one.vn.rmleases', ctx.session, vnet.oid, lease_query(address)))
        errors.raise_if_any()
        return vnet.id

    @staticmethod
    def add_lease_to_vnet(name: str, address: str, vnet: VirtualNetwork) -> Lease:
        if ResourceStore.find_by_name(Lease, name) is not None:
            raise ConflictError(f"Lease[{name}] already exists.", "LEASE_EXISTS")
        lease = Lease(name=name, address=address, vnet_id=vnet.id)
        ResourceStore.save(lease)
        LOGGER.debug("lease added", lease=name, address=address, vnet=vnet.unique_name)
        return lease

    @staticmethod
    def remove_lease_from_vnet(lease, vnet: VirtualNetwork) -> int:
        if not isinstance(lease, Lease):
            found = ResourceStore.find_by_id_or_name(Lease, lease)
            if found is None:
                raise NotFoundError(f"Lease[{lease}] does not exist.", "LEASE_NOT_FOUND")
            lease = found
        if lease.vnet_id != vnet.id:
            raise ValidationError(f"Lease[{lease.name}] is not included in VirtualNetwork[{vnet.unique_name}]",
                                  "LEASE_NOT_IN_VNET")
        lease_id = lease.id
        ResourceStore.delete(lease)
        return lease_id


def _split_servers(servers) -> list[str]:
    if isinstance(servers, (list, tuple)):
        return [str(s) for s in servers]
    return str(servers or '').split()
