from pathlib import Path

import structlog

from vpe.db.models import UserZone, VirtualNetwork, Zone
from vpe.db.models.virtual_network import check_ip_address
from vpe.db.store import ResourceStore
from vpe.exceptions import ConflictError, NotFoundError, ValidationError
from vpe.services.one_client import OneClient, text_at
from vpe.services.saga import ErrorAccumulator, Saga
from vpe.services.vnet_service import VNetService, unique_name
from vpe.utils import resource_file

LOGGER = structlog.get_logger("vpe.zone")

VNET_FIELDS = ('NAME', 'INTERFACE', 'ADDRESS', 'NETMASK', 'GATEWAY', 'DNS', 'NTP', 'LEASE')


def render_vnet_definition(vnet_unique_name: str, interface: str, lease_addresses) -> str:
    lines = [
        f'NAME   = "{vnet_unique_name}"',
        'TYPE   = FIXED',
        'PUBLIC = YES',
        '',
        f'BRIDGE = {interface}',
    ]
    lines.extend(f'LEASES = [IP="{address}"]' for address in lease_addresses)
    return '\n'.join(lines) + '\n'


def _as_list(value):
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class ZoneService:
    """Zone lifecycle, spanning orchestrator clusters, hosts and networks."""

    def __init__(self, one_client: OneClient, config):
        self.one = one_client
        self.config = config

    # queries

    def pool(self, ctx) -> list[dict]:
        return [self._describe(ctx, zone) for zone in ResourceStore.all(Zone)]

    def ask_id(self, name: str) -> int:
        return ResourceStore.get(Zone, name, by='name').id

    def info(self, ctx, zone_id) -> dict:
        return self._describe(ctx, ResourceStore.get(Zone, zone_id))

    def _describe(self, ctx, zone: Zone) -> dict:
        data = zone.to_dict()
        hosts = []
        for hid in zone.host_ids():
            doc = self.one.info('one.host.info', ctx.session, hid)
            hosts.append({'id': hid, 'name': text_at(doc, '/HOST/NAME', default='')})
        data['hosts'] = hosts
        return data

    # zone lifecycle

    def allocate(self, ctx, template) -> int:
        zone_def = resource_file.parse(template)
        name = resource_file.require(zone_def, 'NAME', where='Zone file')
        if ResourceStore.find_by_name(Zone, name) is not None:
            raise ConflictError(f"Zone[{name}] already exists.", "ZONE_EXISTS")

        with Saga('zone.allocate') as saga:
            cluster_oid = self.one.call_checked('one.cluster.allocate', ctx.session, name)
            saga.on_rollback(self.one.call_checked, 'one.cluster.delete', ctx.session, cluster_oid,
                             description='one.cluster.delete')

            zone = ResourceStore.save(Zone(oid=cluster_oid, name=name,
                                           description=zone_def.get('DESCRIPTION')))
            # from here on a failure tears the whole zone down
            saga.replace_compensations(self._delete, ctx, zone, description='zone.delete')

            for host in _as_list(zone_def.get('HOST')):
                self._add_host(ctx, str(host), zone)
            for vnet_def in _as_list(zone_def.get('NETWORK')):
                self._add_vnet(ctx, vnet_def, zone)

        LOGGER.info("zone allocated", zone=name, cluster=cluster_oid)
        return zone.id

    def delete(self, ctx, zone_id) -> int:
        zone = ResourceStore.get(Zone, zone_id)
        self._delete(ctx, zone)
        return int(zone_id)

    def _delete(self, ctx, zone: Zone):
        """
        Remove networks, hosts, the cluster and the zone record, in that
        order. Every step is attempted; failures are reported together.
        """
        errors = ErrorAccumulator()

        for vnet_id in zone.network_ids():
            with errors.attempt():
                self._remove_vnet(ctx, vnet_id, zone)

        for host_oid in zone.host_ids():
            with errors.attempt():
                self._remove_host(ctx, host_oid, zone)

        errors.add_call(self.one.call('one.cluster.delete', ctx.session, zone.oid))

        with errors.attempt():
            grants = ResourceStore.all(UserZone, UserZone.zone_id == zone.id)
            if grants:
                ResourceStore.delete(*grants)

        with errors.attempt():
            ResourceStore.delete(zone)

        errors.raise_if_any()

    # hosts

    def add_host(self, ctx, zone_id, host_name: str) -> int:
        zone = ResourceStore.get(Zone, zone_id)
        return self._add_host(ctx, host_name, zone)

    def remove_host(self, ctx, zone_id, host) -> int:
        zone = ResourceStore.get(Zone, zone_id)
        return self._remove_host(ctx, host, zone)

    def _add_host(self, ctx, host_name: str, zone: Zone) -> int:
        with Saga('zone.add_host') as saga:
            host_oid = self.one.call_checked('one.host.allocate', ctx.session, host_name,
                                             self.config['HOST_IM_DRIVER'],
                                             self.config['HOST_VMM_DRIVER'],
                                             self.config['HOST_TM_DRIVER'])
            saga.on_rollback(self.one.call_checked, 'one.host.delete', ctx.session, host_oid,
                             description='one.host.delete')

            self.one.call_checked('one.cluster.add', ctx.session, host_oid, zone.oid)
            saga.on_rollback(self.one.call_checked, 'one.cluster.remove', ctx.session, host_oid,
                             description='one.cluster.remove')

            zone.add_host(host_oid)
            ResourceStore.save(zone)
        LOGGER.info("host added", zone=zone.name, host=host_name, host_oid=host_oid)
        return host_oid

    def _resolve_host(self, ctx, host, zone: Zone) -> int:
        if isinstance(host, int) or str(host).isdigit():
            return int(host)
        for hid in zone.host_ids():
            doc = self.one.info('one.host.info', ctx.session, hid)
            if text_at(doc, '/HOST/NAME') == host:
                return int(text_at(doc, '/HOST/ID', default=hid))
        raise NotFoundError(f"Host[{host}] is not in Zone[{zone.name}].", "HOST_NOT_FOUND")

    def _remove_host(self, ctx, host, zone: Zone) -> int:
        host_oid = self._resolve_host(ctx, host, zone)
        # hosts of other zones are never touched
        if not zone.remove_host(host_oid):
            raise NotFoundError(f"Host[{host_oid}] is not in Zone[{zone.name}].", "HOST_NOT_FOUND")

        errors = ErrorAccumulator()
        with errors.attempt():
            ResourceStore.save(zone)
        errors.add_call(self.one.call('one.cluster.remove', ctx.session, host_oid))
        errors.add_call(self.one.call('one.host.delete', ctx.session, host_oid))
        errors.raise_if_any()
        return host_oid

    # networks

    def add_vnet(self, ctx, zone_id, template) -> int:
        zone = ResourceStore.get(Zone, zone_id)
        return self._add_vnet(ctx, resource_file.parse(template), zone)

    def remove_vnet(self, ctx, zone_id, vnet_name: str) -> int:
        zone = ResourceStore.get(Zone, zone_id)
        return self._remove_vnet(ctx, vnet_name, zone)

    def _add_vnet(self, ctx, vnet_def: dict, zone: Zone) -> int:
        if not isinstance(vnet_def, dict):
            raise ValidationError("A network definition must be a mapping", "MALFORMED_TEMPLATE")
        name, interface, address, netmask, gateway, dns, ntp, leases = resource_file.require(
            vnet_def, *VNET_FIELDS, where='the network definition')
        vnet_unique = unique_name(zone.name, name)
        if ResourceStore.find_by_name(VirtualNetwork, vnet_unique) is not None:
            raise ConflictError(f"VirtualNetwork[{vnet_unique}] already exists.", "VNET_EXISTS")

        leases = _as_list(leases)
        for lease in leases:
            if not isinstance(lease, dict):
                raise ValidationError(f"Malformed lease in VirtualNetwork[{vnet_unique}]", "MALFORMED_TEMPLATE")
            resource_file.require(lease, 'NAME', 'ADDRESS', where=f'a lease of VirtualNetwork[{vnet_unique}]')
            check_ip_address(lease['ADDRESS'], 'lease address')

        # validated before anything is allocated
        vnet = VirtualNetwork(name=name, description=vnet_def.get('DESCRIPTION'),
                              zone_name=zone.name, unique_name=vnet_unique,
                              address=address, netmask=netmask, gateway=gateway,
                              dns=_as_list(dns), ntp=_as_list(ntp))

        definition = render_vnet_definition(vnet_unique, interface, [lease['ADDRESS'] for lease in leases])
        with Saga('zone.add_vnet') as saga:
            vnet.oid = self.one.call_checked('one.vn.allocate', ctx.session, definition)
            saga.on_rollback(self.one.call_checked, 'one.vn.delete', ctx.session, vnet.oid,
                             description='one.vn.delete')

            ResourceStore.save(vnet)
            # removing the network also deletes its leases and the external network
            saga.replace_compensations(self._remove_vnet, ctx, vnet, zone, description='zone.remove_vnet')

            for lease in leases:
                VNetService.add_lease_to_vnet(str(lease['NAME']), lease['ADDRESS'], vnet)

            zone.add_network(vnet.id)
            ResourceStore.save(zone)
        LOGGER.info("network added", zone=zone.name, vnet=vnet_unique, leases=len(leases))
        return vnet.id

    def _remove_vnet(self, ctx, vnet, zone: Zone) -> int:
        if isinstance(vnet, int):
            vnet_id = vnet
            vnet = ResourceStore.find_by_id(VirtualNetwork, vnet_id)
            if vnet is None:
                raise NotFoundError(f"VirtualNetwork[{vnet_id}] does not exist.", "VNET_NOT_FOUND")
        elif isinstance(vnet, str):
            name = unique_name(zone.name, vnet)
            vnet = ResourceStore.find_by_name(VirtualNetwork, name)
            if vnet is None:
                raise NotFoundError(f"VirtualNetwork[{name}] does not exist.", "VNET_NOT_FOUND")

        errors = ErrorAccumulator()
        if zone.remove_network(vnet.id):
            with errors.attempt():
                ResourceStore.save(zone)
        else:
            errors.add(f"VirtualNetwork[{vnet.unique_name}] is not in Zone[{zone.name}].")

        for lease_id in vnet.lease_ids():
            with errors.attempt():
                VNetService.remove_lease_from_vnet(lease_id, vnet)

        vnet_id, vnet_oid = vnet.id, vnet.oid
        with errors.attempt():
            ResourceStore.delete(vnet)

        errors.add_call(self.one.call('one.vn.delete', ctx.session, vnet_oid))
        errors.raise_if_any()
        return vnet_id

    # probes

    def sync(self, ctx):
        one_location = self.config.get('ONE_LOCATION')
        remotes = Path(one_location, 'var', 'remotes') if one_location else Path('/var/lib/one/remotes')
        try:
            remotes.touch()
        except OSError as e:
            raise ValidationError(f"Failed to touch {remotes}: {e}", "SYNC_FAILED") from e
        return ''
