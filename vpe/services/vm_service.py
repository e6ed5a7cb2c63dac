import os
import shutil
import time
from dataclasses import dataclass
from pathlib import Path

import structlog
import yaml
from werkzeug.security import safe_join

from vpe.db.models import Lease, VirtualMachine, VirtualNetwork, VMType, Zone
from vpe.db.store import ResourceStore
from vpe.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from vpe.services.lease_service import LeaseAllocator
from vpe.services.one_client import OneClient, parse_document, text_at
from vpe.services.saga import Saga
from vpe.services.vnet_service import unique_name
from vpe.utils.resource_file import ATTR_SEPARATOR, ITEM_SEPARATOR

LOGGER = structlog.get_logger("vpe.vm")

# orchestrator VM states
VM_STATE_DONE = 6
VM_STATE_FAILED = 7

# image states
IMAGE_STATE_USED = 2

RELEASE_ACTIONS = ('SHUTDOWN', 'FINALIZE')
SAVE_DISK_ID = 0


@dataclass
class ImageInfo:
    id: int
    name: str
    bus: str
    dev_prefix: str
    nic_model: str
    persistent: str


@dataclass
class Placement:
    vnet: VirtualNetwork
    lease: Lease


def render_vm_definition(vm_type: VMType, image: ImageInfo, placements: list[Placement],
                         cluster_name: str, context_files: list[str], created_at: int = None) -> str:
    """Build the orchestrator template of a VM. The first placement is the primary NIC."""
    if created_at is None:
        created_at = int(time.time())
    primary = placements[0]

    lines = [
        f'NAME   = "{primary.lease.name}"',
        f'VCPU   = {vm_type.cpu}',
        f'MEMORY = {vm_type.memory}',
        'DISK = [',
        f'  IMAGE_ID = {image.id},',
        f'  BUS      = "{image.bus}",',
        f'  TARGET   = "{image.dev_prefix}a",',
        '  DRIVER   = "qcow2"',
        ']',
        'DISK = [',
        '  TYPE   = "swap",',
        f'  SIZE   = {int(vm_type.memory * 1.5)},',
        '  TARGET = "vdb"',
        ']',
    ]
    for p in placements:
        lines += [
            'NIC = [',
            f'  NETWORK_ID = {p.vnet.oid},',
            f'  IP         = "{p.lease.address}",',
            f'  MODEL      = "{image.nic_model}"',
            ']',
        ]

    lines += [
        'CONTEXT = [',
        '  HOSTNAME       = "$NAME",',
        f'  PRIMARY_IPADDR = "$NIC[ IP, NETWORK_ID=\\"{primary.vnet.oid}\\" ]",',
        f'  NAMESERVERS    = "{primary.vnet.dns.strip()}",',
        f'  NTPSERVERS     = "{primary.vnet.ntp.strip()}",',
        f'  ETH0_GATEWAY   = "{primary.vnet.gateway}",',
    ]
    for i, p in enumerate(placements):
        lines += [
            f'  ETH{i}_HWADDR    = "$NIC[ MAC, NETWORK_ID=\\"{p.vnet.oid}\\" ]",',
            f'  ETH{i}_IPADDR    = "$NIC[ IP, NETWORK_ID=\\"{p.vnet.oid}\\" ]",',
            f'  ETH{i}_NETWORK   = "{p.vnet.address}",',
            f'  ETH{i}_NETMASK   = "{p.vnet.netmask}",',
        ]
    files = " ".join(context_files)
    lines += [
        '  ROOT_PUBKEY    = "root.pub",',
        f'  FILES          = "{files}",',
        '  TARGET         = "hdc",',
        f'  PERSISTENT     = "{image.persistent}",',
        f'  CREATE_DATE    = "{created_at}"',
        ']',
        f'REQUIREMENTS = "CLUSTER = \\"{cluster_name}\\" & FREECPU > {vm_type.cpu * 100} & '
        f'FREEMEMORY > {vm_type.memory}"',
        'RANK = FREECPU',
        'GRAPHICS = [',
        '  TYPE   = "vnc",',
        '  LISTEN = "0.0.0.0",',
        '  PORT   = "-1",',
        '  KEYMAP = "ja"',
        ']',
    ]
    return '\n'.join(lines) + '\n'


def render_info_text(user, zone, image: ImageInfo, vm_type, leases) -> str:
    info = {
        'USER': {'ID': user.id, 'NAME': user.name},
        'ZONE': {'ID': zone.id, 'NAME': zone.name},
        'IMAGE': {'ID': image.id, 'NAME': image.name},
        'TYPE': {'ID': vm_type.id, 'NAME': vm_type.name},
        'LEASES': [{'ID': l.id, 'NAME': l.name, 'ADDRESS': l.address} for l in leases],
    }
    return yaml.safe_dump(info, sort_keys=False)


def parse_network_request(networks) -> list[tuple]:
    """
    Split `net1#lease1;net2` (or a list of such items) into
    (network name, lease name or None) pairs.
    """
    items = networks if isinstance(networks, (list, tuple)) else str(networks or '').split(ITEM_SEPARATOR)
    result = []
    for item in items:
        item = str(item).strip()
        if not item:
            continue
        net_name, _, lease_name = item.partition(ATTR_SEPARATOR)
        result.append((net_name, lease_name or None))
    if not result:
        raise ValidationError("Specify at least one virtual network.", "NO_NETWORK")
    return result


class VMService:
    def __init__(self, one_client: OneClient, config):
        self.one = one_client
        self.config = config

    # helpers

    def _vm_dir(self, lease_name: str) -> Path:
        path = safe_join(self.config['VAR_PATH'], lease_name)
        if path is None:
            raise ValidationError(f"Invalid lease name for a VM directory: {lease_name}", "INVALID_LEASE")
        return Path(path)

    def _state(self, ctx, vm: VirtualMachine) -> dict:
        doc = self.one.info('one.vm.info', ctx.session, vm.oid)
        return {
            'state': int(text_at(doc, '/VM/STATE', default=-1)),
            'lcm_state': int(text_at(doc, '/VM/LCM_STATE', default=-1)),
        }

    def _get_owned(self, ctx, vm_id, message: str) -> VirtualMachine:
        vm = ResourceStore.get(VirtualMachine, vm_id)
        ctx.require_owner_or_admin(vm.user_id, message)
        return vm

    def _describe(self, ctx, vm: VirtualMachine) -> dict:
        data = vm.to_dict()
        data.update(self._state(ctx, vm))
        return data

    # queries

    def pool(self, ctx, flag: int, history: bool = False) -> list[dict]:
        """
        flag < -1: every VM (admin only)
        flag == -1: the caller's VMs
        flag >= 0: VMs of that user (admin unless it is the caller)
        Finished VMs are listed only with `history`.
        """
        if flag < -1 or (flag >= 0 and flag != ctx.user.id):
            ctx.require_admin()

        if flag == -1:
            criteria = [VirtualMachine.user_id == ctx.user.id]
        elif flag >= 0:
            criteria = [VirtualMachine.user_id == flag]
        else:
            criteria = []

        result = []
        for vm in ResourceStore.all(VirtualMachine, *criteria):
            data = self._describe(ctx, vm)
            if data['state'] == VM_STATE_DONE and not history:
                continue
            result.append(data)
        return result

    def ask_id(self, ctx, name: str) -> int:
        found = ResourceStore.all(VirtualMachine, VirtualMachine.user_id == ctx.user.id,
                                  VirtualMachine.name == name)
        if not found:
            raise NotFoundError(f"VirtualMachine[{name}] is not found.", "VM_NOT_FOUND")
        return found[-1].id

    def info(self, ctx, vm_id) -> dict:
        vm = self._get_owned(ctx, vm_id, "You don't have permission to query info. of the VM.")
        return self._describe(ctx, vm)

    # allocation

    def _check_quota(self, ctx, zone: Zone, vm_type: VMType):
        limit = ctx.user.limit_for(zone.id)
        in_use = 0
        for vm in ResourceStore.all(VirtualMachine, VirtualMachine.user_id == ctx.user.id,
                                    VirtualMachine.zone_id == zone.id):
            if self._state(ctx, vm)['state'] == VM_STATE_DONE:
                continue
            running_type = ResourceStore.find_by_id(VMType, vm.type_id)
            in_use += running_type.weight if running_type else 1
        if in_use + vm_type.weight > limit:
            raise QuotaExceededError(
                f"User[{ctx.name}] can't run any more VMs in Zone[{zone.name}] as quota reached.")

    def _resolve_image_id(self, ctx, image) -> int:
        if isinstance(image, int) or str(image).isdigit():
            return int(image)
        pool = parse_document(self.one.call_checked('one.imagepool.info', ctx.session, -2))
        oid = text_at(pool, f'/IMAGE_POOL/IMAGE[NAME="{image}"]/ID')
        if oid is None:
            raise NotFoundError(f"Image[{image}] is not found.", "IMAGE_NOT_FOUND")
        return int(oid)

    def _image_info(self, ctx, image_id: int) -> ImageInfo:
        doc = self.one.info('one.image.info', ctx.session, image_id)
        missing_bus = 'BUS and/or DEV_PREFIX attributes are not set to the image.'
        image = ImageInfo(
            id=image_id,
            name=text_at(doc, '/IMAGE/NAME', default=''),
            bus=text_at(doc, '/IMAGE/TEMPLATE/BUS', required=missing_bus),
            dev_prefix=text_at(doc, '/IMAGE/TEMPLATE/DEV_PREFIX', required=missing_bus),
            nic_model=text_at(doc, '/IMAGE/TEMPLATE/NIC_MODEL',
                              required='NIC_MODEL attribute is not set to the image.'),
            persistent=text_at(doc, '/IMAGE/PERSISTENT', default='0'),
        )
        if image.persistent == '1' and text_at(doc, '/IMAGE/STATE') == str(IMAGE_STATE_USED):
            raise ConflictError("A persistent image can't be used by two or more VMs.", "IMAGE_IN_USE")
        return image

    def _resolve_placements(self, ctx, zone: Zone, networks) -> list[Placement]:
        placements = []
        for net_name, lease_name in parse_network_request(networks):
            vnet_name = unique_name(zone.name, net_name)
            vnet = ResourceStore.find_by_name(VirtualNetwork, vnet_name)
            if vnet is None:
                raise NotFoundError(f"VirtualNetwork[{vnet_name}] is not found.", "VNET_NOT_FOUND")

            if lease_name:
                lease = ResourceStore.get(Lease, lease_name, by='id_or_name')
                if lease.used == 1:
                    raise ConflictError(f"Lease[{lease.name}] is already used.", "LEASE_IN_USE")
                if lease.assigned_to != ctx.user.id:
                    raise AuthorizationError(
                        f"User[{ctx.name}] don't have a permission to use Lease[{lease.name}].", "LEASE_NOT_OWNED")
                if lease.vnet_id != vnet.id:
                    raise ValidationError(f"Lease[{lease.name}] can't be used in VirtualNetwork[{vnet_name}].",
                                          "LEASE_NOT_IN_VNET")
            else:
                taken = {p.lease.id for p in placements}
                candidates = [l for l in LeaseAllocator.find_available(vnet.id, ctx.user.id) if l.id not in taken]
                if not candidates:
                    raise NotFoundError(f"No available virtual host lease in VirtualNetwork[{vnet_name}].",
                                        "NO_LEASE_AVAILABLE")
                lease = candidates[0]
            placements.append(Placement(vnet=vnet, lease=lease))
        return placements

    def _prepare_vm_dir(self, lease_name: str, sshkey: str) -> Path:
        vm_dir = self._vm_dir(lease_name)
        vm_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(vm_dir, 0o750)
        (vm_dir / 'root.pub').write_text(f"{sshkey}\n")
        return vm_dir

    def allocate(self, ctx, type_name, image, sshkey: str, zone_name, networks) -> int:
        vm_type = ResourceStore.get(VMType, type_name, by='id_or_name')
        zone = ResourceStore.get(Zone, zone_name, by='id_or_name')

        if not ctx.user.has_zone(zone.id):
            raise AuthorizationError(f"User[{ctx.name}] don't have permission to use Zone[{zone.name}]",
                                     "ZONE_NOT_PERMITTED")
        self._check_quota(ctx, zone, vm_type)

        image_info = self._image_info(ctx, self._resolve_image_id(ctx, image))
        cluster_doc = self.one.info('one.cluster.info', ctx.session, zone.oid)
        cluster_name = text_at(cluster_doc, '/CLUSTER/NAME', required=f"Cluster of Zone[{zone.name}] has no name.")
        placements = self._resolve_placements(ctx, zone, networks)
        leases = [p.lease for p in placements]
        primary = leases[0]

        with Saga('vm.allocate') as saga:
            vm_dir = self._prepare_vm_dir(primary.name, sshkey)
            saga.on_rollback(shutil.rmtree, vm_dir, ignore_errors=True, description='remove vm directory')

            share = self.config['SHARE_PATH']
            context_files = [os.path.join(share, 'vmscripts', 'init.rb'),
                             os.path.join(share, 'vmscripts', 'final.rb'),
                             str(vm_dir / 'root.pub')]
            definition = render_vm_definition(vm_type, image_info, placements, cluster_name, context_files)

            oid = self.one.call_checked('one.vm.allocate', ctx.session, definition)
            saga.on_rollback(self.one.call_checked, 'one.vm.action', ctx.session, 'finalize', oid,
                             description='one.vm.action finalize')

            vm = VirtualMachine(oid=oid, name=primary.name, user_id=ctx.user.id, zone_id=zone.id,
                                lease_id=primary.id, type_id=vm_type.id, image_id=image_info.id,
                                info=render_info_text(ctx.user, zone, image_info, vm_type, leases))
            vm.bind_leases([l.id for l in leases])
            ResourceStore.save(vm)
            saga.on_rollback(ResourceStore.delete, vm, description='delete vm record')

            one_location = self.config.get('ONE_LOCATION')
            if one_location:
                log_link = vm_dir / 'one_log'
                if not log_link.is_symlink():
                    log_link.symlink_to(os.path.join(one_location, 'var', str(oid)))
            (vm_dir / str(vm.id)).touch()

            for lease in leases:
                LeaseAllocator.set_used([lease], True)
                saga.on_rollback(LeaseAllocator.set_used, [lease], False, description=f'unuse {lease.name}')

        LOGGER.info("vm allocated", user=ctx.name, vm=vm.id, oid=oid, zone=zone.name,
                    leases=[l.name for l in leases])
        return vm.id

    # actions

    def action(self, ctx, vm_id, action: str) -> int:
        vm = self._get_owned(ctx, vm_id, "You don't have permission to make any action to the VM.")
        self.one.call_checked('one.vm.action', ctx.session, action, vm.oid)

        if str(action).upper() in RELEASE_ACTIONS:
            self._release(vm)
        return vm.id

    def _release(self, vm: VirtualMachine):
        """
        Give back the leases and the working directory of a VM, once.
        After the first release the leases may already run another VM.
        """
        if vm.released:
            LOGGER.debug("vm already released", vm=vm.id)
            return

        primary = ResourceStore.find_by_id(Lease, vm.lease_id)
        if primary is not None:
            vm_dir = self._vm_dir(primary.name)
            # the directory is reused by the next VM on the lease
            if (vm_dir / str(vm.id)).exists():
                shutil.rmtree(vm_dir, ignore_errors=True)
        leases = [l for l in (ResourceStore.find_by_id(Lease, lid) for lid in vm.lease_ids()) if l]
        LeaseAllocator.set_used(leases, False)
        vm.released = True
        ResourceStore.save(vm)
        LOGGER.info("vm leases released", vm=vm.id, leases=[l.name for l in leases])

    def mark_save(self, ctx, vm_id, image_name: str, description: str = '') -> int:
        vm = self._get_owned(ctx, vm_id, "You don't have permission to save status of the VM.")

        pool = parse_document(self.one.call_checked('one.imagepool.info', ctx.session, -2))
        if pool.xpath(f'/IMAGE_POOL/IMAGE[NAME="{image_name}"]'):
            raise ConflictError(f"Image[{image_name}] already exists.  Use another name.", "IMAGE_EXISTS")

        doc = self.one.info('one.vm.info', ctx.session, vm.oid)
        disk = f'/VM/TEMPLATE/DISK[DISK_ID="{SAVE_DISK_ID}"]'
        save_as = text_at(doc, f'{disk}/SAVE_AS')
        if save_as is not None:
            raise ConflictError(f"VM[{vm.id}] is already marked to save its OS image as Image[{save_as}]",
                                "ALREADY_MARKED")
        target = text_at(doc, f'{disk}/TARGET', required=f"VM[{vm.id}] has no disk to save.")
        bus = text_at(doc, f'{disk}/BUS', default='')
        nic_model = text_at(doc, '/VM/TEMPLATE/NIC/MODEL', default='')
        template = '\n'.join([
            f'NAME        = "{image_name}"',
            f'DESCRIPTION = "{description or ""}"',
            'TYPE        = "OS"',
            f'BUS         = "{bus}"',
            f'DEV_PREFIX  = "{target[:2]}"',
            f'NIC_MODEL   = "{nic_model}"',
        ]) + '\n'

        with Saga('vm.mark_save') as saga:
            image_id = self.one.call_checked('one.image.allocate', ctx.session, template)
            saga.on_rollback(self.one.call_checked, 'one.image.delete', ctx.session, image_id,
                             description='one.image.delete')
            self.one.call_checked('one.vm.savedisk', ctx.session, vm.oid, SAVE_DISK_ID, image_id)
        return image_id
