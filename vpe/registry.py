from dataclasses import dataclass, field
from typing import Optional

from vpe.middleware.auth import AuthGate
from vpe.services.host_service import HostService
from vpe.services.image_service import ImageService
from vpe.services.one_client import OneClient
from vpe.services.transfer_service import TransferService
from vpe.services.transfer_sweeper import TransferSweeper
from vpe.services.user_service import UserService
from vpe.services.vm_service import VMService
from vpe.services.vnet_service import VNetService
from vpe.services.zone_service import ZoneService

GATE_NAMES = ('user', 'zone', 'vnet', 'lease', 'vmtype', 'image', 'host', 'vm', 'transfer')


@dataclass
class Registry:
    """Per-app components, stored in `app.extensions['vpe']`."""
    one: OneClient
    users: UserService
    zones: ZoneService
    vnets: VNetService
    images: ImageService
    hosts: HostService
    vms: VMService
    transfers: TransferService
    gates: dict = field(default_factory=dict)
    sweeper: Optional[TransferSweeper] = None

    @classmethod
    def build(cls, one_client: OneClient, config):
        return cls(
            one=one_client,
            users=UserService(one_client, config),
            zones=ZoneService(one_client, config),
            vnets=VNetService(one_client),
            images=ImageService(one_client),
            hosts=HostService(one_client),
            vms=VMService(one_client, config),
            transfers=TransferService(config),
            gates={name: AuthGate(one_client, name) for name in GATE_NAMES},
        )
