from vpe.db.models.user import User, UserZone
from vpe.db.models.zone import Zone, ZoneHost, ZoneNetwork
from vpe.db.models.virtual_network import VirtualNetwork
from vpe.db.models.lease import Lease, UNASSIGNED
from vpe.db.models.vm_type import VMType
from vpe.db.models.virtual_machine import VirtualMachine, VMLease
from vpe.db.models.transfer import Transfer, TransferType

__all__ = [
    'User', 'UserZone', 'Zone', 'ZoneHost', 'ZoneNetwork', 'VirtualNetwork',
    'Lease', 'UNASSIGNED', 'VMType', 'VirtualMachine', 'VMLease',
    'Transfer', 'TransferType',
]
