from sqlalchemy.orm import validates

from vpe.db import db
from vpe.db.models.virtual_network import check_ip_address
from vpe.exceptions import ValidationError

UNASSIGNED = -1


class Lease(db.Model):
    """
    An IP address slot of a virtual network.

    `used` is set only while a VM is bound to the lease. `assigned_to`
    reserves the lease for one user (-1 when nobody holds it).
    """
    __tablename__ = 'leases'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(256), unique=True, nullable=False)
    address = db.Column(db.String(256), nullable=False)
    used = db.Column(db.Integer, nullable=False, default=0)
    assigned_to = db.Column(db.Integer, nullable=False, default=UNASSIGNED)
    vnet_id = db.Column('vnetid', db.Integer, db.ForeignKey('virtual_networks.id'), nullable=False)
    vnet = db.relationship('VirtualNetwork', back_populates='leases')

    @validates('name')
    def validate_name(self, key, value):
        if not isinstance(value, str) or not value:
            raise ValidationError("Lease name must be a non-empty string", "INVALID_LEASE")
        return value

    @validates('address')
    def validate_address(self, key, value):
        return check_ip_address(value, 'lease address')

    @validates('used')
    def validate_used(self, key, value):
        if value not in (0, 1, True, False):
            raise ValidationError(f"Lease used flag must be 0 or 1, not {value}", "INVALID_LEASE")
        return int(value)

    @property
    def is_assigned(self) -> bool:
        return self.assigned_to is not None and self.assigned_to >= 0

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'address': self.address,
            'used': self.used,
            'assigned_to': self.assigned_to,
            'vnet_id': self.vnet_id,
        }

    def __repr__(self):
        return f'<Lease {self.name} {self.address}>'
