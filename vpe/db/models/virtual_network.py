import ipaddress

from sqlalchemy.orm import validates

from vpe.db import db
from vpe.exceptions import ValidationError

SERVER_KINDS = ('dns', 'ntp')


def check_ip_address(value: str, what: str = 'IP address') -> str:
    try:
        ipaddress.IPv4Address(str(value).strip())
    except ValueError as e:
        raise ValidationError(f"Invalid {what}: {value}", "INVALID_ADDRESS") from e
    return str(value).strip()


class VirtualNetwork(db.Model):
    __tablename__ = 'virtual_networks'

    id = db.Column(db.Integer, primary_key=True)
    oid = db.Column(db.Integer, unique=True, nullable=False)
    name = db.Column(db.String(256), nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    zone_name = db.Column(db.String(256), nullable=False)
    unique_name = db.Column(db.String(256), unique=True, nullable=False)
    address = db.Column(db.String(256), nullable=False)
    netmask = db.Column(db.String(256), nullable=False)
    gateway = db.Column(db.String(256), nullable=False)
    # space separated server addresses
    dns = db.Column(db.Text, nullable=False, default='')
    ntp = db.Column(db.Text, nullable=False, default='')
    leases = db.relationship('Lease', back_populates='vnet', lazy='selectin', order_by='Lease.id')

    @validates('address', 'netmask', 'gateway')
    def validate_address(self, key, value):
        return check_ip_address(value, key)

    @validates('description')
    def validate_description(self, key, value):
        return value or ''

    @validates('dns', 'ntp')
    def validate_servers(self, key, value):
        if isinstance(value, (list, tuple)):
            value = ' '.join(str(v) for v in value)
        return ' '.join((value or '').split())

    def servers(self, kind: str) -> list[str]:
        return getattr(self, kind).split()

    def add_server(self, kind: str, server: str):
        current = self.servers(kind)
        if server not in current:
            current.append(server)
            setattr(self, kind, current)

    def remove_server(self, kind: str, server: str):
        current = self.servers(kind)
        if server in current:
            current.remove(server)
            setattr(self, kind, current)

    def lease_ids(self) -> list[int]:
        return [lease.id for lease in self.leases]

    def include_lease(self, lease_id: int) -> bool:
        return lease_id in self.lease_ids()

    def to_dict(self, bridge=None):
        data = {
            'id': self.id,
            'oid': self.oid,
            'name': self.name,
            'zone': self.zone_name,
            'unique_name': self.unique_name,
            'description': self.description,
            'address': self.address,
            'netmask': self.netmask,
            'gateway': self.gateway,
            'dns': self.servers('dns'),
            'ntp': self.servers('ntp'),
            'leases': [lease.to_dict() for lease in self.leases],
        }
        if bridge is not None:
            data['host_interface'] = bridge
        return data

    def __repr__(self):
        return f'<VirtualNetwork {self.unique_name}>'
