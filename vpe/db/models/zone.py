from sqlalchemy.orm import validates

from vpe.db import db
from vpe.exceptions import ValidationError


class ZoneHost(db.Model):
    __tablename__ = 'zone_hosts'

    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), primary_key=True)
    host_oid = db.Column(db.Integer, primary_key=True)


class ZoneNetwork(db.Model):
    __tablename__ = 'zone_networks'

    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), primary_key=True)
    vnet_id = db.Column(db.Integer, db.ForeignKey('virtual_networks.id'), primary_key=True)


class Zone(db.Model):
    """
    A tenant-visible group of hosts and networks. Backed by a cluster
    in the orchestrator; `hosts` holds orchestrator host ids and
    `networks` holds local virtual network ids.
    """
    __tablename__ = 'zones'

    id = db.Column(db.Integer, primary_key=True)
    oid = db.Column(db.Integer, unique=True, nullable=False)
    name = db.Column(db.String(256), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=False, default='')
    hosts = db.relationship('ZoneHost', cascade='all, delete-orphan', lazy='selectin',
                            order_by='ZoneHost.host_oid')
    networks = db.relationship('ZoneNetwork', cascade='all, delete-orphan', lazy='selectin',
                               order_by='ZoneNetwork.vnet_id')

    @validates('name')
    def validate_name(self, key, value):
        if not isinstance(value, str) or not value:
            raise ValidationError("Zone name must be a non-empty string", "INVALID_ZONE")
        return value

    @validates('description')
    def validate_description(self, key, value):
        return value or ''

    def host_ids(self) -> list[int]:
        return [h.host_oid for h in self.hosts]

    def network_ids(self) -> list[int]:
        return [n.vnet_id for n in self.networks]

    def add_host(self, host_oid: int):
        if host_oid not in self.host_ids():
            self.hosts.append(ZoneHost(host_oid=host_oid))

    def remove_host(self, host_oid: int) -> bool:
        for h in self.hosts:
            if h.host_oid == host_oid:
                self.hosts.remove(h)
                return True
        return False

    def add_network(self, vnet_id: int):
        if vnet_id not in self.network_ids():
            self.networks.append(ZoneNetwork(vnet_id=vnet_id))

    def remove_network(self, vnet_id: int) -> bool:
        for n in self.networks:
            if n.vnet_id == vnet_id:
                self.networks.remove(n)
                return True
        return False

    def to_dict(self):
        return {
            'id': self.id,
            'oid': self.oid,
            'name': self.name,
            'description': self.description,
            'hosts': self.host_ids(),
            'networks': self.network_ids(),
        }

    def __repr__(self):
        return f'<Zone {self.name}>'
