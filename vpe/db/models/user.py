from sqlalchemy.orm import validates

from vpe.db import db
from vpe.exceptions import ValidationError


class UserZone(db.Model):
    """A zone a user may run VMs in, with the VM quota for that zone."""
    __tablename__ = 'user_zones'

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), primary_key=True)
    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), primary_key=True)
    vm_limit = db.Column(db.Integer, nullable=False, default=1)


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    oid = db.Column(db.Integer, unique=True, nullable=False)
    name = db.Column(db.String(256), unique=True, nullable=False)
    enabled = db.Column(db.Boolean, nullable=False, default=True)
    zones = db.relationship('UserZone', cascade='all, delete-orphan', lazy='selectin',
                            order_by='UserZone.zone_id')

    @validates('name')
    def validate_name(self, key, value):
        if not isinstance(value, str) or not value:
            raise ValidationError("User name must be a non-empty string", "INVALID_USER")
        return value

    def zone_ids(self) -> list[int]:
        return [uz.zone_id for uz in self.zones]

    def has_zone(self, zone_id: int) -> bool:
        return any(uz.zone_id == zone_id for uz in self.zones)

    def limit_for(self, zone_id: int):
        for uz in self.zones:
            if uz.zone_id == zone_id:
                return uz.vm_limit
        return None

    def modify_zone(self, zone_id: int, enabled: bool, limit: int):
        """Grant (or update the quota of) a zone, or revoke it."""
        current = next((uz for uz in self.zones if uz.zone_id == zone_id), None)
        if enabled:
            if current is None:
                self.zones.append(UserZone(zone_id=zone_id, vm_limit=limit))
            else:
                current.vm_limit = limit
        elif current is not None:
            self.zones.remove(current)

    def to_dict(self):
        return {
            'id': self.id,
            'oid': self.oid,
            'name': self.name,
            'enabled': self.enabled,
            'zones': [{'id': uz.zone_id, 'limit': uz.vm_limit} for uz in self.zones],
        }

    def __repr__(self):
        return f'<User {self.name}>'
