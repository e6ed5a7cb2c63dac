from vpe.db import db


class VMLease(db.Model):
    """Lease bound to a VM. position 0 is the primary NIC."""
    __tablename__ = 'vm_leases'

    vm_id = db.Column(db.Integer, db.ForeignKey('virtual_machines.id'), primary_key=True)
    lease_id = db.Column(db.Integer, db.ForeignKey('leases.id'), primary_key=True)
    position = db.Column(db.Integer, nullable=False)


class VirtualMachine(db.Model):
    __tablename__ = 'virtual_machines'

    id = db.Column(db.Integer, primary_key=True)
    oid = db.Column(db.Integer, unique=True, nullable=False)
    name = db.Column(db.String(256), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey('zones.id'), nullable=False)
    lease_id = db.Column(db.Integer, db.ForeignKey('leases.id'), nullable=False)
    type_id = db.Column(db.Integer, db.ForeignKey('vm_types.id'), nullable=False)
    image_id = db.Column(db.Integer, nullable=False)
    info = db.Column(db.Text, nullable=False, default='')
    # set once the VM's leases and directory have been given back
    released = db.Column(db.Boolean, nullable=False, default=False)
    bound_leases = db.relationship('VMLease', cascade='all, delete-orphan', lazy='selectin',
                                   order_by='VMLease.position')

    def lease_ids(self) -> list[int]:
        return [vl.lease_id for vl in self.bound_leases]

    def bind_leases(self, lease_ids):
        self.bound_leases = [VMLease(lease_id=lid, position=i) for i, lid in enumerate(lease_ids)]

    def to_dict(self):
        return {
            'id': self.id,
            'oid': self.oid,
            'name': self.name,
            'user_id': self.user_id,
            'zone_id': self.zone_id,
            'lease_id': self.lease_id,
            'type_id': self.type_id,
            'image_id': self.image_id,
            'leases': self.lease_ids(),
            'info': self.info,
            'released': self.released,
        }

    def __repr__(self):
        return f'<VirtualMachine {self.name} oid={self.oid}>'
