from sqlalchemy.orm import validates

from vpe.db import db
from vpe.exceptions import ValidationError


class VMType(db.Model):
    __tablename__ = 'vm_types'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(256), unique=True, nullable=False)
    cpu = db.Column(db.Integer, nullable=False)
    memory = db.Column(db.Integer, nullable=False)  # MB
    description = db.Column(db.Text, nullable=False, default='')
    weight = db.Column(db.Integer, nullable=False, default=1)

    @validates('cpu', 'memory', 'weight')
    def validate_positive_int(self, key, value):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value)
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"{key.upper()} must be a positive integer: {value}", "INVALID_VM_TYPE")
        return value

    @validates('description')
    def validate_description(self, key, value):
        return value or ''

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'cpu': self.cpu,
            'memory': self.memory,
            'weight': self.weight,
            'description': self.description,
        }

    def __repr__(self):
        return f'<VMType {self.name}>'
