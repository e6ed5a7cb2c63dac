from datetime import datetime, timezone
from enum import Enum

from sqlalchemy.orm import validates

from vpe.db import db
from vpe.exceptions import ValidationError


class TransferType(Enum):
    PUT = "put"
    GET = "get"


class Transfer(db.Model):
    __tablename__ = 'transfers'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), unique=True, nullable=False)  # session token
    type = db.Column(db.String(8), nullable=False)
    path = db.Column(db.Text, nullable=False)
    size = db.Column(db.Integer, nullable=False)
    date = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    done = db.Column(db.Boolean, nullable=False, default=False)

    @validates('type')
    def validate_type(self, key, value):
        if value not in (t.value for t in TransferType):
            raise ValidationError(f"Unknown transfer type: {value}", "INVALID_TRANSFER_TYPE")
        return value

    @validates('size')
    def validate_size(self, key, value):
        try:
            value = int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Transfer size must be an integer: {value}", "INVALID_SIZE") from e
        if value < 0:
            raise ValidationError(f"Transfer size must not be negative: {value}", "INVALID_SIZE")
        return value

    @property
    def is_put(self) -> bool:
        return self.type == TransferType.PUT.value

    def created_at(self) -> datetime:
        # sqlite drops tzinfo
        if self.date.tzinfo is None:
            return self.date.replace(tzinfo=timezone.utc)
        return self.date

    def to_dict(self):
        return {
            'name': self.name,
            'type': self.type,
            'size': self.size,
            'date': self.created_at().isoformat(),
            'done': self.done,
        }

    def __repr__(self):
        return f'<Transfer {self.name} {self.type}>'
