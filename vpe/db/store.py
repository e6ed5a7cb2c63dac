"""Typed CRUD helpers over the SQLAlchemy session.

Every write commits immediately. On failure the session is rolled back and
the error is re-raised as a ServiceException so callers (and sagas) never
see raw SQLAlchemy errors.
"""

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from vpe.db import db
from vpe.db.models import VirtualNetwork
from vpe.exceptions import ConflictError, ConsistencyError, NotFoundError


def _name_column(model):
    # networks are looked up by their zone-qualified name
    if model is VirtualNetwork:
        return model.unique_name
    return model.name


class ResourceStore:
    @staticmethod
    def find_by_id(model, id):
        try:
            id = int(id)
        except (TypeError, ValueError):
            return None
        return db.session.get(model, id)

    @staticmethod
    def find_by_name(model, name):
        return model.query.filter(_name_column(model) == name).order_by(model.id.desc()).first()

    @staticmethod
    def find_by_id_or_name(model, key):
        if isinstance(key, int) or (isinstance(key, str) and key.isdigit()):
            found = ResourceStore.find_by_id(model, key)
            if found is not None:
                return found
        return ResourceStore.find_by_name(model, str(key))

    @staticmethod
    def get(model, key, by='id'):
        """Like the find_* helpers, but a missing record is an error."""
        finder = {
            'id': ResourceStore.find_by_id,
            'name': ResourceStore.find_by_name,
            'id_or_name': ResourceStore.find_by_id_or_name,
        }[by]
        found = finder(model, key)
        if found is None:
            raise NotFoundError(f"{model.__name__}[{key}] is not found.", f"{model.__name__.upper()}_NOT_FOUND")
        return found

    @staticmethod
    def all(model, *criteria):
        return model.query.filter(*criteria).order_by(model.id).all()

    @staticmethod
    def save(*records):
        try:
            for record in records:
                db.session.add(record)
            db.session.commit()
        except IntegrityError as e:
            db.session.rollback()
            raise ConflictError(f"Failed to save {_describe(records)}: already exists.", "DUPLICATE_RECORD") from e
        except SQLAlchemyError as e:
            db.session.rollback()
            raise ConsistencyError(f"Failed to save {_describe(records)}.") from e
        return records[0] if len(records) == 1 else records

    @staticmethod
    def delete(*records):
        try:
            for record in records:
                db.session.delete(record)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise ConsistencyError(f"Failed to delete {_describe(records)}.") from e

    @staticmethod
    def rollback():
        db.session.rollback()


def _describe(records):
    return ', '.join(f"{type(r).__name__}[{getattr(r, 'name', None) or getattr(r, 'id', '')}]" for r in records)
