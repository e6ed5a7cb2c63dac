#!/usr/bin/env python3
"""
Register an orchestrator account as a local user.

Needed once to bootstrap the administrator: every operation, including
users/allocate, requires the caller to be known locally.
"""
import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from vpe.app import create_app
from vpe.db.models import User
from vpe.db.store import ResourceStore
from vpe.exceptions import ServiceException
from vpe.utils.observability import configure_logging

LOGGER = structlog.get_logger("vpe.scripts.register_user")


def register_user(name: str, oid: int) -> User:
    """
    Create the local record of an existing orchestrator user.
    """
    if ResourceStore.find_by_name(User, name) is not None:
        raise ServiceException(f"User[{name}] already exists.", "USER_EXISTS")
    user = ResourceStore.save(User(oid=oid, name=name, enabled=True))
    LOGGER.info("user registered", name=user.name, id=user.id, oid=user.oid)
    return user


def main():
    if len(sys.argv) != 3:
        print("Usage: python register_user.py <user_name> <orchestrator_user_id>")
        sys.exit(1)

    name = sys.argv[1]
    try:
        oid = int(sys.argv[2])
    except ValueError:
        print(f"Error: orchestrator user id must be an integer, not '{sys.argv[2]}'")
        sys.exit(1)

    configure_logging("vpe-register-user", os.getenv('VPE_LOG_LEVEL', 'INFO'))
    app = create_app({'START_SWEEPER': False})
    with app.app_context():
        try:
            user = register_user(name, oid)
        except ServiceException as e:
            print(f"Error: {e}")
            sys.exit(1)

    print(f"User {user.name} registered (ID: {user.id}, orchestrator ID: {user.oid})")


if __name__ == '__main__':
    main()
