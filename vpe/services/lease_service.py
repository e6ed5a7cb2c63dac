from sqlalchemy import and_, or_

from vpe.db.models import Lease, User, UNASSIGNED
from vpe.db.store import ResourceStore
from vpe.exceptions import ConflictError, NotFoundError, ValidationError
from vpe.services.saga import ErrorAccumulator


class LeaseAllocator:
    """
    Reservation of IP leases. Assignment (a user holding a lease) is kept
    apart from use (a VM running on the lease).
    """

    @staticmethod
    def find_available(vnet_id: int, user_id: int) -> list[Lease]:
        """
        Unused leases of the network that are free or reserved for the user.
        Ordered by lease id, so callers taking the first one get the oldest.
        """
        return ResourceStore.all(
            Lease,
            Lease.vnet_id == vnet_id,
            Lease.used == 0,
            or_(Lease.assigned_to < 0, Lease.assigned_to == user_id),
        )

    @staticmethod
    def assign(lease_id: int, user_id: int) -> Lease:
        lease = ResourceStore.get(Lease, lease_id)
        if lease.is_assigned and lease.assigned_to != user_id:
            owner = ResourceStore.find_by_id(User, lease.assigned_to)
            owner_name = owner.name if owner else lease.assigned_to
            raise ConflictError(f"Lease[{lease.name}] is already assigned to User[{owner_name}].",
                                "LEASE_ALREADY_ASSIGNED")
        lease.assigned_to = user_id
        return ResourceStore.save(lease)

    @staticmethod
    def release(lease_id: int) -> Lease:
        lease = ResourceStore.get(Lease, lease_id)
        if not lease.is_assigned:
            raise ValidationError(f"Lease[{lease.name}] has not been assigned to any user.",
                                  "LEASE_NOT_ASSIGNED")
        lease.assigned_to = UNASSIGNED
        return ResourceStore.save(lease)

    @staticmethod
    def set_used(leases, used: bool):
        for lease in leases:
            lease.used = 1 if used else 0
            ResourceStore.save(lease)

    @staticmethod
    def release_all(user: User):
        """Release every lease reserved for `user`, trying all of them."""
        errors = ErrorAccumulator()
        for lease in ResourceStore.all(Lease, Lease.assigned_to == user.id):
            with errors.attempt():
                LeaseAllocator.release(lease.id)
        errors.raise_if_any()


class LeaseService:
    @staticmethod
    def pool(ctx, flag: int) -> list[dict]:
        """
        flag < -1: every lease (admin only)
        flag == -1: leases reserved for the caller plus free unused ones
        flag >= 0: leases reserved for that user (admin unless it is the caller)
        """
        if flag < -1 or (flag >= 0 and flag != ctx.user.id):
            ctx.require_admin()

        if flag == -1:
            criteria = [or_(Lease.assigned_to == ctx.user.id,
                            and_(Lease.assigned_to == UNASSIGNED, Lease.used == 0))]
        elif flag >= 0:
            criteria = [Lease.assigned_to == flag]
        else:
            criteria = []
        return [lease.to_dict() for lease in ResourceStore.all(Lease, *criteria)]

    @staticmethod
    def ask_id(name: str) -> int:
        return ResourceStore.get(Lease, name, by='name').id

    @staticmethod
    def info(ctx, lease_id) -> dict:
        lease = ResourceStore.get(Lease, lease_id)
        ctx.require_owner_or_admin(lease.assigned_to, "You don't have permission to query info. of the lease.")
        return lease.to_dict()

    @staticmethod
    def assign(lease_id, user_name: str) -> int:
        user = ResourceStore.find_by_name(User, user_name)
        if user is None:
            raise NotFoundError(f"User[{user_name}] does not exist.", "USER_NOT_FOUND")
        return LeaseAllocator.assign(lease_id, user.id).id

    @staticmethod
    def release(lease_id) -> int:
        return LeaseAllocator.release(lease_id).id
