import pytest

from vpe.db.models import Lease, User
from vpe.db.store import ResourceStore
from vpe.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from vpe.services.lease_service import LeaseAllocator, LeaseService

LEASES = (
    ('vm01.example.org', '10.0.0.11'),
    ('vm02.example.org', '10.0.0.12'),
    ('vm03.example.org', '10.0.0.13'),
)


@pytest.fixture
def vnet(seed):
    return seed.vnet(seed.zone(), leases=LEASES)


def lease(name):
    return ResourceStore.get(Lease, name, by='name')


def test_find_available_in_id_order(vnet, alice, admin):
    """Free and self-reserved leases are offered oldest first"""
    LeaseAllocator.assign(lease('vm02.example.org').id, admin.id)
    LeaseAllocator.set_used([lease('vm03.example.org')], True)

    names = [l.name for l in LeaseAllocator.find_available(vnet.id, alice.id)]
    assert names == ['vm01.example.org']

    names = [l.name for l in LeaseAllocator.find_available(vnet.id, admin.id)]
    assert names == ['vm01.example.org', 'vm02.example.org']


def test_assign_conflicts_with_other_owner(vnet, alice, admin):
    """A lease held by one user can't be assigned to another"""
    target = lease('vm01.example.org')
    LeaseAllocator.assign(target.id, alice.id)
    # assigning again to the same user is fine
    assert LeaseAllocator.assign(target.id, alice.id).assigned_to == alice.id

    with pytest.raises(ConflictError, match=r'already assigned to User\[alice\]'):
        LeaseAllocator.assign(target.id, admin.id)


def test_release(vnet, alice):
    target = lease('vm01.example.org')
    with pytest.raises(ValidationError, match='has not been assigned'):
        LeaseAllocator.release(target.id)

    LeaseAllocator.assign(target.id, alice.id)
    assert LeaseAllocator.release(target.id).assigned_to == -1


def test_release_all(vnet, alice, admin):
    for name in ('vm01.example.org', 'vm03.example.org'):
        LeaseAllocator.assign(lease(name).id, alice.id)
    LeaseAllocator.assign(lease('vm02.example.org').id, admin.id)

    LeaseAllocator.release_all(alice)

    owners = {l.name: l.assigned_to for l in ResourceStore.all(Lease)}
    assert owners == {'vm01.example.org': -1, 'vm02.example.org': admin.id, 'vm03.example.org': -1}


def test_pool_views(vnet, alice, admin, alice_ctx, admin_ctx):
    """Test lease pool filters and who may use them"""
    LeaseAllocator.assign(lease('vm01.example.org').id, alice.id)
    LeaseAllocator.assign(lease('vm02.example.org').id, admin.id)
    LeaseAllocator.set_used([lease('vm03.example.org')], True)

    assert [l['name'] for l in LeaseService.pool(alice_ctx, -1)] == ['vm01.example.org']
    assert [l['name'] for l in LeaseService.pool(alice_ctx, alice.id)] == ['vm01.example.org']
    assert len(LeaseService.pool(admin_ctx, -2)) == 3
    assert [l['name'] for l in LeaseService.pool(admin_ctx, alice.id)] == ['vm01.example.org']

    with pytest.raises(AuthorizationError):
        LeaseService.pool(alice_ctx, -2)
    with pytest.raises(AuthorizationError):
        LeaseService.pool(alice_ctx, admin.id)


def test_info_is_limited_to_owner(vnet, alice, alice_ctx, admin_ctx):
    mine = lease('vm01.example.org')
    other = lease('vm02.example.org')
    LeaseAllocator.assign(mine.id, alice.id)

    assert LeaseService.info(alice_ctx, mine.id)['address'] == '10.0.0.11'
    assert LeaseService.info(admin_ctx, other.id)['address'] == '10.0.0.12'
    with pytest.raises(AuthorizationError):
        LeaseService.info(alice_ctx, other.id)


def test_assign_by_user_name(vnet, alice):
    target = lease('vm01.example.org')
    assert LeaseService.assign(target.id, 'alice') == target.id
    assert ResourceStore.get(User, 'alice', by='name').id == lease('vm01.example.org').assigned_to

    with pytest.raises(NotFoundError, match=r'User\[bob\] does not exist'):
        LeaseService.assign(target.id, 'bob')


def test_ask_id(vnet):
    assert LeaseService.ask_id('vm02.example.org') == lease('vm02.example.org').id
    with pytest.raises(NotFoundError):
        LeaseService.ask_id('vm99.example.org')
