import pytest

from vpe.db.models import Lease, User, VirtualMachine
from vpe.db.store import ResourceStore
from vpe.exceptions import AuthorizationError, ConflictError, ExternalCallError, ValidationError
from vpe.services.lease_service import LeaseAllocator


@pytest.fixture
def users(registry):
    return registry.users


def test_allocate(users, admin_ctx, one):
    user_id = users.allocate(admin_ctx, 'bob', 'secret')
    bob = ResourceStore.get(User, user_id)
    assert (bob.name, bob.oid, bob.enabled) == ('bob', 100, True)
    assert one.calls_to('one.user.allocate') == [('bob', 'secret')]

    with pytest.raises(ConflictError):
        users.allocate(admin_ctx, 'bob', 'secret')


def test_allocate_removes_external_user_when_the_record_fails(users, admin_ctx, one, monkeypatch):
    def refuse(*records):
        raise ConflictError("Failed to save User[bob]: already exists.")

    monkeypatch.setattr(ResourceStore, 'save', staticmethod(refuse))
    with pytest.raises(ConflictError):
        users.allocate(admin_ctx, 'bob', 'secret')
    assert one.methods() == ['one.user.allocate', 'one.user.delete']
    assert one.calls_to('one.user.delete') == [(100,)]


def test_info_is_owner_or_admin(users, alice, admin, alice_ctx, admin_ctx):
    assert users.info(alice_ctx, alice.id)['name'] == 'alice'
    assert users.info(admin_ctx, alice.id)['name'] == 'alice'
    with pytest.raises(AuthorizationError):
        users.info(alice_ctx, admin.id)


def test_delete_refuses_users_with_running_vms(users, alice, admin_ctx, seed, one, xml):
    """Users with unfinished VMs can't be deleted"""
    zone = seed.zone()
    seed.vnet(zone)
    lease = ResourceStore.all(Lease)[0]
    ResourceStore.save(VirtualMachine(oid=100, name=lease.name, user_id=alice.id, zone_id=zone.id,
                                      lease_id=lease.id, type_id=seed.vm_type().id, image_id=7))
    one.always('one.vm.info', (True, xml.vm(100, state=3)))

    with pytest.raises(AuthorizationError, match='incomplete VMs'):
        users.delete(admin_ctx, alice.id)
    assert 'one.user.delete' not in one.methods()


def test_delete_refuses_users_with_images(users, alice, admin_ctx, one):
    one.always('one.imagepool.info', (True, '<IMAGE_POOL><IMAGE><ID>7</ID></IMAGE></IMAGE_POOL>'))
    with pytest.raises(AuthorizationError, match='OS Images'):
        users.delete(admin_ctx, alice.id)


def test_delete_releases_leases(users, alice, admin_ctx, seed, one):
    seed.vnet(seed.zone())
    lease = ResourceStore.all(Lease)[0]
    LeaseAllocator.assign(lease.id, alice.id)
    one.always('one.imagepool.info', (True, '<IMAGE_POOL/>'))

    assert users.delete(admin_ctx, alice.id) == alice.id
    assert one.calls_to('one.user.delete') == [(5,)]
    assert ResourceStore.find_by_name(User, 'alice') is None
    assert ResourceStore.find_by_id(Lease, lease.id).assigned_to == -1


def test_delete_removes_local_record_even_if_external_delete_fails(users, alice, admin_ctx, one):
    """Test best-effort user deletion"""
    one.always('one.imagepool.info', (True, '<IMAGE_POOL/>'))
    one.script('one.user.delete', (False, '[UserDelete] Error deleting user'))

    with pytest.raises(Exception, match='Error deleting user'):
        users.delete(admin_ctx, alice.id)
    assert ResourceStore.find_by_name(User, 'alice') is None


def test_disable_releases_leases(users, alice, seed):
    seed.vnet(seed.zone())
    lease = ResourceStore.all(Lease)[0]
    LeaseAllocator.assign(lease.id, alice.id)

    users.enable(alice.id, False)
    assert not ResourceStore.get(User, alice.id).enabled
    assert ResourceStore.find_by_id(Lease, lease.id).assigned_to == -1


def test_passwd_failure_is_reported(users, alice, admin_ctx, one):
    one.script('one.user.passwd', (False, 'wrong password format'))
    with pytest.raises(ExternalCallError, match='wrong password format'):
        users.passwd(admin_ctx, alice.id, 'x')
    assert one.calls_to('one.user.passwd') == [(5, 'x')]


@pytest.mark.parametrize('limit, expected', [(3, 3), ('4', 4), (-1, 1), ('-1', 1)])
def test_enable_zone_limits(users, alice, seed, limit, expected):
    zone = seed.zone()
    assert users.enable_zone(alice.id, True, zone.id, limit) == expected
    assert ResourceStore.get(User, alice.id).limit_for(zone.id) == expected


def test_enable_zone_revoke_and_bad_limit(users, alice, seed):
    zone = seed.zone()
    users.enable_zone(alice.id, True, zone.id, 2)
    assert users.enable_zone(alice.id, False, zone.id, 0) == ''
    assert not ResourceStore.get(User, alice.id).has_zone(zone.id)

    with pytest.raises(ValidationError, match="Can't specify 'two'"):
        users.enable_zone(alice.id, True, zone.id, 'two')
