import os

import pytest
import yaml

from conftest import make_ctx
from vpe.db.models import Lease, User, VirtualMachine, VMType
from vpe.db.store import ResourceStore
from vpe.exceptions import (
    AuthorizationError,
    ConflictError,
    ConsistencyError,
    ExternalCallError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from vpe.services.lease_service import LeaseAllocator
from vpe.services.vm_service import ImageInfo, Placement, parse_network_request, render_vm_definition

LEASES = (
    ('vm01.example.org', '10.0.0.11'),
    ('vm02.example.org', '10.0.0.12'),
    ('vm03.example.org', '10.0.0.13'),
)


@pytest.fixture
def vms(registry):
    return registry.vms


@pytest.fixture
def zone(seed, one, xml):
    zone = seed.zone()
    seed.vnet(zone, leases=LEASES)
    seed.vm_type()
    one.always('one.image.info', (True, xml.image()))
    one.always('one.cluster.info', (True, xml.cluster()))
    return zone


@pytest.fixture
def granted(zone, seed, alice):
    return seed.grant(alice, zone, limit=2)


def lease(name):
    return ResourceStore.get(Lease, name, by='name')


def test_parse_network_request():
    assert parse_network_request('net#vm01.example.org;backend') == [('net', 'vm01.example.org'),
                                                                      ('backend', None)]
    assert parse_network_request(['net']) == [('net', None)]
    with pytest.raises(ValidationError):
        parse_network_request(' ; ')


def test_render_vm_definition(seed):
    zone = seed.zone()
    vnet = seed.vnet(zone)
    vm_type = seed.vm_type(cpu=2, memory=1024)
    image = ImageInfo(id=7, name='centos', bus='virtio', dev_prefix='vd', nic_model='e1000', persistent='0')
    text = render_vm_definition(vm_type, image, [Placement(vnet=vnet, lease=lease('vm01.example.org'))],
                                'zone-a', ['/share/init.rb', '/var/vm01/root.pub'], created_at=1700000000)

    assert 'NAME   = "vm01.example.org"' in text
    assert 'SIZE   = 1536,' in text
    assert 'IP         = "10.0.0.11",' in text
    assert 'MODEL      = "e1000"' in text
    assert 'NAMESERVERS    = "10.0.0.2",' in text
    assert 'FILES          = "/share/init.rb /var/vm01/root.pub",' in text
    assert 'CREATE_DATE    = "1700000000"' in text
    assert 'REQUIREMENTS = "CLUSTER = \\"zone-a\\" & FREECPU > 200 & FREEMEMORY > 1024"' in text


def test_allocate_requires_zone_permission(vms, zone, alice_ctx, one):
    """Zone permission is checked before anything reaches the orchestrator"""
    with pytest.raises(AuthorizationError) as e:
        vms.allocate(alice_ctx, 'small', 7, 'ssh-rsa AAAA', 'zone-a', 'net')
    assert e.value.message == "User[alice] don't have permission to use Zone[zone-a]"
    assert one.methods() == []


def test_allocate(vms, granted, alice_ctx, one, app):
    """Test a successful VM allocation end to end"""
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'ssh-rsa AAAA', 'zone-a', 'net')

    vm = ResourceStore.get(VirtualMachine, vm_id)
    assert (vm.oid, vm.name, vm.user_id) == (100, 'vm01.example.org', alice_ctx.user.id)
    assert vm.lease_ids() == [lease('vm01.example.org').id]
    assert lease('vm01.example.org').used == 1
    assert yaml.safe_load(vm.info)['USER']['NAME'] == 'alice'

    vm_dir = os.path.join(app.config['VAR_PATH'], 'vm01.example.org')
    with open(os.path.join(vm_dir, 'root.pub')) as f:
        assert f.read() == 'ssh-rsa AAAA\n'
    assert os.path.exists(os.path.join(vm_dir, str(vm_id)))

    definition = one.calls_to('one.vm.allocate')[0][0]
    assert 'IMAGE_ID = 7,' in definition
    assert 'CLUSTER = \\"zone-a\\"' in definition
    assert one.calls_to('one.cluster.info') == [(10,)]


def test_allocate_takes_the_requested_lease(vms, granted, alice, alice_ctx):
    requested = lease('vm02.example.org')
    with pytest.raises(AuthorizationError, match="don't have a permission to use Lease"):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net#vm02.example.org')

    LeaseAllocator.assign(requested.id, alice.id)
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net#vm02.example.org')
    assert ResourceStore.get(VirtualMachine, vm_id).lease_id == requested.id


def test_allocate_resolves_image_names(vms, granted, alice_ctx, one, xml):
    one.always('one.imagepool.info',
               (True, '<IMAGE_POOL><IMAGE><ID>7</ID><NAME>centos</NAME></IMAGE></IMAGE_POOL>'))
    vms.allocate(alice_ctx, 'small', 'centos', 'key', 'zone-a', 'net')
    assert one.calls_to('one.image.info') == [(7,)]
    one.always('one.vm.info', (True, xml.vm(100)))

    with pytest.raises(NotFoundError, match=r'Image\[debian\]'):
        vms.allocate(alice_ctx, 'small', 'debian', 'key', 'zone-a', 'net')


def test_allocate_needs_image_attributes(vms, granted, alice_ctx, one, xml):
    one.always('one.image.info', (True, xml.image(nic_model=None)))
    with pytest.raises(ValidationError, match='NIC_MODEL attribute is not set'):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    assert 'one.vm.allocate' not in one.methods()


def test_allocate_rejects_busy_persistent_image(vms, granted, alice_ctx, one, xml):
    one.always('one.image.info', (True, xml.image(persistent=1, state=2)))
    with pytest.raises(ConflictError, match="persistent image can't be used"):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')


def test_quota_counts_type_weights_of_unfinished_vms(vms, zone, seed, alice, alice_ctx, one, xml):
    """Test quota accounting by VM type weight"""
    seed.grant(alice, zone, limit=2)
    seed.vm_type(name='large', weight=2)
    running = lease('vm03.example.org')
    ResourceStore.save(VirtualMachine(oid=50, name=running.name, user_id=alice.id, zone_id=zone.id,
                                      lease_id=running.id, type_id=ResourceStore.get(VMType, 'small', by='name').id,
                                      image_id=7))
    one.always('one.vm.info', (True, xml.vm(50, state=3)))

    with pytest.raises(QuotaExceededError) as e:
        vms.allocate(alice_ctx, 'large', 7, 'key', 'zone-a', 'net')
    assert e.value.message == "User[alice] can't run any more VMs in Zone[zone-a] as quota reached."

    vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')

    # finished VMs do not count
    one.always('one.vm.info', (True, xml.vm(50, state=6)))
    vms.allocate(alice_ctx, 'large', 7, 'key', 'zone-a', 'net')


def test_no_free_lease(vms, granted, alice_ctx, admin):
    for name, _ in LEASES:
        LeaseAllocator.assign(lease(name).id, admin.id)
    with pytest.raises(NotFoundError, match='No available virtual host lease'):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')


def test_failure_while_marking_leases_undoes_everything(vms, granted, alice_ctx, one, app, monkeypatch):
    """Test compensation when a lease can't be marked used"""
    set_used = LeaseAllocator.set_used
    marked = []

    def flaky(leases, used):
        if used and marked:
            raise ConsistencyError("Failed to save Lease[vm02.example.org].")
        if used:
            marked.extend(leases)
        set_used(leases, used)

    monkeypatch.setattr(LeaseAllocator, 'set_used', staticmethod(flaky))

    with pytest.raises(ConsistencyError):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net;net')

    assert one.calls_to('one.vm.action') == [('finalize', 100)]
    assert ResourceStore.all(VirtualMachine) == []
    assert [l.used for l in ResourceStore.all(Lease)] == [0, 0, 0]
    assert not os.path.exists(os.path.join(app.config['VAR_PATH'], 'vm01.example.org'))


def test_failed_vm_allocate_removes_the_directory(vms, granted, alice_ctx, one, app):
    one.script('one.vm.allocate', (False, '[VirtualMachineAllocate] no space'))
    with pytest.raises(ExternalCallError):
        vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    assert not os.path.exists(os.path.join(app.config['VAR_PATH'], 'vm01.example.org'))
    assert lease('vm01.example.org').used == 0


def test_shutdown_releases_leases(vms, granted, alice_ctx, admin_ctx, one, app):
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')

    assert vms.action(alice_ctx, vm_id, 'shutdown') == vm_id
    assert one.calls_to('one.vm.action') == [('shutdown', 100)]
    assert lease('vm01.example.org').used == 0
    assert not os.path.exists(os.path.join(app.config['VAR_PATH'], 'vm01.example.org'))


def test_release_happens_once(vms, granted, alice_ctx, one, app, xml):
    """A finished VM never frees the lease or directory of the VM that took them over"""
    one.always('one.vm.info', lambda oid: (True, xml.vm(oid, state=6 if oid == 100 else 3)))
    first = vms.allocate(alice_ctx, 'small', 7, 'key-a', 'zone-a', 'net')
    vms.action(alice_ctx, first, 'shutdown')

    second = vms.allocate(alice_ctx, 'small', 7, 'key-b', 'zone-a', 'net')
    assert ResourceStore.get(VirtualMachine, second).lease_id == lease('vm01.example.org').id

    vms.action(alice_ctx, first, 'finalize')
    assert lease('vm01.example.org').used == 1
    vm_dir = os.path.join(app.config['VAR_PATH'], 'vm01.example.org')
    with open(os.path.join(vm_dir, 'root.pub')) as f:
        assert f.read() == 'key-b\n'
    assert ResourceStore.get(VirtualMachine, first).released

    third = vms.allocate(alice_ctx, 'small', 7, 'key-c', 'zone-a', 'net')
    assert ResourceStore.get(VirtualMachine, third).lease_id == lease('vm02.example.org').id


def test_other_users_vms_are_off_limits(vms, granted, alice_ctx):
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    stranger = make_ctx(ResourceStore.save(User(oid=9, name='mallory', enabled=True)))

    with pytest.raises(AuthorizationError):
        vms.action(stranger, vm_id, 'stop')
    with pytest.raises(AuthorizationError):
        vms.info(stranger, vm_id)


def test_pool_hides_finished_vms(vms, granted, alice_ctx, one, xml):
    vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    one.always('one.vm.info', (True, xml.vm(100, state=6)))

    assert vms.pool(alice_ctx, -1) == []
    history = vms.pool(alice_ctx, -1, history=True)
    assert [(vm['name'], vm['state']) for vm in history] == [('vm01.example.org', 6)]
    with pytest.raises(AuthorizationError):
        vms.pool(alice_ctx, -2)


def test_mark_save(vms, granted, alice_ctx, one, xml):
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    one.always('one.imagepool.info', (True, '<IMAGE_POOL><IMAGE><ID>7</ID><NAME>centos</NAME></IMAGE></IMAGE_POOL>'))
    one.always('one.vm.info', (True, xml.vm(100)))

    with pytest.raises(ConflictError, match='already exists'):
        vms.mark_save(alice_ctx, vm_id, 'centos')

    image_id = vms.mark_save(alice_ctx, vm_id, 'centos-web', 'web server')
    template = one.calls_to('one.image.allocate')[0][0]
    assert 'NAME        = "centos-web"' in template
    assert 'DEV_PREFIX  = "vd"' in template
    assert one.calls_to('one.vm.savedisk') == [(100, 0, image_id)]


def test_mark_save_removes_image_when_savedisk_fails(vms, granted, alice_ctx, one, xml):
    """The new image is deleted when the disk can't be saved"""
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    one.always('one.imagepool.info', (True, '<IMAGE_POOL/>'))
    one.always('one.vm.info', (True, xml.vm(100)))
    one.script('one.vm.savedisk', (False, '[SaveDisk] VM is not running'))

    with pytest.raises(ExternalCallError):
        vms.mark_save(alice_ctx, vm_id, 'centos-web')
    image_id = one.calls_to('one.image.delete')[0][0]
    assert image_id == 101


def test_mark_save_only_once(vms, granted, alice_ctx, one, xml):
    vm_id = vms.allocate(alice_ctx, 'small', 7, 'key', 'zone-a', 'net')
    one.always('one.imagepool.info', (True, '<IMAGE_POOL/>'))
    one.always('one.vm.info', (True, xml.vm(100, save_as='centos-old')))

    with pytest.raises(ConflictError, match=r'Image\[centos-old\]'):
        vms.mark_save(alice_ctx, vm_id, 'centos-web')
    assert 'one.image.allocate' not in one.methods()
