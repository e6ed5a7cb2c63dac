import itertools

import pytest

from vpe.app import create_app
from vpe.db import db
from vpe.db.models import Lease, User, VirtualNetwork, VMType, Zone
from vpe.db.store import ResourceStore
from vpe.middleware.auth import AuthContext
from vpe.services.one_client import AUTH_METHOD, OneClient, user_from_session

NOT_ADMIN_MESSAGE = '[UserPoolInfo] User [5] not authorized to perform INFO on USER Pool'
AUTH_FAILED_MESSAGE = "[UserPoolInfo] User couldn't be authenticated, aborting call."


class FakeOneClient(OneClient):
    """
    Orchestrator stand-in that records calls and answers from a script.

    Unscripted `*.allocate` calls return fresh ids, other unscripted
    calls succeed with an empty payload.
    """

    def __init__(self):
        super().__init__('http://orchestrator.test/RPC2')
        self.calls = []
        self.responses = {}
        self.auth = {}
        self._ids = itertools.count(100)

    def script(self, method, *results):
        """Queue results (tuples or callables taking the call args) for `method`."""
        self.responses.setdefault(method, []).extend(results)

    def always(self, method, result):
        self.responses[method] = result

    def set_auth(self, user_name, status):
        self.auth[user_name] = {
            'admin': (True, '<USER_POOL/>'),
            'user': (False, NOT_ADMIN_MESSAGE),
            'fail': (False, AUTH_FAILED_MESSAGE),
        }[status]

    def calls_to(self, method):
        return [args for m, session, args in self.calls if m == method]

    def methods(self):
        return [m for m, session, args in self.calls if m != AUTH_METHOD]

    def call_nolog(self, method, session, *args):
        if method == AUTH_METHOD:
            return self.auth.get(user_from_session(session), (True, '<USER_POOL/>'))

        self.calls.append((method, session, args))
        scripted = self.responses.get(method)
        if isinstance(scripted, list) and scripted:
            result = scripted.pop(0)
        elif scripted is not None and not isinstance(scripted, list):
            result = scripted
        elif method.endswith('.allocate'):
            result = (True, next(self._ids))
        else:
            result = (True, '')
        return result(*args) if callable(result) else result


@pytest.fixture
def one():
    return FakeOneClient()


@pytest.fixture
def app(tmp_path, one):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'vpe.sqlite'}",
        'VAR_PATH': str(tmp_path / 'var'),
        'SHARE_PATH': str(tmp_path / 'share'),
        'TRANSFER_STORAGE_PATH': str(tmp_path / 'var' / 'transfer'),
        'TRANSFER_CHUNK_SIZE': 4,
        'ONE_LOCATION': None,
        'USER_LIMIT': 1,
        'START_SWEEPER': False,
        'REDIS_URL': None,
    }, one_client=one)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def registry(app):
    return app.extensions['vpe']


@pytest.fixture
def admin(app, one):
    one.set_auth('admin', 'admin')
    return ResourceStore.save(User(oid=0, name='admin', enabled=True))


@pytest.fixture
def alice(app, one):
    one.set_auth('alice', 'user')
    return ResourceStore.save(User(oid=5, name='alice', enabled=True))


def make_ctx(user, is_admin=False):
    return AuthContext(session=f"{user.name}:secret", user=user, is_admin=is_admin)


@pytest.fixture
def admin_ctx(admin):
    return make_ctx(admin, is_admin=True)


@pytest.fixture
def alice_ctx(alice):
    return make_ctx(alice)


class Seeder:
    """Creates local records directly, without orchestrator calls."""

    def zone(self, name='zone-a', oid=10):
        return ResourceStore.save(Zone(oid=oid, name=name, description=''))

    def vnet(self, zone, name='net', oid=20, leases=(('vm01.example.org', '10.0.0.11'),)):
        vnet = ResourceStore.save(VirtualNetwork(
            oid=oid, name=name, zone_name=zone.name, unique_name=f"{zone.name}::{name}",
            address='10.0.0.0', netmask='255.255.255.0', gateway='10.0.0.1',
            dns=['10.0.0.2'], ntp=['10.0.0.3']))
        for lease_name, address in leases:
            ResourceStore.save(Lease(name=lease_name, address=address, vnet_id=vnet.id))
        zone.add_network(vnet.id)
        ResourceStore.save(zone)
        return vnet

    def vm_type(self, name='small', cpu=1, memory=512, weight=1):
        return ResourceStore.save(VMType(name=name, cpu=cpu, memory=memory, weight=weight))

    def grant(self, user, zone, limit=1):
        user.modify_zone(zone.id, True, limit)
        return ResourceStore.save(user)


@pytest.fixture
def seed(app):
    return Seeder()


def image_xml(image_id=7, name='centos', persistent=0, state=1, bus='virtio', dev_prefix='vd',
              nic_model='virtio'):
    template = ''
    if bus is not None:
        template += f'<BUS>{bus}</BUS>'
    if dev_prefix is not None:
        template += f'<DEV_PREFIX>{dev_prefix}</DEV_PREFIX>'
    if nic_model is not None:
        template += f'<NIC_MODEL>{nic_model}</NIC_MODEL>'
    return (f'<IMAGE><ID>{image_id}</ID><NAME>{name}</NAME><STATE>{state}</STATE>'
            f'<PERSISTENT>{persistent}</PERSISTENT><TEMPLATE>{template}</TEMPLATE></IMAGE>')


def vm_xml(oid=100, state=3, save_as=None):
    save = f'<SAVE_AS>{save_as}</SAVE_AS>' if save_as else ''
    return (f'<VM><ID>{oid}</ID><STATE>{state}</STATE><LCM_STATE>3</LCM_STATE><TEMPLATE>'
            f'<DISK><DISK_ID>0</DISK_ID><BUS>virtio</BUS><TARGET>vda</TARGET>{save}</DISK>'
            f'<NIC><MODEL>virtio</MODEL></NIC></TEMPLATE></VM>')


def cluster_xml(name='zone-a', oid=10):
    return f'<CLUSTER><ID>{oid}</ID><NAME>{name}</NAME></CLUSTER>'


def host_xml(oid, name):
    return f'<HOST><ID>{oid}</ID><NAME>{name}</NAME></HOST>'


@pytest.fixture
def xml():
    """Builders for orchestrator info documents."""
    class Builders:
        image = staticmethod(image_xml)
        vm = staticmethod(vm_xml)
        cluster = staticmethod(cluster_xml)
        host = staticmethod(host_xml)
    return Builders
