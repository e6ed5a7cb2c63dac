import xmlrpc.client
from unittest.mock import MagicMock

import pytest

from vpe.exceptions import ExternalCallError, ValidationError
from vpe.services.one_client import AuthResult, OneClient, parse_document, text_at, user_from_session


class _Proxy:
    """Answers every remote method with the same mock."""

    def __init__(self, method):
        self.method = method

    def __getattr__(self, name):
        return self.method


def client_answering(response=None, raises=None):
    """OneClient whose proxy returns `response` or raises `raises`"""
    client = OneClient('http://orchestrator.test/RPC2', timeout=5)
    method = MagicMock(return_value=response, side_effect=raises)
    client._make_proxy = lambda: _Proxy(method)
    return client, method


def test_call_unpacks_success_flag_and_payload():
    client, method = client_answering([True, '<VM/>', 0])
    assert client.call_nolog('one.vm.info', 'alice:pw', 3) == (True, '<VM/>')
    method.assert_called_once_with('alice:pw', 3)


def test_call_reports_failure_message():
    client, _ = client_answering([False, '[VirtualMachineInfo] Error getting VM [3].', 0x400])
    assert client.call_nolog('one.vm.info', 'alice:pw', 3) == (False, '[VirtualMachineInfo] Error getting VM [3].')


def test_transport_errors_become_failures():
    client, _ = client_answering(raises=xmlrpc.client.Fault(1, 'boom'))
    assert client.call_nolog('one.vm.info', 'alice:pw', 3) == (False, 'boom')

    client, _ = client_answering(raises=ConnectionRefusedError('refused'))
    ok, message = client.call_nolog('one.vm.info', 'alice:pw', 3)
    assert not ok
    assert 'Could not reach orchestrator' in message


def test_call_checked_raises_on_failure():
    client, _ = client_answering([False, 'no such VM'])
    with pytest.raises(ExternalCallError, match='no such VM'):
        client.call_checked('one.vm.info', 'alice:pw', 3)


@pytest.mark.parametrize('response, expected', [
    ([True, '<USER_POOL/>'], AuthResult.ADMIN),
    ([False, '[UserPoolInfo] User [5] not authorized to perform INFO on USER Pool'], AuthResult.NOT_ADMIN),
    ([False, "[UserPoolInfo] User couldn't be authenticated, aborting call."], AuthResult.FAILED),
])
def test_authenticate_classifies_sessions(response, expected):
    client, _ = client_answering(response)
    status, message = client.authenticate('alice:pw')
    assert status == expected
    assert 'alice' in message


def test_user_from_session():
    assert user_from_session('alice:secret:with:colons') == 'alice'
    assert user_from_session('') == ''


def test_text_at():
    doc = parse_document('<?xml version="1.0" encoding="UTF-8"?><IMAGE><NAME> centos </NAME>'
                         '<TEMPLATE><BUS>virtio</BUS></TEMPLATE></IMAGE>')
    assert text_at(doc, '/IMAGE/NAME') == 'centos'
    assert text_at(doc, '/IMAGE/TEMPLATE/BUS') == 'virtio'
    assert text_at(doc, '/IMAGE/TEMPLATE/NIC_MODEL', default='') == ''
    with pytest.raises(ValidationError, match='NIC_MODEL is missing'):
        text_at(doc, '/IMAGE/TEMPLATE/NIC_MODEL', required='NIC_MODEL is missing')


def test_parse_document_rejects_garbage():
    with pytest.raises(ExternalCallError):
        parse_document('not xml')
