import base64
import contextvars

import aiohttp
import pytest

from kmirror._cogs.clients import auth
from kmirror._cogs.clients.auth import APIContext, authenticated, decode_to_pem
from kmirror._cogs.structs.credentials import ConnectionInfo, LoginError

PEM = '-----BEGIN CERTIFICATE-----\nxyz\n-----END CERTIFICATE-----\n'


@pytest.mark.parametrize('data', [
    PEM,
    PEM.encode('ascii'),
    base64.b64encode(PEM.encode('ascii')),
    base64.b64encode(PEM.encode('ascii')).decode('ascii'),
], ids=['str', 'bytes', 'b64-bytes', 'b64-str'])
def test_pem_decoding(data):
    assert decode_to_pem(data) == PEM


@pytest.mark.parametrize('kwargs, expected', [
    (dict(token='tkn'), 'Bearer tkn'),
    (dict(scheme='Digest', token='tkn'), 'Digest tkn'),
    (dict(scheme='Custom'), 'Custom'),
], ids=['token', 'scheme-token', 'scheme-only'])
async def test_authorization_headers(kwargs, expected):
    async with APIContext(ConnectionInfo(server='https://fake-host', **kwargs)) as context:
        assert context.session.headers['Authorization'] == expected
        assert context.session.headers['User-Agent'].startswith('kmirror/')


async def test_basic_auth():
    info = ConnectionInfo(server='https://fake-host', username='uname', password='passw')
    async with APIContext(info) as context:
        assert 'Authorization' not in context.session.headers
        assert context.session.auth == aiohttp.BasicAuth('uname', 'passw')


async def test_context_fields():
    info = ConnectionInfo(server='https://fake-host', default_namespace='ns')
    async with APIContext(info) as context:
        assert context.server == 'https://fake-host'
        assert context.default_namespace == 'ns'
    assert context.session.closed


async def test_authenticated_routines_get_the_current_context(fake_context):

    @authenticated
    async def fn(*, context=None):
        return context

    assert await fn() is fake_context


async def test_authenticated_routines_prefer_explicit_contexts(fake_context):

    @authenticated
    async def fn(*, context=None):
        return context

    other = object()
    assert await fn(context=other) is other


async def test_authenticated_routines_fail_without_login(mocker):
    mocker.patch.object(auth, 'context_var', contextvars.ContextVar('context_var'))

    @authenticated
    async def fn(*, context=None):
        return context

    with pytest.raises(LoginError, match=r"login first"):
        await fn()
