import contextvars
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from kmirror._cogs.clients import auth
from kmirror._cogs.configs.configuration import OperatorSettings
from kmirror._cogs.structs.credentials import ConnectionInfo
from kmirror._cogs.structs.references import Resource


@pytest.fixture()
def resource():
    """ The resource used in the tests. Usually mocked, so it does not matter. """
    return Resource('apps', 'v1', 'deployments', kind='Deployment', singular='deployment',
                    namespaced=True, verbs=frozenset({'list', 'watch', 'create', 'update',
                                                      'delete', 'get', 'patch'}))


@pytest.fixture()
def namespace():
    return 'ns'


@pytest.fixture()
def settings():
    settings = OperatorSettings()
    settings.mirroring.source_namespace = 'src'
    settings.mirroring.destination_namespace = 'dst'
    settings.networking.error_backoffs = []
    settings.watching.reconnect_backoff = 0
    settings.process.ultimate_exiting_timeout = None
    return settings


@pytest.fixture()
def make_body():
    """ A factory of realistic source objects, as if stored by the cluster. """
    def make(name='web', namespace='src', rv='1', **extra):
        body = {
            'apiVersion': 'apps/v1',
            'kind': 'Deployment',
            'metadata': {
                'name': name,
                'namespace': namespace,
                'uid': f'uid-{name}',
                'resourceVersion': rv,
                'creationTimestamp': '2020-01-01T00:00:00Z',
                'generation': 1,
                'labels': {'app': name},
            },
            'spec': {'replicas': 2},
        }
        body.update(extra)
        return body
    return make


#
# Mocks for Kubernetes API clients. Reasons:
# 1. We do not test the clients, we test the layers on top of them,
#    so everything low-level should be mocked and assumed to be functional.
# 2. No external calls must be made under any circumstances.
#    The unit-tests must be fully isolated from the environment.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def fake_context(mocker, hostname):
    """
    Provide a freshly created API context for every test.

    The context variable is replaced with one that has the context as a default,
    so that all the tasks and sub-tasks see it, not only the task setting it.
    """
    info = ConnectionInfo(server=f'https://{hostname}')
    context = auth.APIContext(info)
    mocker.patch.object(auth, 'context_var', contextvars.ContextVar('context_var', default=context))
    async with context:
        yield context


# Note: Unused `fake_context` is to ensure that the client wrappers have the session.
@pytest.fixture()
def resp_mocker(fake_context, aresponses):
    """
    A factory of server-side callbacks for `aresponses` with mocking/spying.

    The value of the fixture is a function, which returns a coroutine mock.
    That coroutine mock should be passed to `aresponses.add` as a response
    callback function. When called, it calls the mock defined by the function's
    arguments (specifically, return_value or side_effects).

    The difference from passing the responses directly to `aresponses.add`
    is that it is possible to assert on whether the response was handled
    by that callback at all (i.e. HTTP URL & method matched), especially
    if there are multiple responses registered.
    """
    def resp_maker(*args, **kwargs):
        actual_response = MagicMock(*args, **kwargs)
        async def resp_mock_effect(request):
            nonlocal actual_response

            # The request's content can be read inside of the handler only. We preserve
            # the data into a conventional field, so that they could be asserted later.
            try:
                request.data = await request.json()
            except json.JSONDecodeError:
                request.data = await request.text()

            # Get a response/error as it was intended (via return_value/side_effect).
            response = actual_response()
            return response

        return AsyncMock(side_effect=resp_mock_effect)
    return resp_maker


@pytest.fixture()
def logger():
    """ A logger for the low-level routines, which require it explicitly. """
    return logging.getLogger('kmirror.tests')
