import asyncio

import aiohttp
import pytest

from kmirror._cogs.clients.errors import APIForbiddenError
from kmirror._cogs.structs.references import Resource
from kmirror._core.reactor.discovery import DiscoveryError, ResourceName, is_mirrorable, \
                                            parse_resource_name, resolve_resources

LISTWATCH = frozenset({'list', 'watch', 'get', 'create', 'update', 'delete'})

DEPLOYMENTS = Resource('apps', 'v1', 'deployments', kind='Deployment', singular='deployment',
                       shortcuts=frozenset({'deploy'}), namespaced=True, verbs=LISTWATCH)
DEPLOYMENTS_SCALE = Resource('apps', 'v1', 'deployments/scale', kind='Scale',
                             namespaced=True, verbs=frozenset({'get', 'update', 'patch'}))
CONFIGMAPS = Resource('', 'v1', 'configmaps', kind='ConfigMap', singular='configmap',
                      shortcuts=frozenset({'cm'}), namespaced=True, verbs=LISTWATCH)
EVENTS_CORE = Resource('', 'v1', 'events', kind='Event', singular='event',
                       shortcuts=frozenset({'ev'}), namespaced=True, verbs=LISTWATCH)
EVENTS_NEW = Resource('events.k8s.io', 'v1', 'events', kind='Event', singular='event',
                      shortcuts=frozenset({'ev'}), namespaced=True, verbs=LISTWATCH)
NODES = Resource('', 'v1', 'nodes', kind='Node', singular='node',
                 namespaced=False, verbs=LISTWATCH)
BINDINGS = Resource('', 'v1', 'bindings', kind='Binding', singular='binding',
                    namespaced=True, verbs=frozenset({'create'}))
WIDGETS_V1 = Resource('example.com', 'v1', 'widgets', kind='Widget', singular='widget',
                      namespaced=True, preferred=True, verbs=LISTWATCH)
WIDGETS_V1BETA1 = Resource('example.com', 'v1beta1', 'widgets', kind='Widget', singular='widget',
                           namespaced=True, preferred=False, verbs=LISTWATCH)
GADGETS_ONE = Resource('one.example.com', 'v1', 'gadgets', kind='Gadget',
                       namespaced=True, verbs=LISTWATCH)
GADGETS_TWO = Resource('two.example.com', 'v1', 'gadgets', kind='Gadget',
                       namespaced=True, verbs=LISTWATCH)

ALL_RESOURCES = [
    DEPLOYMENTS, DEPLOYMENTS_SCALE, CONFIGMAPS, EVENTS_CORE, EVENTS_NEW,
    NODES, BINDINGS, WIDGETS_V1, WIDGETS_V1BETA1, GADGETS_ONE, GADGETS_TWO,
]


@pytest.fixture()
def scan_mock(mocker):
    return mocker.patch('kmirror._cogs.clients.scanning.scan_resources',
                        return_value=ALL_RESOURCES)


@pytest.mark.parametrize('text, expected', [
    ('deployments.v1.apps', ResourceName('deployments', 'v1', 'apps')),
    ('deployments.apps', ResourceName('deployments', None, 'apps')),
    ('configmaps.v1', ResourceName('configmaps', 'v1', '')),
    ('configmaps', ResourceName('configmaps', None, None)),
    ('ingresses.networking.k8s.io', ResourceName('ingresses', None, 'networking.k8s.io')),
    ('widgets.v1beta1.example.com', ResourceName('widgets', 'v1beta1', 'example.com')),
    ('  cm  ', ResourceName('cm', None, None)),
])
def test_parsing_of_resource_names(text, expected):
    assert parse_resource_name(text) == expected


@pytest.mark.parametrize('text', ['', ' ', '.', 'deployments.', '.apps', 'deployments..apps'])
def test_parsing_of_malformed_names(text):
    with pytest.raises(DiscoveryError, match=r"Malformed resource name"):
        parse_resource_name(text)


@pytest.mark.parametrize('resource, expected', [
    (DEPLOYMENTS, True),
    (CONFIGMAPS, True),
    (WIDGETS_V1BETA1, True),
    (NODES, False),
    (BINDINGS, False),
    (DEPLOYMENTS_SCALE, False),
    (Resource('', 'v1', 'things', namespaced=True, verbs=frozenset({'list'})), False),
    (Resource('', 'v1', 'things', namespaced=None, verbs=LISTWATCH), False),
])
def test_mirrorability(resource, expected):
    assert is_mirrorable(resource) is expected


async def test_discovery_mode_takes_preferred_mirrorable_resources(scan_mock, settings, logger):
    resources = await resolve_resources(settings=settings, logger=logger)
    assert resources == [
        CONFIGMAPS, EVENTS_CORE,
        DEPLOYMENTS,
        EVENTS_NEW,
        WIDGETS_V1,
        GADGETS_ONE,
        GADGETS_TWO,
    ]
    assert scan_mock.call_count == 1


@pytest.mark.parametrize('name, expected', [
    ('deployments.v1.apps', DEPLOYMENTS),
    ('deployments.apps', DEPLOYMENTS),
    ('deployments', DEPLOYMENTS),
    ('deployment', DEPLOYMENTS),
    ('Deployment', DEPLOYMENTS),
    ('deploy', DEPLOYMENTS),
    ('cm', CONFIGMAPS),
    ('configmaps.v1', CONFIGMAPS),
    ('events', EVENTS_CORE),
    ('events.events.k8s.io', EVENTS_NEW),
    ('widgets', WIDGETS_V1),
    ('widgets.v1beta1.example.com', WIDGETS_V1BETA1),
])
async def test_fixed_mode_resolves_names(scan_mock, settings, logger, name, expected):
    settings.mirroring.resources = [name]
    resources = await resolve_resources(settings=settings, logger=logger)
    assert resources == [expected]
    assert resources[0].version == expected.version


async def test_fixed_mode_keeps_the_order_and_deduplicates(scan_mock, settings, logger):
    settings.mirroring.resources = ['cm', 'deployments.apps', 'configmaps']
    resources = await resolve_resources(settings=settings, logger=logger)
    assert resources == [CONFIGMAPS, DEPLOYMENTS]


async def test_fixed_mode_fails_on_unknown_resources(scan_mock, settings, logger):
    settings.mirroring.resources = ['configmaps', 'unicorns']
    with pytest.raises(DiscoveryError, match=r"'unicorns' is not served"):
        await resolve_resources(settings=settings, logger=logger)


async def test_fixed_mode_fails_on_ambiguous_resources(scan_mock, settings, logger):
    settings.mirroring.resources = ['gadgets']
    with pytest.raises(DiscoveryError, match=r"'gadgets' is ambiguous"):
        await resolve_resources(settings=settings, logger=logger)


@pytest.mark.parametrize('name', ['nodes', 'bindings'])
async def test_fixed_mode_fails_on_unmirrorable_resources(scan_mock, settings, logger, name):
    settings.mirroring.resources = [name]
    with pytest.raises(DiscoveryError, match=r"cannot be mirrored"):
        await resolve_resources(settings=settings, logger=logger)


async def test_fixed_mode_fails_on_malformed_names(scan_mock, settings, logger):
    settings.mirroring.resources = ['deployments..apps']
    with pytest.raises(DiscoveryError, match=r"Malformed"):
        await resolve_resources(settings=settings, logger=logger)


async def test_empty_cluster_gives_empty_result(mocker, settings, logger):
    mocker.patch('kmirror._cogs.clients.scanning.scan_resources', return_value=[])
    resources = await resolve_resources(settings=settings, logger=logger)
    assert resources == []


@pytest.mark.parametrize('error', [
    APIForbiddenError(None, status=403),
    aiohttp.ClientConnectionError(),
    asyncio.TimeoutError(),
    ConnectionRefusedError(),
])
async def test_scanning_failures_are_escalated(mocker, settings, logger, error):
    mocker.patch('kmirror._cogs.clients.scanning.scan_resources', side_effect=error)
    with pytest.raises(DiscoveryError, match=r"API discovery has failed") as err:
        await resolve_resources(settings=settings, logger=logger)
    assert err.value.__cause__ is error
