import pytest

from kmirror._cogs.structs.references import NAMESPACES, Resource


def test_equality_and_hashing_by_the_identifying_names_only():
    resource1 = Resource('apps', 'v1', 'deployments', kind='Deployment', namespaced=True)
    resource2 = Resource('apps', 'v1', 'deployments', preferred=False)
    assert resource1 == resource2
    assert hash(resource1) == hash(resource2)
    assert resource1 != Resource('apps', 'v2', 'deployments')


@pytest.mark.parametrize('resource, expected', [
    (Resource('apps', 'v1', 'deployments'), 'deployments.v1.apps'),
    (Resource('', 'v1', 'configmaps'), 'configmaps.v1'),
])
def test_repr(resource, expected):
    assert repr(resource) == expected


def test_urls_of_namespaced_resources():
    resource = Resource('apps', 'v1', 'deployments', namespaced=True)
    assert resource.get_url(namespace='ns') == '/apis/apps/v1/namespaces/ns/deployments'
    assert resource.get_url(namespace='ns', name='web') == '/apis/apps/v1/namespaces/ns/deployments/web'
    assert resource.get_url() == '/apis/apps/v1/deployments'


def test_urls_of_core_resources():
    resource = Resource('', 'v1', 'configmaps', namespaced=True)
    assert resource.get_url(namespace='ns', name='cfg') == '/api/v1/namespaces/ns/configmaps/cfg'


def test_urls_of_cluster_resources():
    assert NAMESPACES.get_url(name='src') == '/api/v1/namespaces/src'
    with pytest.raises(ValueError):
        NAMESPACES.get_url(namespace='ns', name='src')


def test_urls_with_params_and_server():
    resource = Resource('apps', 'v1', 'deployments', namespaced=True)
    url = resource.get_url(server='https://host/', namespace='ns', params={'watch': 'true'})
    assert url == 'https://host/apis/apps/v1/namespaces/ns/deployments?watch=true'


def test_urls_of_specific_objects_require_namespaces():
    resource = Resource('apps', 'v1', 'deployments', namespaced=True)
    with pytest.raises(ValueError):
        resource.get_url(name='web')
