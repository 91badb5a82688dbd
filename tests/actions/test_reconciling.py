import asyncio
import logging

import aiohttp
import pytest

from kmirror._cogs.clients.errors import APIConflictError, APIError, APIForbiddenError, \
                                         APIGoneError, APINotFoundError, APIServerError
from kmirror._cogs.structs.bodies import EventType, WatchEvent
from kmirror._core.actions.reconciling import MirrorHandler


@pytest.fixture()
def create_mock(mocker):
    return mocker.patch('kmirror._cogs.clients.creating.create_obj', return_value={})


@pytest.fixture()
def replace_mock(mocker):
    return mocker.patch('kmirror._cogs.clients.replacing.replace_obj', return_value={})


@pytest.fixture()
def delete_mock(mocker):
    return mocker.patch('kmirror._cogs.clients.deleting.delete_obj', return_value=None)


@pytest.fixture()
def handler(resource, settings, create_mock, replace_mock, delete_mock):
    return MirrorHandler(resource=resource, settings=settings)


@pytest.mark.parametrize('method', ['on_added', 'on_modified'])
async def test_absent_objects_are_created(
        handler, make_body, create_mock, replace_mock, method):

    await getattr(handler, method)(make_body())

    assert create_mock.call_count == 1
    assert replace_mock.call_count == 0
    body = create_mock.call_args[1]['body']
    assert body['metadata']['namespace'] == 'dst'
    assert 'resourceVersion' not in body['metadata']
    assert 'uid' not in body['metadata']


@pytest.mark.parametrize('method', ['on_added', 'on_modified'])
async def test_existing_objects_are_replaced_on_conflicts(
        handler, make_body, create_mock, replace_mock, method, caplog):

    caplog.set_level(logging.DEBUG)
    create_mock.side_effect = APIConflictError(None, status=409)

    await getattr(handler, method)(make_body(rv='9'))

    assert create_mock.call_count == 1
    assert replace_mock.call_count == 1
    assert replace_mock.call_args[1]['namespace'] == 'dst'
    assert replace_mock.call_args[1]['name'] == 'web'
    assert 'resourceVersion' not in replace_mock.call_args[1]['body']['metadata']
    assert "Updated the deployments.v1.apps mirror in 'dst'" in caplog.text


async def test_vanished_objects_are_created_once_more(
        handler, make_body, create_mock, replace_mock, caplog):

    create_mock.side_effect = [APIConflictError(None, status=409), {}]
    replace_mock.side_effect = APINotFoundError(None, status=404)

    await handler.on_modified(make_body())

    assert create_mock.call_count == 2
    assert replace_mock.call_count == 1
    assert create_mock.call_args_list[0] == create_mock.call_args_list[1]


async def test_repeated_conflicts_are_not_retried_forever(
        handler, make_body, create_mock, replace_mock, caplog):

    create_mock.side_effect = APIConflictError(None, status=409)
    replace_mock.side_effect = APINotFoundError(None, status=404)

    await handler.on_added(make_body())

    assert create_mock.call_count == 2
    assert replace_mock.call_count == 1
    assert "re-created by someone else" in caplog.text


@pytest.mark.parametrize('error', [
    APIForbiddenError(None, status=403),
    APIServerError(None, status=500),
    APIError(None, status=422),
    aiohttp.ClientConnectionError(),
    asyncio.TimeoutError(),
])
async def test_write_failures_are_logged_and_dropped(
        handler, make_body, create_mock, replace_mock, error, caplog):

    create_mock.side_effect = error

    await handler.on_added(make_body())  # no error raised!

    assert create_mock.call_count == 1
    assert replace_mock.call_count == 0
    assert "has failed" in caplog.text


async def test_malformed_objects_are_logged_and_dropped(
        handler, create_mock, replace_mock, caplog):

    await handler.on_added({'metadata': {}})  # no name

    assert create_mock.call_count == 0
    assert replace_mock.call_count == 0
    assert "Skipping the added" in caplog.text


async def test_deleted_objects_are_deleted_by_name(
        handler, make_body, delete_mock, caplog):

    caplog.set_level(logging.INFO)
    await handler.on_deleted(make_body())

    assert delete_mock.call_count == 1
    assert delete_mock.call_args[1]['namespace'] == 'dst'
    assert delete_mock.call_args[1]['name'] == 'web'
    assert "Deleted the deployments.v1.apps mirror in 'dst'" in caplog.text


@pytest.mark.parametrize('error', [
    APINotFoundError(None, status=404),
    APIGoneError(None, status=410),
])
async def test_deleting_absent_objects_is_a_success(
        handler, make_body, delete_mock, error, caplog):

    caplog.set_level(logging.INFO)
    delete_mock.side_effect = error

    await handler.on_deleted(make_body())

    assert delete_mock.call_count == 1
    assert "already absent" in caplog.text
    assert "has failed" not in caplog.text


async def test_deleting_failures_are_logged_and_dropped(
        handler, make_body, delete_mock, caplog):

    delete_mock.side_effect = APIServerError(None, status=500)

    await handler.on_deleted(make_body())  # no error raised!

    assert delete_mock.call_count == 1
    assert "has failed" in caplog.text


@pytest.mark.parametrize('event_type, method', [
    (EventType.ADDED, 'on_added'),
    (EventType.MODIFIED, 'on_modified'),
    (EventType.DELETED, 'on_deleted'),
])
async def test_events_are_dispatched_by_type(
        handler, make_body, mocker, event_type, method):

    mock = mocker.patch.object(handler, method)
    body = make_body()

    await handler(event=WatchEvent(type=event_type, object=body))

    assert mock.call_count == 1
    assert mock.call_args[0][0] is body


async def test_writes_are_logged_with_object_references(
        handler, make_body, caplog):

    caplog.set_level(logging.INFO)
    await handler.on_added(make_body())

    records = [record for record in caplog.records if record.name == 'kmirror.objects']
    assert len(records) == 1
    assert records[0].k8s_ref == {
        'apiVersion': 'apps/v1',
        'kind': 'Deployment',
        'name': 'web',
        'namespace': 'src',
    }
    assert "Created the deployments.v1.apps mirror in 'dst'" in records[0].getMessage()
