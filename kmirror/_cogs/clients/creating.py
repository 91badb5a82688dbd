from typing import Optional

from kmirror._cogs.clients import api
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import bodies, references


async def create_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        body: bodies.RawBody,
        namespace: references.Namespace = None,
        name: Optional[str] = None,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create (POST) a new object from the body.

    The namespace & name, if given, are only the defaults for the body's own
    metadata. An existing object is never overwritten: ``409 Conflict`` is raised
    as `APIConflictError` and it is up to the caller to replace the object instead.
    """
    metadata = dict(body.get('metadata') or {})
    if namespace is not None:
        metadata.setdefault('namespace', namespace)
    if name is not None:
        metadata.setdefault('name', name)
    payload = dict(body, metadata=metadata)

    created: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=metadata.get('namespace')),
        payload=payload,
        settings=settings,
        logger=logger,
    )
    return created
