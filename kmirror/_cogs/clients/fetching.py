from typing import Collection, Dict, List, Optional, Tuple

from kmirror._cogs.clients import api
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import bodies, references


async def read_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Read a single object by its name. The absence is escalated as `APINotFoundError`.
    """
    obj: bodies.RawBody = await api.get(
        url=resource.get_url(namespace=namespace, name=name),
        settings=settings,
        logger=logger,
    )
    return obj


async def list_objs(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        label_selector: Optional[str] = None,
        logger: typedefs.Logger,
) -> Tuple[Collection[bodies.RawBody], Optional[str]]:
    """
    List the objects of specific resource type.

    Returns the objects and the list's resource version, which is used
    as a checkpoint to start watching from.

    The list's items come without ``kind`` & ``apiVersion``: they are restored
    from the list's own fields, so that the objects could be re-created as is.
    """
    params: Dict[str, str] = {}
    if label_selector:
        params['labelSelector'] = label_selector

    rsp = await api.get(
        url=resource.get_url(namespace=namespace, params=params),
        logger=logger,
        settings=settings,
    )

    items: List[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', []):
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
