from typing import Optional

from kmirror._cogs.clients import api
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import bodies, references


async def replace_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        body: bodies.RawBody,
        logger: typedefs.Logger,
) -> Optional[bodies.RawBody]:
    """
    Replace (PUT) the whole object with a new body.

    If the body has no ``metadata.resourceVersion``, the update is unconditional
    (a blind overwrite): whatever is stored in the cluster is replaced.

    The absence of the object is escalated as `APINotFoundError`.
    """
    replaced_body: bodies.RawBody = await api.put(
        url=resource.get_url(namespace=namespace, name=name),
        payload=body,
        logger=logger,
        settings=settings,
    )
    return replaced_body
