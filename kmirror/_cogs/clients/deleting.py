from kmirror._cogs.clients import api
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import references


async def delete_obj(
        *,
        settings: configuration.OperatorSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> None:
    """
    Delete an object by its name.

    The dependents are deleted in the background by the cluster's garbage collector.
    The absence of the object is escalated as `APINotFoundError` (or `APIGoneError`).
    """
    await api.delete(
        url=resource.get_url(namespace=namespace, name=name),
        payload={'propagationPolicy': 'Background'},
        logger=logger,
        settings=settings,
    )
