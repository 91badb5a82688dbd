"""
Preparing the source objects for the destination namespace.

The source objects carry the fields assigned by the cluster on storing them:
the uids, resource versions, timestamps, generations, field managers, etc.
These fields are specific to the stored objects of the source namespace,
and are either rejected or ignored by the API when the objects are created
in another namespace. They are removed; everything else is kept as is.
"""
import collections.abc
import copy

from kmirror._cogs.structs import bodies

# The fields of ``metadata`` assigned by the cluster, not by the objects' authors.
SERVER_ASSIGNED_FIELDS = (
    'resourceVersion',
    'uid',
    'creationTimestamp',
    'deletionTimestamp',
    'deletionGracePeriodSeconds',
    'generation',
    'managedFields',
    'selfLink',
    'ownerReferences',  # the owners are namespace-local; they do not exist in the destination.
)


class TransformError(Exception):
    """ Raised when the object cannot be prepared for mirroring (malformed). """


def transform(body: bodies.RawBody, namespace: str) -> bodies.RawBody:
    """
    Produce a copy of an object ready to be stored in another namespace.

    The original body is never modified: it is shared with the reflector's cache.
    """
    if not isinstance(body, collections.abc.Mapping):
        raise TransformError(f"The object is not a mapping: {body!r}")

    metadata = body.get('metadata')
    if not isinstance(metadata, collections.abc.Mapping):
        raise TransformError(f"The object has no metadata: {body!r}")
    if not metadata.get('name'):
        raise TransformError(f"The object has no name: {body!r}")

    result = copy.deepcopy(body)
    for field in SERVER_ASSIGNED_FIELDS:
        result['metadata'].pop(field, None)  # type: ignore
    result['metadata']['namespace'] = namespace
    return result
