"""
Resolving the resource kinds to be mirrored.

The kinds are resolved only once at startup and never change afterwards:
neither the newly added CRDs nor the removed ones are noticed while running.

There are two modes:

* The discovery mode, when no resources are configured: all resource kinds
  that can be mirrored are taken, in their preferred API versions.
* The fixed mode, when specific resources are configured by their names:
  they all must exist and be mirrorable, or the mirror refuses to start.
"""
import asyncio
import logging
import re
from typing import Collection, Iterable, List, NamedTuple, Optional

import aiohttp

from kmirror._cogs.clients import errors, scanning
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import references

logger = logging.getLogger(__name__)

# Used only for parsing the resource names: "v1", "v1beta1", "v2alpha3", etc.
K8S_VERSION_PATTERN = re.compile(r'^v\d+(?:(?:alpha|beta)\d+)?$')

# Both are needed: the listing to fill the cache, the watching to follow the changes.
REQUIRED_VERBS = frozenset({'list', 'watch'})


class DiscoveryError(Exception):
    """ Raised when the resource kinds cannot be resolved; fatal to the startup. """


class ResourceName(NamedTuple):
    """
    A parsed resource name as configured by the users.

    The name can be a plural, a singular, a kind, or a short name.
    The unspecified version means the preferred one. The unspecified group
    means any group, but the core API group is preferred if it is there.
    """
    name: str
    version: Optional[str] = None
    group: Optional[str] = None

    def __str__(self) -> str:
        return '.'.join(part for part in (self.name, self.version, self.group) if part)

    def check(self, resource: references.Resource) -> bool:
        return (
            (self.group is None or self.group == resource.group) and
            ((self.version is None and resource.preferred) or self.version == resource.version) and
            (self.name == resource.plural or
             self.name == resource.singular or
             self.name == resource.kind or
             self.name in resource.shortcuts)
        )

    def select(self, resources: Iterable[references.Resource]) -> Collection[references.Resource]:
        result = {resource for resource in resources if self.check(resource)}

        # Core v1 API group's priority is hard-coded in K8s and kubectl. Do the same: e.g.
        # "events" means the core "events.v1", not "events.v1.events.k8s.io", unless specified.
        v1only = {resource for resource in result if resource.group == ''}
        return v1only or result


def parse_resource_name(text: str) -> ResourceName:
    """
    Parse a resource name in one of the forms recognised by ``kubectl``.

    E.g.: ``deployments.v1.apps``, ``deployments.apps``, ``configmaps.v1``,
    ``configmaps``, ``ingresses.networking.k8s.io``.
    """
    text = text.strip()
    if not text or any(not part for part in text.split('.')):
        raise DiscoveryError(f"Malformed resource name: {text!r}")

    name, *rest = text.split('.')
    if rest and K8S_VERSION_PATTERN.match(rest[0]):
        version, *groups = rest
        return ResourceName(name=name, version=version, group='.'.join(groups))
    elif rest:
        return ResourceName(name=name, group='.'.join(rest))
    else:
        return ResourceName(name=name)


def is_mirrorable(resource: references.Resource) -> bool:
    """
    Check if the resource kind can be mirrored between namespaces.

    Only the namespaced top-level resources are mirrorable, and only if they
    can be listed & watched. The sub-resources (``pods/log``, ``deployments/scale``)
    are not standalone objects, so they are never mirrored by themselves.
    """
    return (
        bool(resource.namespaced) and
        REQUIRED_VERBS.issubset(resource.verbs) and
        '/' not in resource.plural
    )


async def resolve_resources(
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> List[references.Resource]:
    """
    Determine the resource kinds to mirror, as configured in the settings.

    The result can be empty: e.g. when the configured resources are all gone.
    It is the caller's decision whether to warn or to fail in that case.
    """
    try:
        available = await scanning.scan_resources(settings=settings, logger=logger)
    except (errors.APIError, aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
        raise DiscoveryError(f"The API discovery has failed: {e}") from e

    names = settings.mirroring.resources
    if not names:
        selected = sorted(
            (resource for resource in available if resource.preferred and is_mirrorable(resource)),
            key=lambda resource: (resource.group, resource.version, resource.plural),
        )
        logger.debug(f"Discovered {len(selected)} mirrorable resources: {selected!r}")
        return selected

    resolved: List[references.Resource] = []
    for text in names:
        selector = parse_resource_name(text)
        found = selector.select(available)
        if not found:
            raise DiscoveryError(f"Resource {text!r} is not served by the cluster.")
        if len(found) > 1:
            raise DiscoveryError(f"Resource {text!r} is ambiguous; "
                                 f"specify the group/version: {sorted(found, key=repr)!r}")
        resource, = found
        if not is_mirrorable(resource):
            raise DiscoveryError(f"Resource {text!r} cannot be mirrored: it must be namespaced, "
                                 f"listable & watchable; it is {resource!r} with "
                                 f"namespaced={resource.namespaced}, verbs={sorted(resource.verbs)}.")
        if resource not in resolved:
            resolved.append(resource)

    logger.debug(f"Resolved {len(resolved)} configured resources: {resolved!r}")
    return resolved
