"""
Discovery of the resource kinds served by the cluster.

First, the group-versions are collected: the core API's versions
from ``/api``, and the named groups' versions from ``/apis``, with
the group's preferred version marked. Then, every group-version is read
concurrently for its resources. Only the top-level resources are reported:
their sub-resources (e.g. ``deployments/status``, ``pods/exec``) are skipped.
"""
import asyncio
from typing import Any, Collection, List, Mapping, NamedTuple

from kmirror._cogs.clients import api, errors
from kmirror._cogs.configs import configuration
from kmirror._cogs.helpers import typedefs
from kmirror._cogs.structs import references


class GroupVersion(NamedTuple):
    url: str
    group: str
    version: str
    preferred: bool


async def read_version(
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> Mapping[str, str]:
    rsp: Mapping[str, str] = await api.get('/version', settings=settings, logger=logger)
    return rsp


async def scan_resources(
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    core_rsp, apis_rsp = await asyncio.gather(
        api.get('/api', settings=settings, logger=logger),
        api.get('/apis', settings=settings, logger=logger),
    )

    # The core API has no preferences among its versions: there is only v1 anyway.
    targets: List[GroupVersion] = [
        GroupVersion(url=f'/api/{version}', group='', version=version, preferred=True)
        for version in core_rsp['versions']
    ]
    targets.extend(
        GroupVersion(url=f'/apis/{group["name"]}/{version["version"]}',
                     group=group['name'], version=version['version'],
                     preferred=version['version'] == group['preferredVersion']['version'])
        for group in apis_rsp['groups']
        for version in group['versions']
    )

    scanned = await asyncio.gather(*[
        _read_group_version(target, settings=settings, logger=logger)
        for target in targets
    ])
    return {resource for resources in scanned for resource in resources}


async def _read_group_version(
        target: GroupVersion,
        *,
        settings: configuration.OperatorSettings,
        logger: typedefs.Logger,
) -> Collection[references.Resource]:
    try:
        rsp = await api.get(target.url, settings=settings, logger=logger)
    except errors.APINotFoundError:
        # The group-version vanished between listing the groups and reading it,
        # e.g. when its last and only custom resource definition was deleted.
        logger.debug(f"Group-version {target.url} is gone while scanning; skipping it.")
        return set()

    items: List[Mapping[str, Any]] = rsp.get('resources', [])

    # Builtins' singulars are empty in some distributions (e.g. K3s):
    # the lowercased kind is the same thing, and it is needed for the name resolution.
    return {
        references.Resource(
            group=target.group,
            version=target.version,
            kind=item['kind'],
            plural=item['name'],
            singular=item.get('singularName') or item['kind'].lower(),
            shortcuts=frozenset(item.get('shortNames') or []),
            namespaced=item['namespaced'],
            preferred=target.preferred,
            verbs=frozenset(item.get('verbs') or []),
        )
        for item in items
        if '/' not in item['name']
    }
