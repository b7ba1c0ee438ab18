"""Compute the change set between live and desired resources.

The engine compares manifests, not models. Server side bookkeeping (uid,
timestamps, status etc) never takes part in a comparison. Fields the cluster
owns are copied from the live resource before the comparison so that a
desired resource can never change them. Fields the desired resource does not
mention are left alone, eg the defaults K8s adds to Pod templates.

"""

import copy
import logging
from typing import Any, Dict, List, Tuple

import jsonpatch
import pydantic
from pydantic_core import PydanticSerializationError

from spread.cluster import KubeCluster
from spread.errors import NotFoundError, SerializationError
from spread.models import Action, FieldPath, K8sResource, TypeDescriptor

# Convenience.
logit = logging.getLogger("spread")

# Fields K8s maintains on every resource. They are excluded from all diffs.
SERVER_FIELDS: Tuple[FieldPath, ...] = (
    ("metadata", "annotations", "kubectl.kubernetes.io/last-applied-configuration"),
    ("metadata", "creationTimestamp"),
    ("metadata", "generation"),
    ("metadata", "managedFields"),
    ("metadata", "resourceVersion"),
    ("metadata", "selfLink"),
    ("metadata", "uid"),
    ("status",),
)


def _lookup(manifest: dict, path: FieldPath) -> Tuple[Any, bool]:
    """Return the value at `path` and whether it exists."""
    node: Any = manifest
    for key in path:
        if not isinstance(node, dict) or key not in node:
            return None, False
        node = node[key]
    return node, True


def _assign(manifest: dict, path: FieldPath, value: Any) -> None:
    node = manifest
    for key in path[:-1]:
        node = node.setdefault(key, {})
    node[path[-1]] = copy.deepcopy(value)


def _drop(manifest: Any, path: FieldPath) -> None:
    """Remove `path` from `manifest` together with any parents it leaves empty."""
    if not isinstance(manifest, dict) or path[0] not in manifest:
        return

    if len(path) == 1:
        del manifest[path[0]]
        return

    _drop(manifest[path[0]], path[1:])
    if manifest[path[0]] == {}:
        del manifest[path[0]]


def strip_server_fields(manifest: dict) -> dict:
    """Return a copy of `manifest` without the fields K8s maintains."""
    out = copy.deepcopy(manifest)
    for path in SERVER_FIELDS:
        _drop(out, path)
    return out


def merge_live_fields(live: K8sResource, desired: K8sResource) -> K8sResource:
    """Return a copy of `desired` that carries over the cluster owned fields.

    The copy has the resource version of `live`, all its immutable fields, and
    those of its defaulted fields that `desired` does not specify. The input
    objects remain unmodified.

    """
    src, dst = live.manifest(), desired.manifest()
    cls = type(desired)

    # K8s only accepts the write if it carries the current resource version.
    _assign(dst, ("metadata", "resourceVersion"), live.resource_version)

    # Namespaced resources without namespace were created in "default".
    if cls.namespaced and not desired.namespace:
        _assign(dst, ("metadata", "namespace"), live.namespace)

    for path in cls.immutables:
        value, found = _lookup(src, path)
        if found:
            _assign(dst, path, value)
        else:
            _drop(dst, path)

    for path in cls.defaulted:
        value, found = _lookup(src, path)
        if found and not _lookup(dst, path)[1]:
            _assign(dst, path, value)

    desired.merge_live(src, dst)
    return cls.model_validate(dst)


def project(live: Any, desired: Any) -> Any:
    """Return the parts of `live` that `desired` specifies.

    Dict keys that `desired` does not mention are dropped, eg the defaults K8s
    fills into a Pod template. Lists keep their length so that surplus live
    elements still count as a difference.

    """
    if isinstance(live, dict) and isinstance(desired, dict):
        return {k: project(v, desired[k]) for k, v in live.items() if k in desired}

    if isinstance(live, list) and isinstance(desired, list):
        out = []
        for idx, value in enumerate(live):
            if idx < len(desired):
                out.append(project(value, desired[idx]))
            else:
                out.append(copy.deepcopy(value))
        return out
    return copy.deepcopy(live)


def _comparable(live: K8sResource, desired: K8sResource) -> Tuple[dict, dict]:
    """Return the stripped manifests, with `live` projected onto `desired`."""
    dst = strip_server_fields(desired.manifest())
    src = project(strip_server_fields(live.manifest()), dst)
    return src, dst


def is_equal(live: K8sResource, desired: K8sResource) -> bool:
    """Return `True` if `desired` would not change anything in `live`.

    Fields that only exist in `live` are irrelevant because a patch leaves
    them alone.

    """
    src, dst = _comparable(live, desired)
    return src == dst


def make_patch(
    live: K8sResource, desired: K8sResource, desc: TypeDescriptor
) -> List[Dict[str, Any]]:
    """Return the JSON patch operations that transform `live` into `desired`.

    The patch only touches fields that `desired` specifies. It starts with a
    `test` of the resource version. K8s will thus reject it if someone else
    modified the resource in the meantime.

    """
    try:
        src, dst = _comparable(live, desired)
        ops = jsonpatch.make_patch(src, dst).patch
    except (PydanticSerializationError, TypeError, ValueError) as err:
        raise SerializationError(
            "diff", desired.namespace, desired.name, desc.kind, str(err)
        )

    if desired.resource_version:
        path = "/metadata/resourceVersion"
        ops = [{"op": "test", "path": path, "value": desired.resource_version}] + ops
    return ops


async def update(
    cluster: KubeCluster,
    desired: K8sResource,
    desc: TypeDescriptor,
    create: bool = True,
) -> Tuple[K8sResource, Action]:
    """Patch the live resource to match `desired`.

    Create the resource instead if it does not exist yet and `create` is set.
    Do nothing if the live resource already matches.

    Returns:
        (K8sResource, Action): the resulting resource and what happened.

    """
    meta_log = {"kind": desc.kind, "name": desired.name, "ns": desired.namespace}
    try:
        live = await cluster.get(desired.namespace, desired.name, False, desc)
    except NotFoundError:
        if not create:
            raise
        return await cluster.create(desired, desc), "create"

    try:
        merged = merge_live_fields(live, desired)
    except pydantic.ValidationError as err:
        raise SerializationError(
            "merge", desired.namespace, desired.name, desc.kind, str(err)
        )

    if is_equal(live, merged):
        logit.info("unchanged", meta_log)
        return live, "noop"

    ops = make_patch(live, merged, desc)
    meta_log["ops"] = len(ops)
    logit.debug("computed patch", meta_log)
    return await cluster.patch(merged, ops, desc), "patch"
