"""Static registry of the resource kinds the engine supports.

The registry is the only place that enumerates the kinds. Both the type
resolution for individual objects and the bulk listing of a cluster iterate
over `RESOURCE_KINDS`. Supporting a new kind therefore only requires a new
model in `spread.models` and an entry in this tuple.

"""

from typing import Dict, Tuple, Type

import pydantic

from spread.errors import SerializationError, UnknownKindError
from spread.models import (
    ConfigMap,
    Deployment,
    Endpoints,
    K8sResource,
    LimitRange,
    Namespace,
    PersistentVolume,
    PersistentVolumeClaim,
    Pod,
    ReplicationController,
    ResourceQuota,
    Secret,
    Service,
    ServiceAccount,
    TypeDescriptor,
)

RESOURCE_KINDS: Tuple[Type[K8sResource], ...] = (
    Namespace,
    Service,
    ReplicationController,
    Deployment,
    Pod,
    Secret,
    ConfigMap,
    ResourceQuota,
    LimitRange,
    ServiceAccount,
    PersistentVolume,
    PersistentVolumeClaim,
    Endpoints,
)

# Abbreviations `kubectl` understands.
SHORT_NAMES: Dict[str, str] = {
    "cm": "ConfigMap",
    "deploy": "Deployment",
    "ep": "Endpoints",
    "limits": "LimitRange",
    "ns": "Namespace",
    "po": "Pod",
    "pv": "PersistentVolume",
    "pvc": "PersistentVolumeClaim",
    "quota": "ResourceQuota",
    "rc": "ReplicationController",
    "sa": "ServiceAccount",
    "svc": "Service",
}


def _default(cls: Type[K8sResource], name: str) -> str:
    return cls.model_fields[name].default


def descriptor(cls: Type[K8sResource]) -> TypeDescriptor:
    """Return the `TypeDescriptor` of a registered resource class."""
    return TypeDescriptor(
        apiVersion=_default(cls, "apiVersion"),
        kind=_default(cls, "kind"),
        resource=cls.resource,
        namespaced=cls.namespaced,
    )


# Lookup tables derived from the registry.
SCHEME: Dict[Tuple[str, str], Type[K8sResource]] = {
    (_default(cls, "apiVersion"), _default(cls, "kind")): cls for cls in RESOURCE_KINDS
}
DESCRIPTORS: Dict[Type[K8sResource], TypeDescriptor] = {
    cls: descriptor(cls) for cls in RESOURCE_KINDS
}


def resolve(obj) -> TypeDescriptor:
    """Return the `TypeDescriptor` for `obj` or raise `UnknownKindError`."""
    try:
        return DESCRIPTORS[type(obj)]
    except KeyError:
        raise UnknownKindError(f"could not match '{type(obj).__name__}' to type")


def resolve_kind(apiVersion: str, kind: str) -> TypeDescriptor:
    try:
        return DESCRIPTORS[SCHEME[(apiVersion, kind)]]
    except KeyError:
        raise UnknownKindError(f"unsupported resource kind {apiVersion}/{kind}")


def short_form(name: str) -> TypeDescriptor:
    """Return the descriptor for a kind, plural resource or short name.

    Lookups are case insensitive, eg "svc", "services" and "Service" all
    resolve to the same descriptor.

    """
    needle = SHORT_NAMES.get(name.lower(), name).lower()
    for desc in DESCRIPTORS.values():
        if needle in (desc.kind.lower(), desc.resource):
            return desc
    raise UnknownKindError(f"unsupported resource kind {name}")


def decode(manifest: dict) -> K8sResource:
    """Convert a raw K8s `manifest` into the model of its kind."""
    try:
        key = (manifest["apiVersion"], manifest["kind"])
    except (KeyError, TypeError):
        raise UnknownKindError("manifest has no apiVersion and kind")

    try:
        cls = SCHEME[key]
    except KeyError:
        raise UnknownKindError(f"unsupported resource kind {key[0]}/{key[1]}")

    try:
        return cls.model_validate(manifest)
    except pydantic.ValidationError as err:
        meta = manifest.get("metadata") or {}
        raise SerializationError(
            "decode",
            meta.get("namespace", ""),
            meta.get("name", ""),
            key[1],
            str(err),
        )


def resource_url(desc: TypeDescriptor, namespace: str, name: str = "") -> str:
    """Return the API path for the resource, eg `/api/v1/namespaces/foo/pods/bar`.

    Namespaced resources without a namespace live in "default". An empty
    `name` produces the collection path instead.

    """
    if desc.apiVersion == "v1":
        base = "/api/v1"
    else:
        base = f"/apis/{desc.apiVersion}"

    if desc.namespaced:
        base = f"{base}/namespaces/{namespace or 'default'}"

    url = f"{base}/{desc.resource}"
    return f"{url}/{name}" if name else url


def list_url(desc: TypeDescriptor) -> str:
    """Return the path to list `desc` resources across all namespaces."""
    base = "/api/v1" if desc.apiVersion == "v1" else f"/apis/{desc.apiVersion}"
    return f"{base}/{desc.resource}"
