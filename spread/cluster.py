import logging
from pathlib import Path
from typing import Any, Dict, List, Sequence

import spread.k8s
import spread.scheme
from spread.bundle import Bundle
from spread.dtypes import K8sConfig
from spread.errors import (
    AlreadyExistsError,
    ApplyError,
    ClusterConnectionError,
    ClusterError,
    ConflictError,
    NotFoundError,
    UnknownKindError,
)
from spread.models import K8sResource, TypeDescriptor

# The current `kubectl` context is represented with an empty string.
DEFAULT_CONTEXT = ""

# Context names of single node development clusters.
LOCAL_CONTEXTS = ("localkube", "minikube")

# Convenience.
logit = logging.getLogger("spread")


def raise_for_status(
    action: str,
    namespace: str,
    name: str,
    kind: str,
    resp: dict,
    code: int,
) -> None:
    """Raise the `ClusterError` that corresponds to the K8s response."""
    reason, message = spread.k8s.status_reason(resp)
    text = message or reason or f"HTTP status {code}"
    if code == -1:
        text = "cannot reach K8s API"

    args = (action, namespace, name, kind, text, code)
    if code == 404:
        raise NotFoundError(*args)
    if code == 409 and reason == "AlreadyExists":
        raise AlreadyExistsError(*args)
    if code == 409:
        raise ConflictError(*args)
    raise ClusterError(*args)


class KubeCluster:
    """Deploy resources to a single K8s cluster.

    This is a thin layer on top of the K8s REST API that performs one request
    per call and converts the responses into resource models. It does not
    retry failed requests.

    """

    def __init__(
        self,
        k8sconfig: K8sConfig,
        context: str,
        local_contexts: Sequence[str] = LOCAL_CONTEXTS,
    ):
        self.k8sconfig = k8sconfig
        self.context = context
        self.localkube = context in local_contexts

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        if self.k8sconfig.client is not None:
            await self.k8sconfig.client.aclose()

    @property
    def connected(self) -> bool:
        return self.k8sconfig.client is not None

    def _decode(self, action: str, manifest: dict, desc: TypeDescriptor) -> K8sResource:
        # Single resources usually carry their kind but not always, eg `export`.
        manifest.setdefault("apiVersion", desc.apiVersion)
        manifest.setdefault("kind", desc.kind)
        try:
            return spread.scheme.decode(manifest)
        except UnknownKindError as err:
            meta = manifest.get("metadata") or {}
            raise ClusterError(
                action,
                meta.get("namespace", ""),
                meta.get("name", ""),
                desc.kind,
                f"response is not a supported resource: {err}",
            )

    async def get(
        self, namespace: str, name: str, export: bool, desc: TypeDescriptor
    ) -> K8sResource:
        """Return the live version of a resource."""
        url = spread.scheme.resource_url(desc, namespace, name)
        params = {"export": "true"} if export else None

        resp, code, err = await spread.k8s.get(self.k8sconfig, url, params)
        if err:
            raise_for_status("get", namespace, name, desc.kind, resp, code)
        return self._decode("get", resp, desc)

    async def create(self, obj: K8sResource, desc: TypeDescriptor) -> K8sResource:
        """Create `obj` and return the version K8s stored."""
        url = spread.scheme.resource_url(desc, obj.namespace)

        resp, code, err = await spread.k8s.post(self.k8sconfig, url, obj.manifest())
        if err:
            raise_for_status("create", obj.namespace, obj.name, desc.kind, resp, code)

        meta_log = {"kind": desc.kind, "name": obj.name, "ns": obj.namespace}
        logit.info("created", meta_log)
        return self._decode("create", resp, desc)

    async def patch(
        self, obj: K8sResource, ops: List[Dict[str, Any]], desc: TypeDescriptor
    ) -> K8sResource:
        """Apply the JSON patch `ops` to `obj` and return the new version."""
        url = spread.scheme.resource_url(desc, obj.namespace, obj.name)

        resp, code, err = await spread.k8s.patch(self.k8sconfig, url, ops)
        if err:
            # The resource existed a moment ago when we computed the patch.
            if code == 404:
                raise ConflictError(
                    "update",
                    obj.namespace,
                    obj.name,
                    desc.kind,
                    "resource vanished during update",
                    code,
                )
            raise_for_status("update", obj.namespace, obj.name, desc.kind, resp, code)

        meta_log = {"kind": desc.kind, "name": obj.name, "ns": obj.namespace}
        logit.info("patched", meta_log)
        return self._decode("update", resp, desc)

    async def delete_pods(self, controller: K8sResource) -> List[str]:
        """Delete all Pods the `controller` selects and return their names.

        This forces the controller to recreate them from its current template.
        Pods that disappear before we can delete them count as deleted.

        """
        ns = controller.namespace or "default"
        selector = controller.selector()
        if not selector:
            # An empty selector would match every Pod in the namespace.
            raise ApplyError(
                f"could not delete pods for '{ns}/{controller.name}': "
                "controller has no label selector"
            )

        desc = spread.scheme.resolve_kind("v1", "Pod")
        url = spread.scheme.resource_url(desc, ns)
        labels = [f"{k}={v}" for k, v in sorted(selector.items())]
        params = {"labelSelector": str.join(",", labels)}

        resp, code, err = await spread.k8s.get(self.k8sconfig, url, params)
        if err:
            kind = controller.kind
            raise_for_status("list pods", ns, controller.name, kind, resp, code)

        deleted = []
        for pod in resp.get("items", []):
            name = pod["metadata"]["name"]
            pod_url = spread.scheme.resource_url(desc, ns, name)
            resp, code, err = await spread.k8s.delete(self.k8sconfig, pod_url)
            if err and code != 404:
                raise_for_status("delete", ns, name, "Pod", resp, code)
            deleted.append(name)

        logit.info(
            "deleted pods",
            {"controller": f"{ns}/{controller.name}", "pods": deleted},
        )
        return deleted

    async def fetch(
        self, kind: str, namespace: str, name: str, export: bool = False
    ) -> K8sResource:
        """Return the live resource `name`.

        Unlike `get`, the `kind` may be any name `kubectl` accepts, eg
        "svc" or "services".

        """
        desc = spread.scheme.short_form(kind)
        return await self.get(namespace, name, export, desc)

    async def fetch_bundle(self) -> Bundle:
        """Return a `Bundle` with all supported resources in the cluster."""
        bundle = Bundle()
        for desc in spread.scheme.DESCRIPTORS.values():
            url = spread.scheme.list_url(desc)
            resp, code, err = await spread.k8s.get(self.k8sconfig, url)
            if err:
                raise_for_status("list", "", desc.resource, desc.kind, resp, code)

            # K8s omits the kind and version of the items inside a List.
            for manifest in resp.get("items", []):
                bundle.add(self._decode("list", manifest, desc))
        return bundle


def create_cluster(
    kubeconfig: Path | None,
    context: str = DEFAULT_CONTEXT,
    local_contexts: Sequence[str] = LOCAL_CONTEXTS,
) -> KubeCluster:
    """Return a `KubeCluster` for the Kubeconfig `context`.

    An empty `context` uses the current context of the Kubeconfig.

    """
    k8sconfig, err = spread.k8s.create_cluster_config(kubeconfig, context)
    if err:
        raise ClusterConnectionError(
            f"could not set up K8s client for context '{context or '<current>'}'"
        )
    return KubeCluster(k8sconfig, k8sconfig.name, local_contexts)
