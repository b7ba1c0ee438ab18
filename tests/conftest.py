import copy
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml
from httpx import AsyncClient, Response

import spread.logstreams
from spread.cluster import KubeCluster
from spread.dtypes import K8sConfig


def pytest_configure(*args, **kwargs):
    """Pytest calls this hook on startup."""
    # Set log level to DEBUG for all unit tests.
    spread.logstreams.setup("DEBUG")


@pytest.fixture
async def k8scfg(respx_mock):
    """Return a K8s configuration with an async client mocked by respx."""
    url = "https://10.1.2.3:6443"
    async with AsyncClient(base_url=url) as client:
        yield K8sConfig(url=url, client=client, name="kind-kind")


@pytest.fixture
async def cluster(k8scfg: K8sConfig):
    yield KubeCluster(k8scfg, "kind-kind")


def make_manifest(kind: str, name: str, namespace: str = "default", **kwargs) -> dict:
    """Return a minimal manifest of `kind`."""
    apiVersion = "apps/v1" if kind == "Deployment" else "v1"
    manifest: Dict[str, Any] = dict(
        apiVersion=apiVersion, kind=kind, metadata={"name": name}
    )
    if namespace:
        manifest["metadata"]["namespace"] = namespace
    manifest.update(kwargs)
    return manifest


def make_live(manifest: dict, rv: str = "100", **status) -> dict:
    """Return `manifest` as K8s would report it, ie with bookkeeping fields."""
    live = copy.deepcopy(manifest)
    live["metadata"].update(
        resourceVersion=rv,
        uid="6f1c3c0c-uid",
        creationTimestamp="2024-01-01T00:00:00Z",
    )
    live["status"] = status
    return live


def k8s_status(code: int, reason: str, message: str = "") -> Response:
    """Return a K8s `Status` response, eg for 404 or 409 errors."""
    body = {
        "apiVersion": "v1",
        "kind": "Status",
        "status": "Failure",
        "reason": reason,
        "message": message or reason,
        "code": code,
    }
    return Response(code, json=body)


def write_kubeconfig(path: Path, user: dict, current: str = "kind-kind") -> Path:
    """Write a Kubeconfig with the contexts "kind-kind" and "other"."""
    kubeconf = {
        "apiVersion": "v1",
        "kind": "Config",
        "current-context": current,
        "clusters": [
            {
                "name": "kind",
                "cluster": {
                    "server": "https://1.2.3.4:6443",
                    "insecure-skip-tls-verify": True,
                },
            }
        ],
        "contexts": [
            {"name": "kind-kind", "context": {"cluster": "kind", "user": "admin"}},
            {"name": "other", "context": {"cluster": "kind", "user": "admin"}},
        ],
        "users": [{"name": "admin", "user": user}],
    }
    path.write_text(yaml.safe_dump(kubeconf))
    return path


def add_server_defaults(manifest: dict) -> dict:
    """Return the pod controller `manifest` with the fields K8s fills in."""
    out = copy.deepcopy(manifest)
    out["metadata"]["annotations"] = {"deployment.kubernetes.io/revision": "3"}

    template = out["spec"]["template"]
    template["metadata"]["creationTimestamp"] = None
    template["spec"].update(
        restartPolicy="Always",
        dnsPolicy="ClusterFirst",
        terminationGracePeriodSeconds=30,
        schedulerName="default-scheduler",
    )
    for container in template["spec"]["containers"]:
        container.update(
            imagePullPolicy="IfNotPresent",
            terminationMessagePath="/dev/termination-log",
            resources={},
        )
    return out
