from pathlib import Path
from typing import Any, ClassVar, Dict, List, Literal, Tuple

from pydantic import BaseModel, ConfigDict, Field

# Convenience: a path into a manifest, eg ("spec", "clusterIP").
FieldPath = Tuple[str, ...]

# Outcome of applying a single resource.
Action = Literal["create", "patch", "noop"]


# ----------------------------------------------------------------------
# Kubernetes
# ----------------------------------------------------------------------


class K8sMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    namespace: str = ""
    labels: Dict[str, str] = {}
    annotations: Dict[str, str] = {}
    resourceVersion: str = ""


class K8sResource(BaseModel):
    """Common base for all resource kinds the engine can deploy.

    Every subclass pins `apiVersion` and `kind` and declares how to address the
    resource (`resource`, `namespaced`) as well as the fields the cluster owns.
    All fields not explicitly modelled are retained verbatim.

    """

    model_config = ConfigDict(extra="allow")

    # Plural resource name in the K8s API, eg "services".
    resource: ClassVar[str] = ""
    namespaced: ClassVar[bool] = True

    # Fields the cluster assigns. Updates always keep the live value.
    immutables: ClassVar[Tuple[FieldPath, ...]] = ()

    # Fields the cluster populates with defaults if the manifest omits them.
    defaulted: ClassVar[Tuple[FieldPath, ...]] = ()

    apiVersion: str
    kind: str
    metadata: K8sMetadata

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def resource_version(self) -> str:
        return self.metadata.resourceVersion

    def selector(self) -> Dict[str, str] | None:
        """Return the label selector for dependent Pods, if any."""
        return None

    def manifest(self) -> Dict[str, Any]:
        """Return the JSON manifest with only the fields that were supplied."""
        data = self.model_dump(mode="json", exclude_unset=True)
        data.update(apiVersion=self.apiVersion, kind=self.kind)
        return data

    def merge_live(self, live: Dict[str, Any], merged: Dict[str, Any]) -> None:
        """Hook to carry over kind specific live values into `merged`."""


class Namespace(K8sResource):
    resource: ClassVar[str] = "namespaces"
    namespaced: ClassVar[bool] = False

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["Namespace"] = "Namespace"


class K8sServicePort(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    port: int = 0
    nodePort: int = 0
    protocol: str = "TCP"


class K8sServiceSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "ClusterIP"
    clusterIP: str = ""
    ports: List[K8sServicePort] = []
    selector: Dict[str, str] = {}


class K8sLoadBalancerIngress(BaseModel):
    model_config = ConfigDict(extra="allow")

    hostname: str = ""
    ip: str = ""


class K8sLoadBalancerStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    ingress: List[K8sLoadBalancerIngress] = []


class K8sServiceStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    loadBalancer: K8sLoadBalancerStatus = K8sLoadBalancerStatus()


class Service(K8sResource):
    resource: ClassVar[str] = "services"
    immutables: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "clusterIP"),
        ("spec", "clusterIPs"),
        ("spec", "healthCheckNodePort"),
    )
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "type"),
        ("spec", "sessionAffinity"),
        ("spec", "ipFamilies"),
        ("spec", "ipFamilyPolicy"),
        ("spec", "internalTrafficPolicy"),
        ("spec", "externalTrafficPolicy"),
        ("spec", "allocateLoadBalancerNodePorts"),
    )

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["Service"] = "Service"
    spec: K8sServiceSpec = K8sServiceSpec()
    status: K8sServiceStatus = K8sServiceStatus()

    def needs_load_balancer(self) -> bool:
        return self.spec.type == "LoadBalancer"

    def merge_live(self, live: Dict[str, Any], merged: Dict[str, Any]) -> None:
        """Keep the node ports K8s assigned to ports with the same number."""
        live_ports = {
            _.get("port"): _ for _ in live.get("spec", {}).get("ports", [])
        }
        for port in merged.get("spec", {}).get("ports", []):
            src = live_ports.get(port.get("port"), {})
            for key in ("nodePort", "protocol", "targetPort"):
                if key in src and key not in port:
                    port[key] = src[key]


class ReplicationController(K8sResource):
    resource: ClassVar[str] = "replicationcontrollers"
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "replicas"),
        ("spec", "selector"),
    )

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["ReplicationController"] = "ReplicationController"
    spec: Dict[str, Any] = {}

    def selector(self) -> Dict[str, str] | None:
        # K8s defaults an empty selector to the labels of the Pod template.
        selector = self.spec.get("selector") or {}
        if not selector:
            template = self.spec.get("template") or {}
            selector = (template.get("metadata") or {}).get("labels") or {}
        return dict(selector)


class Deployment(K8sResource):
    resource: ClassVar[str] = "deployments"
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "replicas"),
        ("spec", "strategy"),
        ("spec", "revisionHistoryLimit"),
        ("spec", "progressDeadlineSeconds"),
    )

    apiVersion: Literal["apps/v1"] = "apps/v1"
    kind: Literal["Deployment"] = "Deployment"
    spec: Dict[str, Any] = {}

    def selector(self) -> Dict[str, str] | None:
        selector = self.spec.get("selector") or {}
        return dict(selector.get("matchLabels") or {})


class Pod(K8sResource):
    resource: ClassVar[str] = "pods"
    immutables: ClassVar[Tuple[FieldPath, ...]] = (("spec", "nodeName"),)

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["Pod"] = "Pod"


class Secret(K8sResource):
    resource: ClassVar[str] = "secrets"
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (("type",),)

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["Secret"] = "Secret"


class ConfigMap(K8sResource):
    resource: ClassVar[str] = "configmaps"

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["ConfigMap"] = "ConfigMap"


class ResourceQuota(K8sResource):
    resource: ClassVar[str] = "resourcequotas"

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["ResourceQuota"] = "ResourceQuota"


class LimitRange(K8sResource):
    resource: ClassVar[str] = "limitranges"

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["LimitRange"] = "LimitRange"


class ServiceAccount(K8sResource):
    resource: ClassVar[str] = "serviceaccounts"
    immutables: ClassVar[Tuple[FieldPath, ...]] = (("secrets",),)

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["ServiceAccount"] = "ServiceAccount"


class PersistentVolume(K8sResource):
    resource: ClassVar[str] = "persistentvolumes"
    namespaced: ClassVar[bool] = False
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "persistentVolumeReclaimPolicy"),
        ("spec", "volumeMode"),
    )

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["PersistentVolume"] = "PersistentVolume"


class PersistentVolumeClaim(K8sResource):
    resource: ClassVar[str] = "persistentvolumeclaims"
    immutables: ClassVar[Tuple[FieldPath, ...]] = (("spec", "volumeName"),)
    defaulted: ClassVar[Tuple[FieldPath, ...]] = (
        ("spec", "storageClassName"),
        ("spec", "volumeMode"),
    )

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["PersistentVolumeClaim"] = "PersistentVolumeClaim"


class Endpoints(K8sResource):
    resource: ClassVar[str] = "endpoints"

    apiVersion: Literal["v1"] = "v1"
    kind: Literal["Endpoints"] = "Endpoints"


class TypeDescriptor(BaseModel):
    """Everything we need to address a resource kind in the K8s API."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    apiVersion: str
    kind: str
    resource: str
    namespaced: bool


class ConvergenceRecord(BaseModel):
    """Load balancer state of a single Service while we wait for it."""

    model_config = ConfigDict(extra="forbid")

    namespace: str
    name: str
    assigned: bool = False

    # (hostname or IP, port) tuples under which the Service is reachable.
    addresses: List[Tuple[str, int]] = []


# ----------------------------------------------------------------------
# Runtime configuration.
# ----------------------------------------------------------------------
class DeployConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kubeconfig: Path
    kubecontext: str = ""
    loglevel: str = "warning"

    # Patch existing resources instead of failing if they exist.
    update: bool = True

    # Delete the Pods of modified pod controllers.
    delete_pods: bool = False

    # Load balancer polling cadence and optional deadline in seconds.
    poll_interval: float = 0.25
    timeout: float | None = None

    # Single node development clusters without real load balancers.
    local_contexts: List[str] = Field(
        default_factory=lambda: ["localkube", "minikube"]
    )
