"""Exceptions raised by the reconciliation engine.

Every failure that crosses a component boundary is an `ApplyError`. Errors that
relate to a specific resource carry the action, namespace, name and kind so the
final message is self describing, eg

    could not update 'default/nginx' (Service): Unauthorized

"""


class ApplyError(Exception):
    """Base class for all errors of the engine."""


class ClusterConnectionError(ApplyError):
    """Cluster is unreachable or the Kubeconfig is unusable."""


class UnknownKindError(ApplyError):
    """Object is not part of the supported resource kinds."""


class BundleError(ApplyError):
    """Bundle violates an invariant, eg duplicate resources."""


class ConvergenceTimeoutError(ApplyError):
    """Load balancers did not receive an address before the deadline."""


class ConvergenceCancelledError(ApplyError):
    """Caller cancelled the wait for load balancer addresses."""


class ClusterError(ApplyError):
    """K8s rejected a request or could not be reached."""

    def __init__(
        self,
        action: str,
        namespace: str,
        name: str,
        kind: str,
        reason: str,
        code: int = -1,
    ):
        self.action = action
        self.namespace = namespace
        self.name = name
        self.kind = kind
        self.reason = reason
        self.code = code
        super().__init__(self._message())

    def _message(self) -> str:
        if self.kind:
            return (
                f"could not {self.action} '{self.namespace}/{self.name}' "
                f"({self.kind}): {self.reason}"
            )
        return f"could not {self.action} '{self.namespace}/{self.name}': {self.reason}"


class SerializationError(ClusterError):
    """Manifest could not be encoded, decoded or diffed."""


class NotFoundError(ClusterError):
    """Resource does not exist (404)."""


class ConflictError(ClusterError):
    """Resource exists when it should not, or vanished during an update."""


class AlreadyExistsError(ConflictError):
    """K8s refused to create a resource because it already exists."""
