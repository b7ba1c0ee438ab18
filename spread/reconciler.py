import asyncio
import logging
from typing import Dict

import spread.diff
import spread.monitor
import spread.scheme
from spread.bundle import Bundle
from spread.cluster import KubeCluster
from spread.errors import AlreadyExistsError, ClusterConnectionError
from spread.models import ConvergenceRecord, Namespace

# Convenience.
logit = logging.getLogger("spread")


async def create_namespaces(cluster: KubeCluster, bundle: Bundle) -> None:
    """Create all Namespaces of the `bundle` unless they already exist."""
    for ns in bundle.objects_of("v1", "Namespace"):
        desc = spread.scheme.resolve(ns)
        try:
            await cluster.create(ns, desc)
        except AlreadyExistsError:
            logit.info("namespace exists", {"name": ns.name})


async def apply(
    cluster: KubeCluster | None,
    bundle: Bundle,
    update: bool,
    cleanup: bool,
    *,
    interval: float = spread.monitor.POLL_INTERVAL,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> Dict[str, ConvergenceRecord]:
    """Create or update all resources of the `bundle` in the cluster.

    Namespaces are created before everything else. All other resources are
    deployed in bundle order. If `update` is not set, an existing resource is
    an error. Otherwise existing resources are patched to match the bundle.

    If `cleanup` is set, the Pods of every pod controller that was patched will
    be deleted to force the controller to recreate them from the new template.

    Finally, wait for all load balancer Services to receive an address (see
    `spread.monitor.await_addresses` for `interval`, `timeout` and `cancel`).

    The first error aborts the deployment. There are no retries and no
    rollback, ie all changes made up to that point remain in effect.

    """
    if cluster is None or not cluster.connected:
        raise ClusterConnectionError("client not set up")

    await create_namespaces(cluster, bundle)

    for obj in bundle:
        # Namespaces already exist.
        if isinstance(obj, Namespace):
            continue

        desc = spread.scheme.resolve(obj)
        if not update:
            await cluster.create(obj, desc)
            continue

        _, action = await spread.diff.update(cluster, obj, desc)

        # Force pod controllers to replace their Pods with the new template.
        if cleanup and action == "patch" and obj.selector() is not None:
            await cluster.delete_pods(obj)

    services = bundle.objects_of("v1", "Service")
    return await spread.monitor.await_addresses(
        cluster, services, interval=interval, timeout=timeout, cancel=cancel
    )
