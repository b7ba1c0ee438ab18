"""Wait for K8s to assign external addresses to load balancer Services.

K8s assigns those addresses asynchronously, sometimes minutes after the
Service was created. We therefore poll every pending Service until all of
them have an address, the caller supplied deadline expires or the caller sets
the cancel event.

"""

import asyncio
import logging
from typing import Dict, Sequence
from urllib.parse import urlparse

import spread.scheme
from spread.cluster import KubeCluster
from spread.errors import (
    ClusterError,
    ConvergenceCancelledError,
    ConvergenceTimeoutError,
)
from spread.models import ConvergenceRecord, K8sResource, Service

# Pause between two polling rounds.
POLL_INTERVAL = 0.25

# Convenience.
logit = logging.getLogger("spread")


async def _sleep(delay: float):
    """This trivial function exists to mock out the `sleep` call during tests."""
    await asyncio.sleep(delay)


def format_ingress(hostname: str, ip: str) -> str:
    """Return "hostname (ip)", "hostname" or "ip", depending on what is set."""
    if hostname and ip:
        return f"{hostname} ({ip})"
    return hostname or ip


def record_localkube(
    cluster: KubeCluster, live: Service, record: ConvergenceRecord
) -> None:
    # Development clusters have no load balancers. The node ports are the
    # closest equivalent and reachable on the node itself.
    host = urlparse(cluster.k8sconfig.url).hostname or "localhost"
    record.assigned = True
    for port in live.spec.ports:
        print(
            f"'{record.namespace}/{record.name}' - {port.name} "
            f"available on localkube host port:\t {port.nodePort}"
        )
        record.addresses.append((host, port.nodePort))


def record_ingress(live: Service, record: ConvergenceRecord) -> None:
    for ingress in live.status.loadBalancer.ingress:
        record.assigned = True

        host = format_ingress(ingress.hostname, ingress.ip)
        print(f"Service '{record.namespace}/{record.name}' available at: \t{host}")
        for port in live.spec.ports:
            record.addresses.append((ingress.hostname or ingress.ip, port.port))


async def poll(
    cluster: KubeCluster,
    services: Sequence[Service],
    records: Dict[str, ConvergenceRecord],
    interval: float,
    cancel: asyncio.Event | None,
) -> None:
    desc = spread.scheme.resolve_kind("v1", "Service")
    pending = [_ for _ in services if _.needs_load_balancer()]

    first = True
    while True:
        # Done once all load balancers have an address.
        pending = [_ for _ in pending if not records[key(_)].assigned]
        if len(pending) == 0:
            return

        if cancel is not None and cancel.is_set():
            raise ConvergenceCancelledError(
                f"cancelled while waiting for {len(pending)} load balancer(s)"
            )

        if first:
            print("Waiting for load balancer deployment...")
            first = False

        for svc in pending:
            live = await cluster.get(svc.namespace, svc.name, False, desc)
            if not isinstance(live, Service):
                reason = "response is not a Service"
                raise ClusterError("get", svc.namespace, svc.name, "Service", reason)

            record = records[key(svc)]
            if cluster.localkube:
                record_localkube(cluster, live, record)
            else:
                record_ingress(live, record)

        # Do not flood the API server.
        await _sleep(interval)


def key(svc: K8sResource) -> str:
    return f"{svc.namespace or 'default'}/{svc.name}"


async def await_addresses(
    cluster: KubeCluster,
    services: Sequence[K8sResource],
    *,
    interval: float = POLL_INTERVAL,
    timeout: float | None = None,
    cancel: asyncio.Event | None = None,
) -> Dict[str, ConvergenceRecord]:
    """Block until every load balancer Service has an external address.

    Print each address once K8s assigns it. A `timeout` of `None` waits
    forever. Setting the `cancel` event aborts the wait after the current
    polling round.

    Returns:
        Dict[str, ConvergenceRecord]: the final state of every Service, keyed
        by "namespace/name".

    """
    if len(services) == 0:
        return {}

    svcs = [_ for _ in services if isinstance(_, Service)]
    records = {
        key(_): ConvergenceRecord(namespace=_.namespace or "default", name=_.name)
        for _ in svcs
    }

    try:
        async with asyncio.timeout(timeout):
            await poll(cluster, svcs, records, interval, cancel)
    except TimeoutError:
        missing = [k for k, v in records.items() if not v.assigned]
        logit.error("load balancer timeout", {"services": missing})
        raise ConvergenceTimeoutError(
            f"no address for {str.join(', ', missing)} after {timeout}s"
        )
    return records
