import asyncio
import logging
from pathlib import Path
from typing import Dict, Sequence

import yaml

import spread.config
import spread.logstreams
import spread.reconciler
from spread.bundle import load_bundle
from spread.cluster import create_cluster
from spread.errors import ApplyError
from spread.models import ConvergenceRecord, DeployConfig

# Convenience.
logit = logging.getLogger("spread")


async def main(
    cfg: DeployConfig,
    paths: Sequence[Path],
    cancel: asyncio.Event | None = None,
) -> Dict[str, ConvergenceRecord]:
    """Deploy the manifests in the YAML files `paths` to the configured cluster."""
    bundle = load_bundle(paths)
    logit.info("loaded bundle", {"resources": len(bundle)})

    cluster = create_cluster(cfg.kubeconfig, cfg.kubecontext, cfg.local_contexts)
    async with cluster:
        return await spread.reconciler.apply(
            cluster,
            bundle,
            update=cfg.update,
            cleanup=cfg.delete_pods,
            interval=cfg.poll_interval,
            timeout=cfg.timeout,
            cancel=cancel,
        )


def cli(args: Sequence[str]) -> int:
    """Deploy the YAML files in `args` and return the process exit code."""
    # Report configuration problems in the usual log format.
    spread.logstreams.setup("warning")
    cfg, err = spread.config.compile_config()
    if err:
        print("error: invalid environment variables (see log for details)")
        return 1

    if len(args) == 0:
        print("usage: python -m spread FILE [FILE...]")
        return 1

    spread.logstreams.setup(cfg.loglevel)
    try:
        asyncio.run(main(cfg, [Path(_) for _ in args]))
    except (ApplyError, OSError, yaml.YAMLError) as err:
        print(f"error: {err}")
        return 1
    except KeyboardInterrupt:
        print("User abort")
        return 1
    return 0
