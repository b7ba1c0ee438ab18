import logging
import os
from pathlib import Path
from typing import Tuple

from spread.models import DeployConfig

# Convenience.
logit = logging.getLogger("spread")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _flag(name: str, default: str) -> bool:
    value = os.getenv(name, default).strip().lower()
    if value not in ("true", "false", "1", "0", "yes", "no"):
        raise ValueError(name)
    return value in ("true", "1", "yes")


def _seconds(name: str, default: str) -> float | None:
    """Return the non-negative number of seconds in `name`, if there is one."""
    value = os.getenv(name, default).strip()
    if value == "":
        return None
    try:
        seconds = float(value)
    except ValueError:
        raise ValueError(name)
    if seconds < 0:
        raise ValueError(name)
    return seconds


def compile_config() -> Tuple[DeployConfig, bool]:
    """Return the deployment configuration from the environment variables."""
    try:
        contexts = os.getenv("SPREAD_LOCAL_CONTEXTS", "localkube,minikube")
        loglevel = os.getenv("SPREAD_LOGLEVEL", "warning")
        if loglevel.upper() not in LOG_LEVELS:
            raise ValueError("SPREAD_LOGLEVEL")

        interval = _seconds("SPREAD_POLL_INTERVAL", "0.25")
        if interval is None:
            raise ValueError("SPREAD_POLL_INTERVAL")

        cfg = DeployConfig(
            kubeconfig=Path(os.getenv("KUBECONFIG", "~/.kube/config")).expanduser(),
            kubecontext=os.getenv("KUBECONTEXT", ""),
            loglevel=loglevel,
            update=_flag("SPREAD_UPDATE", "true"),
            delete_pods=_flag("SPREAD_DELETE_PODS", "false"),
            poll_interval=interval,
            timeout=_seconds("SPREAD_TIMEOUT", ""),
            local_contexts=[_.strip() for _ in contexts.split(",") if _.strip()],
        )
        return cfg, False
    except (KeyError, ValueError) as e:
        logit.error("invalid environment variables", {"names": tuple(e.args)})
        return DeployConfig(kubeconfig=Path("")), True
