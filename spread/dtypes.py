"""Connection types for the K8s API with Pydantic models."""

from pathlib import Path

import httpx
from pydantic import BaseModel, ConfigDict


class K8sClientCert(BaseModel):
    model_config = ConfigDict(extra="forbid")

    crt: Path
    key: Path


class K8sConfig(BaseModel):
    """Everything we need to talk to the API server of one cluster."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    url: str = ""
    token: str = ""
    ca_cert: Path | None = None
    client_cert: K8sClientCert | None = None
    verify: bool = True

    # Name of the Kubeconfig context.
    name: str = ""

    # Only set once the connection details are complete.
    client: httpx.AsyncClient | None = None


class ConnectionParameters(BaseModel):
    """Timeouts in seconds for the HTTPX client."""

    model_config = ConfigDict(extra="forbid")

    connect: float = 5
    read: float = 30
    write: float = 30
    pool: float = 30
