import asyncio
import json
import logging
import ssl
from pathlib import Path
from typing import Any, Dict, List, Tuple

import httpx
import kubernetes.client
import kubernetes.config
from kubernetes.config.config_exception import ConfigException

from spread.dtypes import ConnectionParameters, K8sClientCert, K8sConfig

# Define the exceptions that indicate a network problem.
WEB_EXCEPTIONS = (httpx.RequestError, ssl.SSLError, asyncio.TimeoutError)


# Convenience: global logger instance to avoid repetitive code.
logit = logging.getLogger("spread")


async def request(
    k8sconfig: K8sConfig,
    method: str,
    url: str,
    payload: dict | list | None = None,
    headers: dict | None = None,
    params: Dict[str, str] | None = None,
) -> Tuple[dict, int, bool]:
    """Return response of web request made with `client`.

    Inputs:
        k8sconfig: K8sConfig
            Must contain an HttpX client with correct K8s certificates.
        url: str
            Eg `/api/v1/namespaces`
        payload: dict
            Anything that can be JSON encoded, usually a K8s manifest.
        headers: dict
            Request headers. These will *not* replace the existing request
            headers dictionary (eg the access tokens), but augment them.
        params: dict
            URL query parameters, eg `{"labelSelector": "app=demo"}`.

    Returns:
        (dict, int, bool): the JSON response, the HTTP status code and whether
        the request failed.

    """
    # Make the HTTP request. No retries.
    try:
        ret = await k8sconfig.client.request(
            method, url, json=payload, headers=headers, params=params
        )
    except WEB_EXCEPTIONS as err:
        logit.error(f"Giving up - {k8sconfig.name} - {err} - {method} {url}")
        return ({}, -1, True)

    # Decode the JSON response and abort if that is impossible.
    try:
        response = json.loads(ret.text)
    except json.decoder.JSONDecodeError as err:
        msg = (
            f"JSON error - {k8sconfig.name} - "
            f"{err.msg} in line {err.lineno} column {err.colno}",
            "-" * 80 + "\n" + err.doc + "\n" + "-" * 80,
        )
        logit.error(str.join("\n", msg))
        return ({}, ret.status_code, True)

    # Log the entire request in debug mode.
    logit.debug(
        f"{method} {ret.status_code} {ret.url}\n"
        f"Headers: {headers}\n"
        f"Payload: {payload}\n"
        f"Response: {response}\n"
    )
    return (response, ret.status_code, False)


async def delete(
    k8sconfig: K8sConfig, url: str, payload: dict | None = None
) -> Tuple[dict, int, bool]:
    """Make DELETE requests to K8s (see `request`)."""
    resp, code, err = await request(k8sconfig, "DELETE", url, payload, headers=None)
    if err or code not in (200, 202):
        logit.debug(f"{code} - DELETE - {url} - {resp}")
        return (resp, code, True)
    return (resp, code, False)


async def get(
    k8sconfig: K8sConfig, url: str, params: Dict[str, str] | None = None
) -> Tuple[dict, int, bool]:
    """Make GET requests to K8s (see `request`)."""
    resp, code, err = await request(
        k8sconfig, "GET", url, payload=None, headers=None, params=params
    )
    if err or code != 200:
        logit.debug(f"{code} - GET - {url} - {resp}")
        return (resp, code, True)
    return (resp, code, False)


async def patch(
    k8sconfig: K8sConfig, url: str, payload: List[Dict[str, Any]]
) -> Tuple[dict, int, bool]:
    """Make JSON PATCH requests to K8s (see `request`)."""
    headers = {"Content-Type": "application/json-patch+json"}
    resp, code, err = await request(k8sconfig, "PATCH", url, payload, headers)
    if err or code != 200:
        logit.debug(f"{code} - PATCH - {url} - {resp}")
        return (resp, code, True)
    return (resp, code, False)


async def post(k8sconfig: K8sConfig, url: str, payload: dict) -> Tuple[dict, int, bool]:
    """Make POST requests to K8s (see `request`)."""
    resp, code, err = await request(k8sconfig, "POST", url, payload, headers=None)
    err = (code != 201) or err
    if err:
        logit.debug(f"{code} - POST - {url} - {resp}")
        return (resp, code, True)
    return (resp, code, False)


def status_reason(resp: dict) -> Tuple[str, str]:
    """Return the `reason` and `message` of a K8s `Status` response."""
    if not isinstance(resp, dict):
        return "", ""
    return str(resp.get("reason", "")), str(resp.get("message", ""))


def load_kubeconfig(kubeconfig: Path | None, context: str) -> Tuple[K8sConfig, bool]:
    """Return the connection details for `context` in `kubeconfig`.

    An empty `context` selects the current context of the Kubeconfig. A
    `kubeconfig` of `None` uses the default location `kubectl` uses.

    """
    fname = str(kubeconfig.expanduser()) if kubeconfig else None
    meta_log = {"kubeconfig": fname, "context": context}

    # Determine the context name and ensure it exists.
    try:
        contexts, active = kubernetes.config.list_kube_config_contexts(fname)
    except (ConfigException, OSError, KeyError, TypeError, ValueError) as err:
        meta_log["reason"] = str(err)
        logit.error("could not load Kubeconfig", meta_log)
        return K8sConfig(), True

    name = context or (active or {}).get("name", "")
    if name not in {_["name"] for _ in contexts}:
        logit.error(f"context '{name}' does not exist", meta_log)
        return K8sConfig(), True

    # Let the K8s client library resolve certificates, tokens and auth plugins.
    conf = kubernetes.client.Configuration()
    try:
        kubernetes.config.load_kube_config(
            config_file=fname,
            context=name,
            client_configuration=conf,
            persist_config=False,
        )
    except (ConfigException, OSError, KeyError, TypeError, ValueError) as err:
        meta_log["reason"] = str(err)
        logit.error("could not access Kubeconfig", meta_log)
        return K8sConfig(), True

    client_cert = None
    if conf.cert_file and conf.key_file:
        client_cert = K8sClientCert(crt=Path(conf.cert_file), key=Path(conf.key_file))

    # Recent client versions store the token under "BearerToken".
    token = conf.get_api_key_with_prefix("BearerToken", alias="authorization")
    cfg = K8sConfig(
        url=conf.host,
        token=token or "",
        ca_cert=Path(conf.ssl_ca_cert) if conf.ssl_ca_cert else None,
        client_cert=client_cert,
        verify=bool(conf.verify_ssl),
        name=name,
    )
    return cfg, False


def create_httpx_client(
    k8sconfig: K8sConfig, params: ConnectionParameters
) -> Tuple[K8sConfig, bool]:
    """Return a copy of `k8sconfig` with an HTTPX client for its cluster."""
    try:
        ctx = ssl.create_default_context(
            cafile=str(k8sconfig.ca_cert) if k8sconfig.ca_cert else None
        )
        if not k8sconfig.verify:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        if k8sconfig.client_cert:
            ctx.load_cert_chain(
                str(k8sconfig.client_cert.crt), str(k8sconfig.client_cert.key)
            )
    except (ssl.SSLError, OSError) as err:
        logit.error("cannot create HTTP client", {"reason": str(err)})
        return K8sConfig(), True

    headers = {"authorization": k8sconfig.token} if k8sconfig.token else {}
    timeout = httpx.Timeout(
        connect=params.connect, read=params.read, write=params.write, pool=params.pool
    )
    client = httpx.AsyncClient(
        base_url=k8sconfig.url, verify=ctx, headers=headers, timeout=timeout
    )
    return k8sconfig.model_copy(update={"client": client}), False


def create_cluster_config(
    kubeconfig: Path | None, context: str
) -> Tuple[K8sConfig, bool]:
    # Parse Kubeconfig file.
    cfg, err = load_kubeconfig(kubeconfig, context)
    if err:
        return K8sConfig(), True

    # Create HTTPX client.
    params = ConnectionParameters()
    cfg, err = create_httpx_client(cfg, params)
    if err:
        return K8sConfig(), True

    return cfg, False
