import json

import pytest
import respx
from httpx import Response

import spread.reconciler
from spread.bundle import Bundle
from spread.cluster import KubeCluster
from spread.dtypes import K8sConfig
from spread.errors import AlreadyExistsError, ClusterConnectionError, ClusterError

from .conftest import add_server_defaults, k8s_status, make_live, make_manifest

NS_URL = "/api/v1/namespaces"
SVC_URL = "/api/v1/namespaces/default/services"
RC_URL = "/api/v1/namespaces/default/replicationcontrollers"
PODS_URL = "/api/v1/namespaces/default/pods"


def requests(respx_mock):
    """Return the (method, path) of all requests in the order they were made."""
    return [(_.request.method, _.request.url.path) for _ in respx_mock.calls]


def rc_manifest(image: str) -> dict:
    labels = {"app": "demo"}
    spec = {
        "template": {
            "metadata": {"labels": labels},
            "spec": {"containers": [{"name": "demo", "image": image}]},
        },
    }
    return make_manifest("ReplicationController", "demo", spec=spec)


def rc_live(image: str, rv: str = "100") -> dict:
    """Return the RC as K8s would report it, ie with a defaulted selector."""
    live = make_live(rc_manifest(image), rv)
    live["spec"].update(replicas=1, selector={"app": "demo"})
    return live


class TestApply:
    async def test_no_cluster(self):
        bundle = Bundle.from_manifests([make_manifest("ConfigMap", "demo")])
        with pytest.raises(ClusterConnectionError):
            await spread.reconciler.apply(None, bundle, update=True, cleanup=False)

        # Kubeconfig errors produce a configuration without HTTP client.
        cluster = KubeCluster(K8sConfig(), "kind-kind")
        assert not cluster.connected
        with pytest.raises(ClusterConnectionError):
            await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)

    async def test_namespaces_first(self, respx_mock, cluster: KubeCluster):
        """Create the namespaces before all other resources."""
        bundle = Bundle.from_manifests(
            [
                make_manifest("ConfigMap", "demo", "foo"),
                make_manifest("Namespace", "foo", ""),
                make_manifest("Namespace", "bar", ""),
            ]
        )
        respx.post(NS_URL).side_effect = [
            Response(201, json=make_live(make_manifest("Namespace", "foo", ""))),
            k8s_status(409, "AlreadyExists"),
        ]
        cm_url = "/api/v1/namespaces/foo/configmaps"
        respx.post(cm_url).return_value = Response(
            201, json=make_live(make_manifest("ConfigMap", "demo", "foo"))
        )

        ret = await spread.reconciler.apply(
            cluster, bundle, update=False, cleanup=False
        )
        assert ret == {}
        assert requests(respx_mock) == [
            ("POST", NS_URL),
            ("POST", NS_URL),
            ("POST", cm_url),
        ]

    async def test_namespace_err(self, respx_mock, cluster: KubeCluster):
        """Abort if a Namespace cannot be created for any other reason."""
        bundle = Bundle.from_manifests(
            [
                make_manifest("Namespace", "foo", ""),
                make_manifest("ConfigMap", "demo", "foo"),
            ]
        )
        respx.post(NS_URL).return_value = k8s_status(403, "Forbidden")
        m_cm = respx.post("/api/v1/namespaces/foo/configmaps")

        with pytest.raises(ClusterError) as err:
            await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)
        assert type(err.value) is ClusterError
        assert (err.value.action, err.value.code) == ("create", 403)
        assert not m_cm.called
        assert requests(respx_mock) == [("POST", NS_URL)]

    async def test_create_conflict(self, respx_mock, cluster: KubeCluster):
        """Abort on the first resource that already exists."""
        bundle = Bundle.from_manifests(
            [make_manifest("Service", "demo"), make_manifest("ConfigMap", "demo")]
        )
        respx.post(SVC_URL).return_value = k8s_status(409, "AlreadyExists")
        m_cm = respx.post("/api/v1/namespaces/default/configmaps")

        with pytest.raises(AlreadyExistsError) as err:
            await spread.reconciler.apply(cluster, bundle, update=False, cleanup=False)
        assert err.value.kind == "Service"
        assert not m_cm.called
        assert requests(respx_mock) == [("POST", SVC_URL)]

    async def test_update_idempotent(self, cluster: KubeCluster):
        """Apply the same bundle twice. Only the first run must patch."""
        desired = make_manifest("Service", "demo", spec={"ports": [{"port": 80}]})
        old = make_manifest("Service", "demo", spec={"ports": [{"port": 8080}]})
        for manifest in (desired, old):
            manifest["spec"].update(type="ClusterIP", clusterIP="10.0.0.1")
        del desired["spec"]["type"]

        new_live = make_live(desired, rv="101")
        new_live["spec"]["type"] = "ClusterIP"

        m_get = respx.get(f"{SVC_URL}/demo")
        m_get.side_effect = [
            Response(200, json=make_live(old)),
            Response(200, json=new_live),
        ]
        m_patch = respx.patch(f"{SVC_URL}/demo")
        m_patch.return_value = Response(200, json=new_live)

        bundle = Bundle.from_manifests([desired])
        ret = await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)
        assert m_patch.call_count == 1
        assert ret["default/demo"].assigned is False

        ops = json.loads(m_patch.calls.last.request.content)
        assert ops == [
            {"op": "test", "path": "/metadata/resourceVersion", "value": "100"},
            {"op": "replace", "path": "/spec/ports/0/port", "value": 80},
        ]

        # Second run must not modify anything.
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)
        assert m_get.call_count == 2
        assert m_patch.call_count == 1

    async def test_update_immutable(self, cluster: KubeCluster):
        """Never attempt to change the cluster IP of a Service."""
        spec = {"clusterIP": "10.0.0.1", "ports": [{"port": 80}]}
        live = make_live(make_manifest("Service", "demo", spec=spec))
        desired = make_manifest(
            "Service", "demo", spec={"clusterIP": "10.9.9.9", "ports": [{"port": 81}]}
        )

        respx.get(f"{SVC_URL}/demo").return_value = Response(200, json=live)
        m_patch = respx.patch(f"{SVC_URL}/demo")
        m_patch.return_value = Response(200, json=live)

        bundle = Bundle.from_manifests([desired])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)

        ops = json.loads(m_patch.calls.last.request.content)
        assert all(not _["path"].startswith("/spec/clusterIP") for _ in ops)
        assert {"op": "replace", "path": "/spec/ports/0/port", "value": 81} in ops

    async def test_update_create_missing(self, cluster: KubeCluster):
        respx.get(f"{SVC_URL}/demo").return_value = k8s_status(404, "NotFound")
        m_post = respx.post(SVC_URL)
        live = make_live(make_manifest("Service", "demo"))
        m_post.return_value = Response(201, json=live)

        bundle = Bundle.from_manifests([make_manifest("Service", "demo")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)
        assert m_post.call_count == 1


class TestCleanup:
    def setup_pods(self):
        pods = {"items": [make_live(make_manifest("Pod", "demo-abcde"))]}
        respx.get(PODS_URL).return_value = Response(200, json=pods)
        respx.delete(f"{PODS_URL}/demo-abcde").return_value = Response(200, json={})

    async def test_delete_pods_after_patch(self, respx_mock, cluster: KubeCluster):
        self.setup_pods()
        respx.get(f"{RC_URL}/demo").return_value = Response(200, json=rc_live("v1"))
        respx.patch(f"{RC_URL}/demo").return_value = Response(
            200, json=rc_live("v2", rv="101")
        )

        bundle = Bundle.from_manifests([rc_manifest("v2")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=True)
        assert requests(respx_mock) == [
            ("GET", f"{RC_URL}/demo"),
            ("PATCH", f"{RC_URL}/demo"),
            ("GET", PODS_URL),
            ("DELETE", f"{PODS_URL}/demo-abcde"),
        ]
        params = respx_mock.calls[2].request.url.params
        assert params["labelSelector"] == "app=demo"

    async def test_no_cleanup(self, respx_mock, cluster: KubeCluster):
        """Keep the Pods if the controller is unchanged or cleanup is disabled."""
        self.setup_pods()
        m_get = respx.get(f"{RC_URL}/demo")
        m_get.return_value = Response(200, json=rc_live("v1"))
        m_patch = respx.patch(f"{RC_URL}/demo")
        m_patch.return_value = Response(200, json=rc_live("v2", rv="101"))

        # Unchanged controller.
        bundle = Bundle.from_manifests([rc_manifest("v1")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=True)
        assert requests(respx_mock) == [("GET", f"{RC_URL}/demo")]

        # Modified controller but cleanup disabled.
        bundle = Bundle.from_manifests([rc_manifest("v2")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=False)
        assert m_patch.call_count == 1
        assert all(_.request.url.path != PODS_URL for _ in respx_mock.calls)

    async def test_no_cleanup_server_defaults(self, respx_mock, cluster: KubeCluster):
        """Defaults K8s added to the controller are no reason to replace its Pods."""
        self.setup_pods()
        live = add_server_defaults(rc_live("v1"))
        respx.get(f"{RC_URL}/demo").return_value = Response(200, json=live)
        m_patch = respx.patch(f"{RC_URL}/demo")

        bundle = Bundle.from_manifests([rc_manifest("v1")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=True)
        assert not m_patch.called
        assert requests(respx_mock) == [("GET", f"{RC_URL}/demo")]

    async def test_delete_pods_err(self, respx_mock, cluster: KubeCluster):
        """Abort if a Pod cannot be deleted and leave the remaining resources."""
        pods = {"items": [make_live(make_manifest("Pod", "demo-abcde"))]}
        respx.get(PODS_URL).return_value = Response(200, json=pods)
        respx.delete(f"{PODS_URL}/demo-abcde").return_value = k8s_status(
            500, "InternalError"
        )
        respx.get(f"{RC_URL}/demo").return_value = Response(200, json=rc_live("v1"))
        respx.patch(f"{RC_URL}/demo").return_value = Response(
            200, json=rc_live("v2", rv="101")
        )
        m_cm = respx.get("/api/v1/namespaces/default/configmaps/demo")

        bundle = Bundle.from_manifests(
            [rc_manifest("v2"), make_manifest("ConfigMap", "demo")]
        )
        with pytest.raises(ClusterError) as err:
            await spread.reconciler.apply(cluster, bundle, update=True, cleanup=True)
        assert (err.value.action, err.value.kind) == ("delete", "Pod")
        assert not m_cm.called
        assert requests(respx_mock) == [
            ("GET", f"{RC_URL}/demo"),
            ("PATCH", f"{RC_URL}/demo"),
            ("GET", PODS_URL),
            ("DELETE", f"{PODS_URL}/demo-abcde"),
        ]

    async def test_no_cleanup_on_create(self, respx_mock, cluster: KubeCluster):
        self.setup_pods()
        respx.get(f"{RC_URL}/demo").return_value = k8s_status(404, "NotFound")
        respx.post(RC_URL).return_value = Response(201, json=rc_live("v1"))

        bundle = Bundle.from_manifests([rc_manifest("v1")])
        await spread.reconciler.apply(cluster, bundle, update=True, cleanup=True)
        assert requests(respx_mock) == [("GET", f"{RC_URL}/demo"), ("POST", RC_URL)]
