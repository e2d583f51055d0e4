"""Tests for the kubectl backed cluster."""

import base64
import json

import pytest
import yaml

from fuseml.core.extensions.cluster import KubectlCluster, classify_namespace
from fuseml.core.extensions.exceptions import ClusterError
from fuseml.core.extensions.models import GatewaySpec, NamespaceOwnership, RoleRule


class TestKubectlCluster:
    """Test suite for KubectlCluster."""

    @pytest.fixture(autouse=True)
    def _cluster(self, runner):
        self.runner = runner
        self.cluster = KubectlCluster(runner=runner)

    def test_namespace_exists(self):
        assert self.cluster.namespace_exists("demo") is True
        assert self.runner.calls[0] == ["kubectl", "get", "namespace", "demo", "--output", "name"]

    def test_namespace_not_found(self):
        self.runner.respond(["kubectl", "get", "namespace"], code=1,
                            stderr='Error from server (NotFound): namespaces "demo" not found')
        assert self.cluster.namespace_exists("demo") is False

    def test_namespace_query_failure(self):
        self.runner.respond(["kubectl", "get", "namespace"], code=1, stderr="Unable to connect to the server")
        with pytest.raises(ClusterError, match="Unable to connect"):
            self.cluster.namespace_exists("demo")

    def test_namespace_owned(self):
        self.runner.respond(["kubectl", "get", "namespace"], stdout='{"fuseml.io/deployment":"true"}')
        assert self.cluster.namespace_owned("demo") is True

        self.runner.respond(["kubectl", "get", "namespace"], stdout="")
        assert self.cluster.namespace_owned("demo") is False

    def test_classify_namespace(self):
        self.runner.respond(["kubectl", "get", "namespace"], stdout='{"team":"data"}')
        assert classify_namespace(self.cluster, "data") == NamespaceOwnership.FOREIGN

    def test_label_namespace(self):
        self.cluster.label_namespace("demo")
        assert self.runner.calls == [[
            "kubectl", "label", "namespace", "demo", "fuseml.io/deployment=true", "--overwrite"
        ]]

    def test_create_namespace_tolerates_race(self):
        self.runner.respond(["kubectl", "create"], code=1,
                            stderr='Error from server (AlreadyExists): namespaces "demo" already exists')
        self.cluster.create_namespace("demo")

    def test_create_namespace_failure(self):
        self.runner.respond(["kubectl", "create"], code=1, stderr="forbidden")
        with pytest.raises(ClusterError, match="forbidden"):
            self.cluster.create_namespace("demo")

    def test_delete_namespace(self):
        self.cluster.delete_namespace("demo")
        assert self.runner.calls == [["kubectl", "delete", "namespace", "demo", "--ignore-not-found"]]

    def test_get_secret(self):
        secret = {"data": {"accesskey": base64.b64encode(b"admin").decode()}}
        self.runner.respond(["kubectl", "get", "secret"], stdout=json.dumps(secret))

        assert self.cluster.get_secret("fuseml-workloads", "minio-secret") == {"accesskey": b"admin"}
        assert self.runner.calls[0][:6] == [
            "kubectl", "get", "secret", "minio-secret", "--namespace", "fuseml-workloads"
        ]

    def test_get_missing_secret(self):
        self.runner.respond(["kubectl", "get", "secret"], code=1, stderr='secrets "x" not found')
        with pytest.raises(ClusterError, match="not found"):
            self.cluster.get_secret("ns", "x")

    def test_gateway_support(self):
        assert self.cluster.has_gateway_support() is True
        self.runner.respond(["kubectl", "get", "crd"], code=1, stderr="NotFound")
        assert self.cluster.has_gateway_support() is False

    def test_create_gateway_with_virtual_service(self):
        gateway = GatewaySpec(name="mlflow", service_host="mlflow.mlflow.svc.cluster.local", port=5000)

        self.cluster.create_gateway(gateway, "mlflow", "mlflow.example.io")

        assert self.runner.calls[0] == ["kubectl", "apply", "--filename", "-"]
        resources = list(yaml.safe_load_all(self.runner.inputs[0]))
        assert [r["kind"] for r in resources] == ["Gateway", "VirtualService"]
        assert resources[0]["metadata"]["name"] == "mlflow-gateway"
        assert resources[0]["spec"]["servers"][0]["hosts"] == ["mlflow.example.io"]
        destination = resources[1]["spec"]["http"][0]["route"][0]["destination"]
        assert destination == {"host": "mlflow.mlflow.svc.cluster.local", "port": {"number": 5000}}

    def test_create_gateway_only(self):
        self.cluster.create_gateway(GatewaySpec(name="seldon", host_prefix="*.seldon"), "seldon-system", "*.seldon.example.io")
        resources = list(yaml.safe_load_all(self.runner.inputs[0]))
        assert [r["kind"] for r in resources] == ["Gateway"]

    def test_grant_workloads_role_rule(self):
        role = {"kind": "Role", "metadata": {"name": "fuseml-workloads"}, "rules": []}
        self.runner.respond(["kubectl", "get", "role"], stdout=json.dumps(role))

        self.cluster.grant_workloads_role_rule(RoleRule(api_groups=[""], resources=["pods"], verbs=["get"]))

        assert self.runner.calls[1] == ["kubectl", "replace", "--filename", "-"]
        updated = json.loads(self.runner.inputs[1])
        assert updated["rules"] == [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}]

    def test_grant_with_unreadable_role(self):
        self.runner.respond(["kubectl", "get", "role"], stdout="not json")

        with pytest.raises(ClusterError, match="Unexpected content of role fuseml-workloads"):
            self.cluster.grant_workloads_role_rule(RoleRule(api_groups=[""], resources=["pods"], verbs=["get"]))

        assert len(self.runner.calls) == 1

    def test_grant_existing_rule_is_noop(self):
        role = {"kind": "Role", "rules": [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}]}
        self.runner.respond(["kubectl", "get", "role"], stdout=json.dumps(role))

        self.cluster.grant_workloads_role_rule(RoleRule(api_groups=[""], resources=["pods"], verbs=["get"]))

        assert len(self.runner.calls) == 1
