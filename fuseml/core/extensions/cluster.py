"""
Cluster operations consumed by the extension orchestrator

The orchestrator only talks to the Cluster interface. KubectlCluster is the
default implementation, driving kubectl through a CommandRunner.

Namespace checks and creation are not atomic: a namespace created
concurrently by someone else is accepted as a benign race.
"""

import base64
import binascii
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import yaml

from fuseml.core.extensions.exceptions import ClusterError
from fuseml.core.extensions.models import GatewaySpec, NamespaceOwnership, RoleRule
from fuseml.core.extensions.runner import CommandRunner, combined_output

logger = logging.getLogger(__name__)

ISTIO_GATEWAY_CRD = "gateways.networking.istio.io"
ISTIO_API_VERSION = "networking.istio.io/v1beta1"


class Cluster(ABC):
    """Kubernetes capabilities required to install extensions"""

    @abstractmethod
    def namespace_exists(self, namespace: str) -> bool:
        ...

    @abstractmethod
    def namespace_owned(self, namespace: str) -> bool:
        """True if the namespace carries the ownership label"""

    @abstractmethod
    def label_namespace(self, namespace: str) -> None:
        """Mark the namespace as owned (idempotent)"""

    @abstractmethod
    def create_namespace(self, namespace: str) -> None:
        ...

    @abstractmethod
    def delete_namespace(self, namespace: str) -> None:
        ...

    @abstractmethod
    def get_secret(self, namespace: str, name: str) -> Dict[str, bytes]:
        """Decoded data of a secret"""

    @abstractmethod
    def has_gateway_support(self) -> bool:
        ...

    @abstractmethod
    def create_gateway(self, gateway: GatewaySpec, namespace: str, host: str) -> str:
        ...

    @abstractmethod
    def grant_workloads_role_rule(self, rule: RoleRule) -> None:
        """Add a rule to the role shared by workloads"""


def classify_namespace(cluster: Cluster, namespace: str) -> NamespaceOwnership:
    """Classify a namespace as absent, owned by us or foreign"""
    if not cluster.namespace_exists(namespace):
        return NamespaceOwnership.ABSENT
    if cluster.namespace_owned(namespace):
        return NamespaceOwnership.OWNED
    return NamespaceOwnership.FOREIGN


def _not_found(output: str) -> bool:
    return "NotFound" in output or "not found" in output


class KubectlCluster(Cluster):
    """Cluster implementation backed by the kubectl command line"""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        label_key: str = "fuseml.io/deployment",
        label_value: str = "true",
        workloads_namespace: str = "fuseml-workloads",
        workloads_role: str = "fuseml-workloads",
        timeout: int = 60
    ):
        self.runner = runner or CommandRunner()
        self.label_key = label_key
        self.label_value = label_value
        self.workloads_namespace = workloads_namespace
        self.workloads_role = workloads_role
        self.timeout = timeout

    def _kubectl(self, args: List[str], input_text: Optional[str] = None):
        return self.runner.run(["kubectl"] + args, timeout=self.timeout, input_text=input_text)

    def _kubectl_checked(self, args: List[str], action: str, input_text: Optional[str] = None) -> str:
        code, stdout, stderr = self._kubectl(args, input_text=input_text)
        if code != 0:
            output = combined_output(stdout, stderr)
            raise ClusterError(f"Failed to {action}: {output}", output=output)
        return stdout

    # ============================================
    # Namespaces
    # ============================================

    def namespace_exists(self, namespace: str) -> bool:
        code, stdout, stderr = self._kubectl(["get", "namespace", namespace, "--output", "name"])
        if code == 0:
            return True
        if _not_found(stderr):
            return False
        raise ClusterError(
            f"Failed to check if namespace {namespace} exists: {stderr.strip()}",
            output=combined_output(stdout, stderr)
        )

    def namespace_owned(self, namespace: str) -> bool:
        code, stdout, stderr = self._kubectl(
            ["get", "namespace", namespace, "--output", "jsonpath={.metadata.labels}"]
        )
        if code != 0:
            if _not_found(stderr):
                return False
            raise ClusterError(
                f"Failed to read labels of namespace {namespace}: {stderr.strip()}",
                output=combined_output(stdout, stderr)
            )
        try:
            labels = json.loads(stdout) if stdout.strip() else {}
        except ValueError as e:
            raise ClusterError(f"Unexpected labels of namespace {namespace}: {stdout}") from e
        return labels.get(self.label_key) == self.label_value

    def label_namespace(self, namespace: str) -> None:
        self._kubectl_checked(
            ["label", "namespace", namespace, f"{self.label_key}={self.label_value}", "--overwrite"],
            f"label namespace {namespace}"
        )

    def create_namespace(self, namespace: str) -> None:
        code, stdout, stderr = self._kubectl(["create", "namespace", namespace])
        if code == 0:
            return
        if "AlreadyExists" in stderr:
            logger.debug(f"Namespace {namespace} was created concurrently")
            return
        raise ClusterError(
            f"Failed to create namespace {namespace}: {stderr.strip()}",
            output=combined_output(stdout, stderr)
        )

    def delete_namespace(self, namespace: str) -> None:
        self._kubectl_checked(
            ["delete", "namespace", namespace, "--ignore-not-found"],
            f"delete namespace {namespace}"
        )

    # ============================================
    # Secrets
    # ============================================

    def get_secret(self, namespace: str, name: str) -> Dict[str, bytes]:
        stdout = self._kubectl_checked(
            ["get", "secret", name, "--namespace", namespace, "--output", "json"],
            f"get secret {namespace}/{name}"
        )
        try:
            secret = json.loads(stdout)
            return {
                key: base64.b64decode(value)
                for key, value in (secret.get("data") or {}).items()
            }
        except (ValueError, binascii.Error) as e:
            raise ClusterError(f"Unexpected content of secret {namespace}/{name}: {e}") from e

    # ============================================
    # Gateways, RBAC
    # ============================================

    def has_gateway_support(self) -> bool:
        code, _, _ = self._kubectl(["get", "crd", ISTIO_GATEWAY_CRD, "--output", "name"])
        return code == 0

    def create_gateway(self, gateway: GatewaySpec, namespace: str, host: str) -> str:
        gateway_name = f"{gateway.name}-gateway"
        resources = [{
            "apiVersion": ISTIO_API_VERSION,
            "kind": "Gateway",
            "metadata": {"name": gateway_name, "namespace": namespace},
            "spec": {
                "selector": {"istio": "ingressgateway"},
                "servers": [{
                    "port": {"number": 80, "name": "http", "protocol": "HTTP"},
                    "hosts": [host],
                }],
            },
        }]
        if gateway.service_host:
            destination = {"host": gateway.service_host}
            if gateway.port:
                destination["port"] = {"number": gateway.port}
            resources.append({
                "apiVersion": ISTIO_API_VERSION,
                "kind": "VirtualService",
                "metadata": {"name": gateway.name, "namespace": namespace},
                "spec": {
                    "hosts": [host],
                    "gateways": [gateway_name],
                    "http": [{"route": [{"destination": destination}]}],
                },
            })

        return self._kubectl_checked(
            ["apply", "--filename", "-"],
            f"create gateway {gateway.name}",
            input_text=yaml.safe_dump_all(resources, sort_keys=False)
        )

    def grant_workloads_role_rule(self, rule: RoleRule) -> None:
        stdout = self._kubectl_checked(
            ["get", "role", self.workloads_role, "--namespace", self.workloads_namespace, "--output", "json"],
            f"get role {self.workloads_role}"
        )
        try:
            role = json.loads(stdout)
        except ValueError as e:
            raise ClusterError(f"Unexpected content of role {self.workloads_role}: {e}", output=stdout) from e
        new_rule = {"apiGroups": rule.api_groups, "resources": rule.resources, "verbs": rule.verbs}
        rules = role.setdefault("rules", [])
        if new_rule in rules:
            logger.debug(f"Role {self.workloads_role} already grants {new_rule}")
            return
        rules.append(new_rule)
        self._kubectl_checked(
            ["replace", "--filename", "-"],
            f"update role {self.workloads_role}",
            input_text=json.dumps(role)
        )
