"""Shared fakes for the extension tests"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
import yaml

from fuseml.core.config import ExtensionManagerConfig
from fuseml.core.extensions.cluster import Cluster
from fuseml.core.extensions.exceptions import ClusterError


class RecordingRunner:
    """CommandRunner stand-in recording every command; responses are matched by argument prefix"""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.cwds: List[Optional[Path]] = []
        self.inputs: List[Optional[str]] = []
        self._rules: List[Tuple[Tuple[str, ...], Tuple[int, str, str]]] = []

    def respond(self, prefix, code: int = 0, stdout: str = "", stderr: str = ""):
        self._rules.append((tuple(prefix), (code, stdout, stderr)))

    def run(self, args, cwd=None, timeout=None, input_text=None):
        self.calls.append(list(args))
        self.cwds.append(cwd)
        self.inputs.append(input_text)
        # latest matching rule wins
        for prefix, result in reversed(self._rules):
            if tuple(args[:len(prefix)]) == prefix:
                return result
        return 0, "", ""

    def commands(self, *prefix) -> List[List[str]]:
        return [call for call in self.calls if tuple(call[:len(prefix)]) == prefix]


class FakeCluster(Cluster):
    """In-memory cluster: namespaces map to their ownership flag"""

    def __init__(self, namespaces: Optional[Dict[str, bool]] = None, secrets=None, gateway_support: bool = False):
        self.namespaces = dict(namespaces or {})
        self.secrets = dict(secrets or {})
        self.gateway_support = gateway_support
        self.mutations: List[tuple] = []
        self.secret_reads: List[Tuple[str, str]] = []

    def namespace_exists(self, namespace):
        return namespace in self.namespaces

    def namespace_owned(self, namespace):
        return self.namespaces.get(namespace, False)

    def label_namespace(self, namespace):
        self.mutations.append(("label", namespace))
        self.namespaces[namespace] = True

    def create_namespace(self, namespace):
        self.mutations.append(("create", namespace))
        self.namespaces.setdefault(namespace, False)

    def delete_namespace(self, namespace):
        self.mutations.append(("delete", namespace))
        self.namespaces.pop(namespace, None)

    def get_secret(self, namespace, name):
        self.secret_reads.append((namespace, name))
        if (namespace, name) not in self.secrets:
            raise ClusterError(f'secrets "{name}" not found')
        return self.secrets[(namespace, name)]

    def has_gateway_support(self):
        return self.gateway_support

    def create_gateway(self, gateway, namespace, host):
        self.mutations.append(("gateway", gateway.name, namespace, host))
        return ""

    def grant_workloads_role_rule(self, rule):
        self.mutations.append(("role_rule", tuple(rule.resources), tuple(rule.verbs)))


def write_extension(root: Path, name: str, description: Optional[dict], files: Optional[Dict[str, str]] = None) -> Path:
    """Create <root>/repo/<name>/description.yaml plus extra files; returns the repository path"""
    repo = root / "repo"
    extension_dir = repo / name
    extension_dir.mkdir(parents=True, exist_ok=True)
    if description is not None:
        (extension_dir / "description.yaml").write_text(yaml.safe_dump(description))
    for relative, content in (files or {}).items():
        path = extension_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return repo


@pytest.fixture
def runner():
    return RecordingRunner()


@pytest.fixture
def config():
    return ExtensionManagerConfig(_env_file=None, system_domain="example.io")
