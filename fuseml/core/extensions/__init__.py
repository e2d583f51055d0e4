"""FuseML Extensions System

Lifecycle management of installable platform extensions.

An extension lives under <repository>/<name>/ (local directory or http(s) URL)
and is described by description.yaml: an ordered list of install and uninstall
steps (helm, manifest, kustomize, script), optional gateways and RBAC rules,
and the services, endpoints and credentials published to the extension registry.

Components:
- resolver: resolution of description references to local files/URLs
- loader: description file loader
- steps: one executor per step type
- waiter: wait-for conditions evaluated after install steps
- cluster: cluster capabilities (namespaces, secrets, gateways, RBAC)
- credentials: credential values resolved from cluster secrets
- registry_client: extension registry HTTP client
- engine: install/uninstall/register orchestration
- models: Pydantic data models
- exceptions: Custom exceptions
"""

from fuseml.core.extensions.exceptions import (
    ExtensionError,
    DescriptorError,
    FetchError,
    InstallationError,
    InstallErrorCode,
    WaitTimeoutError,
    CredentialError,
    RegistryError,
    ClusterError,
)
from fuseml.core.extensions.models import (
    ExtensionDescriptor,
    InstallStep,
    HelmStep,
    ManifestStep,
    KustomizeStep,
    ScriptStep,
    WaitForStep,
    StepType,
    NamespaceOwnership,
    RegisteredExtension,
    parse_step,
)
from fuseml.core.extensions.downloader import URLDownloader
from fuseml.core.extensions.resolver import AssetResolver, kustomize_url
from fuseml.core.extensions.loader import DescriptorLoader
from fuseml.core.extensions.runner import CommandRunner
from fuseml.core.extensions.cluster import Cluster, KubectlCluster, classify_namespace
from fuseml.core.extensions.waiter import WaitConditionEngine
from fuseml.core.extensions.credentials import CredentialTransformPipeline
from fuseml.core.extensions.registry_client import RegistryClient
from fuseml.core.extensions.engine import ExtensionOrchestrator, OperationResult

__all__ = [
    # Exceptions
    "ExtensionError",
    "DescriptorError",
    "FetchError",
    "InstallationError",
    "InstallErrorCode",
    "WaitTimeoutError",
    "CredentialError",
    "RegistryError",
    "ClusterError",
    # Models
    "ExtensionDescriptor",
    "InstallStep",
    "HelmStep",
    "ManifestStep",
    "KustomizeStep",
    "ScriptStep",
    "WaitForStep",
    "StepType",
    "NamespaceOwnership",
    "RegisteredExtension",
    "parse_step",
    # Engine
    "ExtensionOrchestrator",
    "OperationResult",
    # Components
    "URLDownloader",
    "AssetResolver",
    "kustomize_url",
    "DescriptorLoader",
    "CommandRunner",
    "Cluster",
    "KubectlCluster",
    "classify_namespace",
    "WaitConditionEngine",
    "CredentialTransformPipeline",
    "RegistryClient",
]
