"""
Extension Orchestrator - install, uninstall and registration of one extension

An extension is described by <repository>/<name>/description.yaml. Install runs
its install steps in order, evaluating the wait-for conditions of every step
before moving on; Uninstall runs the uninstall steps and removes the
namespaces created for the extension.

Namespace policy:
- absent namespace            -> created and labelled as owned, steps proceed
- foreign namespace           -> skipped with a warning
- owned, no reinstall         -> skipped with a warning (already installed)
- owned, reinstall requested  -> steps reapplied, helm releases upgraded

A skip at the extension's own namespace short-circuits the whole extension.
There is no rollback: a failed install is recovered by running install again
or by running uninstall.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from fuseml.core.config import ExtensionManagerConfig, get_config
from fuseml.core.extensions.cluster import Cluster, KubectlCluster, classify_namespace
from fuseml.core.extensions.credentials import CredentialTransformPipeline
from fuseml.core.extensions.downloader import URLDownloader
from fuseml.core.extensions.exceptions import (
    ClusterError,
    FetchError,
    InstallationError,
    InstallErrorCode,
    RegistryError,
    WaitTimeoutError,
)
from fuseml.core.extensions.loader import DescriptorLoader
from fuseml.core.extensions.models import (
    ExtensionDescriptor,
    InstallStep,
    NamespaceOwnership,
    RegisteredExtension,
    StepType,
    parse_step,
)
from fuseml.core.extensions.registry_client import RegistryClient
from fuseml.core.extensions.resolver import AssetResolver
from fuseml.core.extensions.runner import CommandRunner
from fuseml.core.extensions.steps import StepContext, StepResult, build_executors
from fuseml.core.extensions.waiter import WaitConditionEngine

logger = logging.getLogger(__name__)


class OperationResult(BaseModel):
    """Result of an install or uninstall"""
    extension_id: str
    action: str
    completed_steps: List[str] = Field(default_factory=list)
    skipped_steps: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    skipped: bool = Field(default=False, description="Whole extension short-circuited")
    duration_ms: int = 0


class ExtensionOrchestrator:
    """
    Lifecycle manager of one extension

    Collaborators default to the kubectl/helm backed implementations and can be
    replaced, e.g. by fakes in tests.
    """

    def __init__(
        self,
        name: str,
        repository: str,
        config: Optional[ExtensionManagerConfig] = None,
        cluster: Optional[Cluster] = None,
        runner: Optional[CommandRunner] = None,
        downloader: Optional[URLDownloader] = None,
        registry: Optional[RegistryClient] = None,
        waiter: Optional[WaitConditionEngine] = None
    ):
        """
        Initialize orchestrator

        Args:
            name: Extension name (subdirectory of the repository, helm release name)
            repository: Extension repository (local directory or http(s) URL)
            config: Configuration (defaults to get_config())
            cluster: Cluster implementation (defaults to KubectlCluster)
            runner: Command runner for helm, kubectl and scripts
            downloader: Downloader for remote assets
            registry: Registry client (built from the config on first use)
            waiter: Wait-for condition engine

        Raises:
            FetchError: If the repository is neither URL nor a directory
        """
        self.name = name
        self.config = config or get_config()
        self.runner = runner or CommandRunner(debug=self.config.debug)
        self.cluster = cluster or KubectlCluster(
            runner=self.runner,
            label_key=self.config.ownership_label_key,
            label_value=self.config.ownership_label_value,
            workloads_namespace=self.config.workloads_namespace,
            workloads_role=self.config.workloads_role,
        )
        self.downloader = downloader or URLDownloader(
            max_retries=self.config.http_max_retries,
            timeout=self.config.http_timeout,
            max_size=self.config.download_max_size,
            debug=self.config.debug,
        )
        self.resolver = AssetResolver(
            repository,
            name,
            downloader=self.downloader,
            scratch_prefix=self.config.scratch_prefix,
        )
        self.waiter = waiter or WaitConditionEngine(
            runner=self.runner,
            poll_interval=self.config.wait_poll_interval,
        )
        self._registry = registry
        self._executor_map = build_executors(self.resolver, self.runner)
        self.descriptor: Optional[ExtensionDescriptor] = None

    @property
    def registry(self) -> RegistryClient:
        if self._registry is None:
            try:
                base_url = self.config.registry_base_url
            except ValueError as e:
                raise RegistryError(f"Cannot locate the extension registry: {e}") from e
            self._registry = RegistryClient(
                base_url,
                timeout=self.config.http_timeout,
                max_retries=self.config.http_max_retries,
                debug=self.config.debug,
            )
        return self._registry

    def load(self) -> ExtensionDescriptor:
        """Load (once) and return the extension descriptor"""
        if self.descriptor is None:
            loader = DescriptorLoader(self.resolver, self.config.description_filename)
            self.descriptor = loader.load()
        return self.descriptor

    # ============================================
    # Install
    # ============================================

    def install(self, reinstall: Optional[bool] = None) -> OperationResult:
        """
        Install the extension

        Args:
            reinstall: Reapply an installed extension (defaults to config.force_reinstall)

        Returns:
            OperationResult; policy skips are reported in its warnings

        Raises:
            DescriptorError: Description cannot be loaded
            FetchError: Asset cannot be resolved
            InstallationError: Step, wait, namespace, gateway or RBAC failure
        """
        start_time = datetime.now()
        if reinstall is None:
            reinstall = self.config.force_reinstall
        descriptor = self.load()
        result = OperationResult(extension_id=descriptor.name, action="install")

        logger.info(f"Starting installation: {descriptor.name} (reinstall={reinstall})")

        namespace = descriptor.namespace
        # namespaces already vetted during this run: namespace -> proceed
        decisions: Dict[str, bool] = {}
        if namespace and not self._prepare_namespace(namespace, reinstall, decisions, result):
            result.skipped = True
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        for index, raw in enumerate(descriptor.install):
            step = self._parse(raw, index, "install")
            step_namespace = step.namespace or namespace
            if step.namespace and not self._prepare_namespace(step.namespace, reinstall, decisions, result):
                result.skipped_steps.append(step.label)
                continue

            step_result = self._execute(
                step,
                "install",
                StepContext(extension_name=descriptor.name, namespace=step_namespace, reinstall=reinstall),
                result
            )

            if step.namespace and step.namespace != namespace:
                self._label(step.namespace)

            for wait in step.wait_for:
                try:
                    self.waiter.wait_for_step(wait, step_namespace, self.config.default_timeout)
                except WaitTimeoutError as e:
                    raise WaitTimeoutError(
                        f"Failed while waiting for install step {step.label} to finish: {e}",
                        output=e.output,
                        failed_step=step.label
                    ) from e
                except InstallationError as e:
                    raise InstallationError(
                        f"Failed while waiting for install step {step.label} to finish: {e}",
                        error_code=e.error_code,
                        hint=e.hint,
                        failed_step=step.label
                    ) from e

            logger.debug(f"Step {step.label} finished ({'skipped' if step_result.skipped else 'applied'})")

        if namespace:
            self._label(namespace)

        self._create_gateways(descriptor, result)
        self._grant_role_rules(descriptor)

        result.duration_ms = self._elapsed_ms(start_time)
        logger.info(f"Extension {descriptor.name} deployed")
        return result

    # ============================================
    # Uninstall
    # ============================================

    def uninstall(self) -> OperationResult:
        """
        Uninstall the extension and delete the namespaces created for it

        The shared workloads namespace is never deleted.

        Raises:
            DescriptorError: Description cannot be loaded
            FetchError: Asset cannot be resolved
            InstallationError: Step or namespace failure
        """
        start_time = datetime.now()
        descriptor = self.load()
        result = OperationResult(extension_id=descriptor.name, action="uninstall")
        workloads_namespace = self.config.workloads_namespace

        logger.info(f"Starting uninstallation: {descriptor.name}")

        namespace = descriptor.namespace
        if namespace and self._classify(namespace) == NamespaceOwnership.FOREIGN:
            self._warn(
                result,
                f"Namespace {namespace} was not created by FuseML; not deleting extension {descriptor.name}"
            )
            result.skipped = True
            result.duration_ms = self._elapsed_ms(start_time)
            return result

        for index, raw in enumerate(descriptor.uninstall):
            step = self._parse(raw, index, "uninstall")
            step_namespace = step.namespace or namespace
            if step.namespace and self._classify(step.namespace) == NamespaceOwnership.FOREIGN:
                self._warn(
                    result,
                    f"Namespace exists but {step.namespace} was not created by FuseML; "
                    f"skipping {step.type} step of extension {descriptor.name}"
                )
                result.skipped_steps.append(step.label)
                continue

            self._execute(
                step,
                "uninstall",
                StepContext(extension_name=descriptor.name, namespace=step_namespace),
                result
            )

            if step.namespace and step.namespace not in (namespace, workloads_namespace):
                self._delete_namespace(step.namespace)

        if namespace and namespace != workloads_namespace:
            self._delete_namespace(namespace)

        result.duration_ms = self._elapsed_ms(start_time)
        logger.info(f"Extension {descriptor.name} removed")
        return result

    # ============================================
    # Registry
    # ============================================

    def register(self) -> bool:
        """
        Register the extension with its services, endpoints and credentials

        Credential values referenced by transform rules are read from cluster
        secrets first; nothing is registered if any of them cannot be read.

        Returns:
            True if the extension was registered, False if it already was

        Raises:
            CredentialError: Secret cannot be read
            RegistryError: Unexpected registry response
        """
        descriptor = self.load()
        if self.registry.is_registered(descriptor.name):
            logger.warning(
                f"Extension {descriptor.name} is already registered; "
                f"if you want to update it, delete it first"
            )
            return False

        transformed = CredentialTransformPipeline(self.cluster).apply(descriptor)
        self.registry.create(self.registry.build_payload(descriptor, transformed))
        return True

    def unregister(self) -> None:
        """Remove the extension from the registry; unknown extensions are ignored"""
        descriptor = self.load()
        self.registry.unregister(descriptor.name)

    def list_registered(self) -> List[RegisteredExtension]:
        return self.registry.list_registered()

    # ============================================
    # Helpers
    # ============================================

    def _parse(self, raw, index: int, action: str) -> InstallStep:
        try:
            return parse_step(raw)
        except InstallationError as e:
            step_ref = f"{action} step {index + 1}"
            raise InstallationError(
                f"Failed to {action} extension {self.name}: {step_ref}: {e}",
                error_code=e.error_code,
                hint=e.hint,
                failed_step=step_ref
            ) from e

    def _execute(
        self,
        step: InstallStep,
        action: str,
        context: StepContext,
        result: OperationResult
    ) -> StepResult:
        """Run one step through its executor and record the outcome"""
        step_type = StepType(step.type)
        executor = self._executor_map.get(step_type)
        if not executor:
            raise InstallationError(
                f"Unsupported step type: {step.type}",
                error_code=InstallErrorCode.UNSUPPORTED_STEP_TYPE,
                failed_step=step.label,
                hint=f"Supported types: {', '.join(t.value for t in StepType)}"
            )

        logger.info(f"Executing {action} step: {step.label}")
        try:
            if action == "install":
                step_result = executor.install(step, context)
            else:
                step_result = executor.uninstall(step, context)
        except InstallationError as e:
            logger.error(f"Step failed: {step.label} - {e}")
            raise InstallationError(
                f"Failed to {action} {step.type} step from {step.source}: {e}",
                error_code=e.error_code,
                hint=e.hint,
                failed_step=step.label
            ) from e
        except FetchError as e:
            logger.error(f"Step failed: {step.label} - {e}")
            raise FetchError(f"Failed to {action} {step.type} step from {step.source}: {e}") from e

        logger.info(
            f"Extension step executed: {step.label}",
            extra={
                "extension_id": context.extension_name,
                "action": step_result.action,
                "step": step.label,
                "step_type": step.type,
                "namespace": context.namespace,
                "duration_ms": step_result.duration_ms,
            }
        )

        if step_result.skipped:
            result.skipped_steps.append(step.label)
            if step_result.warning:
                self._warn(result, step_result.warning)
        else:
            result.completed_steps.append(step.label)
        return step_result

    def _prepare_namespace(
        self,
        namespace: str,
        reinstall: bool,
        decisions: Dict[str, bool],
        result: OperationResult
    ) -> bool:
        """
        Apply the namespace policy before installing into a namespace

        Returns:
            True if steps may proceed in the namespace
        """
        if namespace in decisions:
            return decisions[namespace]

        ownership = self._classify(namespace)
        if ownership == NamespaceOwnership.ABSENT:
            logger.info(f"Creating namespace {namespace}")
            try:
                self.cluster.create_namespace(namespace)
            except ClusterError as e:
                raise self._namespace_error(f"Failed to create namespace {namespace}", e) from e
            self._label(namespace)
            proceed = True
        elif ownership == NamespaceOwnership.FOREIGN:
            self._warn(
                result,
                f"Namespace {namespace} is already present and not created by FuseML: "
                f"assuming extension {self.name} is already installed"
            )
            proceed = False
        elif not reinstall:
            self._warn(
                result,
                f"Namespace {namespace} is already present: assuming extension {self.name} is already installed"
            )
            proceed = False
        else:
            logger.info(f"Namespace {namespace} is already present and reinstall requested")
            proceed = True

        decisions[namespace] = proceed
        return proceed

    def _classify(self, namespace: str) -> NamespaceOwnership:
        try:
            return classify_namespace(self.cluster, namespace)
        except ClusterError as e:
            raise self._namespace_error(f"Failed to inspect namespace {namespace}", e) from e

    def _label(self, namespace: str) -> None:
        try:
            self.cluster.label_namespace(namespace)
        except ClusterError as e:
            raise self._namespace_error(f"Failed to label namespace {namespace}", e) from e

    def _delete_namespace(self, namespace: str) -> None:
        if self._classify(namespace) == NamespaceOwnership.ABSENT:
            return
        logger.info(f"Deleting namespace {namespace}")
        try:
            self.cluster.delete_namespace(namespace)
        except ClusterError as e:
            raise self._namespace_error(f"Failed to delete namespace {namespace}", e) from e

    @staticmethod
    def _namespace_error(message: str, error: ClusterError) -> InstallationError:
        return InstallationError(
            f"{message}: {error}",
            error_code=InstallErrorCode.NAMESPACE_ERROR,
            hint="Check access to the cluster and the permissions of the current user"
        )

    def _create_gateways(self, descriptor: ExtensionDescriptor, result: OperationResult) -> None:
        if not descriptor.gateways:
            return
        if not self.cluster.has_gateway_support():
            self._warn(result, f"Ingress gateways of extension {descriptor.name} not created: no gateway support")
            return

        domain = self.config.system_domain
        if not domain:
            raise InstallationError(
                "system_domain value not provided",
                error_code=InstallErrorCode.GATEWAY_FAILED,
                hint="Set FUSEML_SYSTEM_DOMAIN"
            )

        for gateway in descriptor.gateways:
            namespace = gateway.namespace or descriptor.namespace or self.config.workloads_namespace
            host = gateway.hostname(domain)
            logger.info(f"Creating ingress gateway for {gateway.name}")
            try:
                self.cluster.create_gateway(gateway, namespace, host)
            except ClusterError as e:
                raise InstallationError(
                    f"Creating ingress gateway for {gateway.name} failed: {e}",
                    error_code=InstallErrorCode.GATEWAY_FAILED
                ) from e
            if gateway.service_host:
                logger.info(f"{gateway.name} accessible at http://{host}")

    def _grant_role_rules(self, descriptor: ExtensionDescriptor) -> None:
        for rule in descriptor.role_rules:
            try:
                self.cluster.grant_workloads_role_rule(rule)
            except ClusterError as e:
                raise InstallationError(
                    f"Failed updating workloads role: {e}",
                    error_code=InstallErrorCode.RBAC_FAILED
                ) from e

    @staticmethod
    def _warn(result: OperationResult, message: str) -> None:
        logger.warning(message)
        result.warnings.append(message)

    @staticmethod
    def _elapsed_ms(start_time: datetime) -> int:
        return int((datetime.now() - start_time).total_seconds() * 1000)
