"""
Step executors - one per step type

Each executor knows how to apply and how to remove one kind of step:

- helm:      helm install/upgrade/uninstall of a release named after the extension
- manifest:  kubectl apply/delete --filename
- kustomize: kubectl apply/delete --kustomize
- script:    run the script (it handles its own idempotency and removal)
"""

import logging
import stat
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel

from fuseml.core.extensions.exceptions import InstallationError, InstallErrorCode
from fuseml.core.extensions.models import (
    HelmStep,
    InstallStep,
    KustomizeStep,
    ManifestStep,
    ScriptStep,
    StepType,
)
from fuseml.core.extensions.resolver import AssetResolver
from fuseml.core.extensions.runner import CommandRunner, combined_output

logger = logging.getLogger(__name__)

SCRIPT_MODE = 0o740


@dataclass
class StepContext:
    """What an executor needs to know about the extension being processed"""
    extension_name: str
    namespace: str
    reinstall: bool = False


class StepResult(BaseModel):
    """Result of step execution"""
    step: str
    action: str
    skipped: bool = False
    output: Optional[str] = None
    warning: Optional[str] = None
    duration_ms: int = 0


def _elapsed_ms(start_time: datetime) -> int:
    return int((datetime.now() - start_time).total_seconds() * 1000)


def _namespace_args(namespace: str) -> List[str]:
    return ["--namespace", namespace] if namespace else []


class StepExecutor:
    """Base class for step executors"""

    def __init__(self, resolver: AssetResolver, runner: CommandRunner):
        self.resolver = resolver
        self.runner = runner

    def install(self, step: InstallStep, context: StepContext) -> StepResult:
        """Apply a step"""
        raise NotImplementedError

    def uninstall(self, step: InstallStep, context: StepContext) -> StepResult:
        """Remove what a step applied"""
        raise NotImplementedError

    def _run_checked(self, args: List[str], failure: str, cwd: Optional[Path] = None) -> str:
        code, stdout, stderr = self.runner.run(args, cwd=cwd)
        output = combined_output(stdout, stderr)
        if code != 0:
            raise InstallationError(
                f"{failure}:\n{output}",
                error_code=InstallErrorCode.COMMAND_FAILED
            )
        return output


class HelmExecutor(StepExecutor):
    """Executor for helm charts"""

    def release_deployed(self, release: str, namespace: str) -> bool:
        """True if a deployed release with this name exists"""
        args = ["helm", "list", "--deployed", "--short"] + _namespace_args(namespace)
        output = self._run_checked(args, f"Failed listing helm releases in {namespace or 'current namespace'}")
        return release in (line.strip() for line in output.splitlines())

    def install(self, step: HelmStep, context: StepContext) -> StepResult:
        start_time = datetime.now()
        release = context.extension_name
        namespace = context.namespace

        action = "install"
        if self.release_deployed(release, namespace):
            if not context.reinstall:
                return StepResult(
                    step=step.label,
                    action=action,
                    skipped=True,
                    warning=f"{release} chart already present, skipping installation",
                    duration_ms=_elapsed_ms(start_time)
                )
            action = "upgrade"

        logger.info(f"Helm {action} of release {release} from {step.source}")
        with self.resolver.scratch_dir() as scratch_dir:
            args = ["helm", action, release]
            if step.uses_archive:
                chart_path = self.resolver.fetch_file(step.location, scratch_dir)
                args.append(str(chart_path))
            else:
                args += [step.chart, "--repo", step.repo]

            args.append("--create-namespace")
            if step.values:
                values_path = self.resolver.fetch_file(step.values, scratch_dir)
                args += ["--values", str(values_path)]
            args.append("--wait")
            args += _namespace_args(namespace)
            if step.version:
                args += ["--version", step.version]

            output = self._run_checked(args, f"Failed installing {release} chart")

        return StepResult(
            step=step.label,
            action=action,
            output=output,
            duration_ms=_elapsed_ms(start_time)
        )

    def uninstall(self, step: HelmStep, context: StepContext) -> StepResult:
        start_time = datetime.now()
        release = context.extension_name

        args = ["helm", "uninstall", release] + _namespace_args(context.namespace)
        code, stdout, stderr = self.runner.run(args)
        output = combined_output(stdout, stderr)
        if code != 0:
            if "release: not found" not in output:
                raise InstallationError(
                    f"Failed uninstalling helm release {release}: {output}",
                    error_code=InstallErrorCode.COMMAND_FAILED
                )
            return StepResult(
                step=step.label,
                action="uninstall",
                skipped=True,
                warning=f"{release} helm release not found, skipping",
                duration_ms=_elapsed_ms(start_time)
            )

        return StepResult(step=step.label, action="uninstall", output=output, duration_ms=_elapsed_ms(start_time))


class ManifestExecutor(StepExecutor):
    """Executor for plain kubernetes manifests"""

    def install(self, step: ManifestStep, context: StepContext) -> StepResult:
        return self._kubectl(step, context, ["apply"], "apply")

    def uninstall(self, step: ManifestStep, context: StepContext) -> StepResult:
        return self._kubectl(step, context, ["delete", "--ignore-not-found"], "delete")

    def _kubectl(self, step: ManifestStep, context: StepContext, verb: List[str], action: str) -> StepResult:
        start_time = datetime.now()
        with self.resolver.scratch_dir() as scratch_dir:
            manifest_path = self.resolver.fetch_file(step.location, scratch_dir)
            args = ["kubectl", verb[0], "--filename", str(manifest_path)] + verb[1:]
            args += _namespace_args(context.namespace)
            output = self._run_checked(args, f"kubectl {action} failed")

        return StepResult(step=step.label, action=action, output=output, duration_ms=_elapsed_ms(start_time))


class KustomizeExecutor(StepExecutor):
    """Executor for kustomize overlays; the directory is fetched by kubectl itself"""

    def install(self, step: KustomizeStep, context: StepContext) -> StepResult:
        return self._kubectl(step, context, ["apply"], "apply")

    def uninstall(self, step: KustomizeStep, context: StepContext) -> StepResult:
        return self._kubectl(step, context, ["delete", "--ignore-not-found"], "delete")

    def _kubectl(self, step: KustomizeStep, context: StepContext, verb: List[str], action: str) -> StepResult:
        start_time = datetime.now()
        kustomize_dir = self.resolver.kustomize_path(step.location)
        args = ["kubectl", verb[0], "--kustomize", kustomize_dir] + verb[1:]
        args += _namespace_args(context.namespace)
        output = self._run_checked(args, f"kubectl {action} failed")

        return StepResult(step=step.label, action=action, output=output, duration_ms=_elapsed_ms(start_time))


class ScriptExecutor(StepExecutor):
    """Executor for scripts, run from a temporary working directory"""

    def install(self, step: ScriptStep, context: StepContext) -> StepResult:
        return self._run_script(step, "install")

    def uninstall(self, step: ScriptStep, context: StepContext) -> StepResult:
        return self._run_script(step, "uninstall")

    def _run_script(self, step: ScriptStep, action: str) -> StepResult:
        start_time = datetime.now()
        logger.info(f"Running script {step.location} ({action})")
        with self.resolver.scratch_dir() as scratch_dir:
            script_path = self.resolver.fetch_file(step.location, scratch_dir)
            try:
                script_path.chmod(stat.S_IMODE(script_path.stat().st_mode) | SCRIPT_MODE)
            except OSError as e:
                raise InstallationError(
                    f"Failed changing the file mode of {script_path}: {e}",
                    error_code=InstallErrorCode.COMMAND_FAILED
                ) from e

            output = self._run_checked([str(script_path)], "Failed running script", cwd=scratch_dir)

        return StepResult(step=step.label, action=action, output=output, duration_ms=_elapsed_ms(start_time))


def build_executors(resolver: AssetResolver, runner: CommandRunner):
    """Executor per step type"""
    return {
        StepType.HELM: HelmExecutor(resolver, runner),
        StepType.MANIFEST: ManifestExecutor(resolver, runner),
        StepType.KUSTOMIZE: KustomizeExecutor(resolver, runner),
        StepType.SCRIPT: ScriptExecutor(resolver, runner),
    }
