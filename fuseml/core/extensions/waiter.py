"""Wait-for conditions evaluated after install steps"""

import logging
import time
from typing import Callable, List, Optional

from fuseml.core.extensions.exceptions import WaitTimeoutError
from fuseml.core.extensions.models import WaitForStep
from fuseml.core.extensions.runner import CommandRunner, combined_output

logger = logging.getLogger(__name__)

# extra seconds granted to kubectl on top of its own --timeout
KUBECTL_GRACE_SECONDS = 30


class WaitConditionEngine:
    """
    Blocks until cluster resources reach a condition or a timeout elapses

    There is no retry beyond the single bounded wait; the caller decides
    whether a timeout is fatal.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        poll_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.runner = runner or CommandRunner()
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def wait_for(
        self,
        kind: str,
        namespace: str,
        selector: str,
        condition: str,
        timeout: int
    ) -> str:
        """
        Wait until `condition` holds for the selected resources

        Args:
            kind: Resource kind (e.g. pod, deployment)
            namespace: Namespace of the resources (empty for the current one)
            selector: 'all' or a label selector
            condition: Condition name (e.g. Ready)
            timeout: Timeout in seconds

        Returns:
            Output of the wait

        Raises:
            WaitTimeoutError: Condition not met in time; carries the last output
        """
        selection = "--all" if selector == "all" else f"--selector={selector}"
        args = ["kubectl", "wait", f"--for=condition={condition}", selection, f"--timeout={timeout}s"]
        args += self._namespace_args(namespace)
        args.append(kind)

        logger.info(f"Waiting for {kind} ({selector}) in {namespace or 'current namespace'} to become {condition}")
        code, stdout, stderr = self.runner.run(args, timeout=timeout + KUBECTL_GRACE_SECONDS)
        output = combined_output(stdout, stderr)
        if code != 0:
            raise WaitTimeoutError(
                f"Timed out waiting for {kind} status to become {condition} "
                f"(selector: {selector}, namespace: {namespace or '-'}, timeout: {timeout}s):\n{output}",
                output=output
            )
        return output

    def wait_for_pods_exist(self, namespace: str, selector: str, timeout: int) -> str:
        """
        Poll until at least one pod matches the selector

        A readiness wait against zero matching pods succeeds immediately,
        so existence is checked first.

        Raises:
            WaitTimeoutError: No matching pod appeared in time
        """
        args = ["kubectl", "get", "pod", f"--selector={selector}", "--output", "name"]
        args += self._namespace_args(namespace)

        deadline = self._clock() + timeout
        last_output = ""
        while True:
            code, stdout, stderr = self.runner.run(args, timeout=timeout + KUBECTL_GRACE_SECONDS)
            if code == 0 and stdout.strip():
                return stdout.strip()
            last_output = combined_output(stdout, stderr)

            if self._clock() >= deadline:
                raise WaitTimeoutError(
                    f"Timed out waiting for pods with selector {selector} "
                    f"to exist in {namespace or 'current namespace'} (timeout: {timeout}s)",
                    output=last_output
                )
            self._sleep(self.poll_interval)

    def wait_for_step(self, wait: WaitForStep, namespace: str, default_timeout: int) -> str:
        """
        Evaluate one declared wait-for condition

        Args:
            wait: Declared condition
            namespace: Namespace used when the condition does not name one
            default_timeout: Timeout used when the condition does not set one
        """
        namespace = wait.namespace or namespace
        timeout = wait.timeout or default_timeout

        if wait.kind == "pod" and not wait.selects_all:
            self.wait_for_pods_exist(namespace, wait.selector, timeout)

        return self.wait_for(wait.kind, namespace, wait.selector, wait.condition, timeout)

    @staticmethod
    def _namespace_args(namespace: str) -> List[str]:
        return ["--namespace", namespace] if namespace else []
