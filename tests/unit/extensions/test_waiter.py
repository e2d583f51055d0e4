"""Tests for wait-for conditions."""

import pytest

from fuseml.core.extensions.exceptions import InstallErrorCode, WaitTimeoutError
from fuseml.core.extensions.models import WaitForStep
from fuseml.core.extensions.waiter import WaitConditionEngine


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitConditionEngine:
    """Test suite for WaitConditionEngine."""

    @pytest.fixture(autouse=True)
    def _engine(self, runner):
        self.runner = runner
        self.clock = FakeClock()
        self.engine = WaitConditionEngine(runner=runner, poll_interval=2.0, clock=self.clock, sleep=self.clock.sleep)

    def test_wait_for_all(self):
        self.engine.wait_for("pod", "demo", "all", "Ready", 120)

        assert self.runner.calls == [[
            "kubectl", "wait", "--for=condition=Ready", "--all", "--timeout=120s", "--namespace", "demo", "pod"
        ]]

    def test_wait_for_selector_without_namespace(self):
        self.engine.wait_for("deployment", "", "app=demo", "Available", 30)

        assert self.runner.calls == [[
            "kubectl", "wait", "--for=condition=Available", "--selector=app=demo", "--timeout=30s", "deployment"
        ]]

    def test_wait_timeout_carries_output(self):
        self.runner.respond(["kubectl", "wait"], code=1, stderr="error: timed out waiting for the condition on pods/x")

        with pytest.raises(WaitTimeoutError) as exc:
            self.engine.wait_for("pod", "demo", "all", "Ready", 5)

        assert exc.value.error_code == InstallErrorCode.TIMEOUT
        assert "timed out waiting for the condition" in exc.value.output

    def test_pods_exist_polls_until_found(self):
        outputs = iter([(0, "", ""), (0, "", ""), (0, "pod/demo-1\n", "")])
        self.runner.run = lambda args, **kwargs: next(outputs)

        assert self.engine.wait_for_pods_exist("demo", "app=demo", 60) == "pod/demo-1"
        assert self.clock.sleeps == [2.0, 2.0]

    def test_pods_exist_timeout(self):
        self.runner.respond(["kubectl", "get", "pod"], code=0, stdout="", stderr="No resources found in demo namespace.")

        with pytest.raises(WaitTimeoutError, match="Timed out waiting for pods") as exc:
            self.engine.wait_for_pods_exist("demo", "app=demo", 5)

        assert exc.value.output == "No resources found in demo namespace."
        assert self.clock.now >= 5

    def test_step_checks_existence_before_readiness(self):
        self.runner.respond(["kubectl", "get", "pod"], stdout="pod/demo-1\n")

        self.engine.wait_for_step(WaitForStep(selector="app=demo"), "demo", 300)

        assert [call[1] for call in self.runner.calls] == ["get", "wait"]
        assert "--timeout=300s" in self.runner.calls[1]
        assert "--selector=app=demo" in self.runner.calls[1]

    def test_step_with_all_selector_skips_existence_check(self):
        self.engine.wait_for_step(WaitForStep(timeout=10), "demo", 300)

        assert len(self.runner.calls) == 1
        assert "--timeout=10s" in self.runner.calls[0]

    def test_step_namespace_overrides_default(self):
        self.engine.wait_for_step(WaitForStep(kind="deployment", selector="app=x", namespace="other"), "demo", 300)

        # no existence polling for non-pod kinds
        assert len(self.runner.calls) == 1
        call = self.runner.calls[0]
        assert call[call.index("--namespace") + 1] == "other"
