"""Tests for descriptor models and step parsing."""

import pytest

from fuseml.core.extensions.exceptions import InstallationError, InstallErrorCode
from fuseml.core.extensions.models import (
    ExtensionDescriptor,
    GatewaySpec,
    HelmStep,
    KustomizeStep,
    ManifestStep,
    ScriptStep,
    WaitForStep,
    normalize_key,
    parse_step,
)


class TestParseStep:
    """Building typed steps from raw description entries."""

    def test_helm_from_repository(self):
        step = parse_step({"type": "helm", "repo": "https://charts.example.com", "chart": "thing", "version": 2})

        assert isinstance(step, HelmStep)
        assert step.uses_archive is False
        assert step.version == "2"
        assert step.label == "helm:https://charts.example.com/thing"

    def test_helm_location_takes_precedence(self):
        step = parse_step({"type": "helm", "location": "chart.tgz", "repo": "https://charts.example.com", "chart": "x"})
        assert step.uses_archive is True
        assert step.source == "chart.tgz"

    def test_helm_without_chart_source(self):
        with pytest.raises(InstallationError, match="Neither chart repository nor chart location was provided") as exc:
            parse_step({"type": "helm"})
        assert exc.value.error_code == InstallErrorCode.INVALID_STEP

    def test_helm_repository_without_chart(self):
        with pytest.raises(InstallationError, match="Chart name not provided"):
            parse_step({"type": "helm", "repo": "https://charts.example.com"})

    @pytest.mark.parametrize("step_type, model", [
        ("manifest", ManifestStep),
        ("kustomize", KustomizeStep),
        ("script", ScriptStep),
    ])
    def test_location_steps(self, step_type, model):
        step = parse_step({"type": step_type, "location": "a/b", "namespace": "ns"})
        assert isinstance(step, model)
        assert step.namespace == "ns"
        assert step.label == f"{step_type}:a/b"

    def test_location_required(self):
        with pytest.raises(InstallationError) as exc:
            parse_step({"type": "manifest", "location": ""})
        assert exc.value.error_code == InstallErrorCode.INVALID_STEP

    def test_unsupported_type(self):
        with pytest.raises(InstallationError, match="Unsupported step type: teleport") as exc:
            parse_step({"type": "teleport", "location": "x"})
        assert exc.value.error_code == InstallErrorCode.UNSUPPORTED_STEP_TYPE
        assert "helm" in exc.value.hint

    def test_missing_type(self):
        with pytest.raises(InstallationError, match="Unsupported step type"):
            parse_step({"location": "x"})

    def test_not_a_mapping(self):
        with pytest.raises(InstallationError, match="Invalid step definition"):
            parse_step("manifest")

    def test_case_insensitive_keys(self):
        step = parse_step({
            "Type": "manifest",
            "Location": "app.yaml",
            "waitFor": [{"Kind": "deployment", "selector": "app=demo", "timeout": 60}],
        })
        assert step.location == "app.yaml"
        assert step.wait_for[0].kind == "deployment"
        assert step.wait_for[0].timeout == 60


class TestWaitForStep:
    """Defaults of wait-for conditions."""

    def test_defaults(self):
        wait = WaitForStep()
        assert wait.kind == "pod"
        assert wait.condition == "Ready"
        assert wait.selector == "all"
        assert wait.timeout == 0
        assert wait.selects_all is True

    def test_empty_values_take_defaults(self):
        wait = WaitForStep.model_validate({"kind": "", "condition": None, "selector": "", "timeout": ""})
        assert (wait.kind, wait.condition, wait.selector, wait.timeout) == ("pod", "Ready", "all", 0)

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError):
            WaitForStep(timeout=-1)


class TestExtensionDescriptor:
    """Descriptor level behaviour."""

    def test_null_lists(self):
        descriptor = ExtensionDescriptor.model_validate({"name": "demo", "install": None, "gateways": None})
        assert descriptor.install == []
        assert descriptor.gateways == []

    def test_configuration_values_are_strings(self):
        descriptor = ExtensionDescriptor.model_validate({
            "services": [{
                "id": "store",
                "endpoints": [{"url": "http://store", "configuration": {"port": 9000, "secure": False}}],
            }],
        })
        assert descriptor.services[0].endpoints[0].configuration == {"port": "9000", "secure": "false"}

    def test_credential_transform_rules(self):
        descriptor = ExtensionDescriptor.model_validate({
            "servicecredentials": [{
                "serviceid": "store",
                "credentials": [{
                    "id": "default",
                    "transform": [
                        {"configValue": "user", "secretValue": "accesskey", "secret": "creds", "namespace": "ns"},
                        {"configValue": "password", "secretValue": "secretkey", "secret": "creds", "namespace": "ns"},
                    ],
                }],
            }],
        })

        rules = list(descriptor.credential_transform_rules())

        assert [(r.service_id, r.credential_id, r.config_key, r.field) for r in rules] == [
            ("store", "default", "user", "accesskey"),
            ("store", "default", "password", "secretkey"),
        ]

    def test_transformed_credentials_not_dumped(self):
        descriptor = ExtensionDescriptor(name="demo")
        descriptor.transformed_credentials = {"s": {"c": {"k": "v"}}}
        assert "transformed_credentials" not in descriptor.model_dump()


class TestGatewaySpec:
    """Gateway hostnames."""

    def test_hostname_from_name(self):
        assert GatewaySpec(name="mlflow").hostname("example.io") == "mlflow.example.io"

    def test_hostname_from_prefix(self):
        gateway = GatewaySpec.model_validate({"name": "seldon", "hostPrefix": "*.seldon"})
        assert gateway.hostname("example.io") == "*.seldon.example.io"


def test_normalize_key():
    assert normalize_key("waitFor") == normalize_key("wait_for") == normalize_key("wait-for") == "waitfor"
