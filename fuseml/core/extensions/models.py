"""Data models for the Extension system"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, Dict, Iterator, List, Literal, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from fuseml.core.extensions.exceptions import InstallationError, InstallErrorCode


def normalize_key(key: Any) -> str:
    """Fold a document key for case-insensitive matching (waitFor == wait_for == waitfor)"""
    return re.sub(r"[-_]", "", str(key)).lower()


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


class LenientModel(BaseModel):
    """
    Base for documents exchanged with extension authors and the registry.

    Keys are matched case-insensitively and regardless of '_' or '-',
    unknown keys are ignored and numeric scalars are accepted for strings.
    """
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _fold_keys(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        names = {normalize_key(name): name for name in cls.model_fields}
        return {names.get(normalize_key(key), key): value for key, value in data.items()}


def _string_map(value: Any) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("configuration must be a mapping")
    return {str(k): _stringify(v) for k, v in value.items()}


# free-form configuration maps are sent to the registry as string -> string
StringMap = Annotated[Dict[str, str], BeforeValidator(_string_map)]


def _empty_to_default(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    return value


# ============================================
# Namespace ownership
# ============================================

class NamespaceOwnership(str, Enum):
    """Classification of a cluster namespace relative to this system"""
    ABSENT = "absent"
    OWNED = "owned"
    FOREIGN = "foreign"


# ============================================
# Install steps
# ============================================

class StepType(str, Enum):
    """Supported step types"""
    HELM = "helm"
    MANIFEST = "manifest"
    KUSTOMIZE = "kustomize"
    SCRIPT = "script"


class WaitForStep(LenientModel):
    """Readiness condition evaluated after a successful install step"""
    kind: str = "pod"
    namespace: str = ""
    condition: str = "Ready"
    selector: str = "all"
    timeout: int = Field(default=0, ge=0, description="Seconds; 0 means the global timeout")

    @field_validator("kind", mode="before")
    @classmethod
    def _default_kind(cls, v):
        return _empty_to_default(v, "pod")

    @field_validator("condition", mode="before")
    @classmethod
    def _default_condition(cls, v):
        return _empty_to_default(v, "Ready")

    @field_validator("selector", mode="before")
    @classmethod
    def _default_selector(cls, v):
        return _empty_to_default(v, "all")

    @field_validator("namespace", mode="before")
    @classmethod
    def _default_namespace(cls, v):
        return _empty_to_default(v, "")

    @field_validator("timeout", mode="before")
    @classmethod
    def _default_timeout(cls, v):
        return _empty_to_default(v, 0)

    @property
    def selects_all(self) -> bool:
        return self.selector == "all"


class BaseStep(LenientModel):
    """Fields shared by all step types"""
    namespace: str = ""
    wait_for: List[WaitForStep] = Field(default_factory=list)

    @field_validator("namespace", mode="before")
    @classmethod
    def _default_namespace(cls, v):
        return _empty_to_default(v, "")

    @field_validator("wait_for", mode="before")
    @classmethod
    def _default_wait_for(cls, v):
        return _empty_to_default(v, [])

    @property
    def label(self) -> str:
        """Short human readable reference used in logs and errors"""
        return f"{self.type}:{self.source}"

    @property
    def source(self) -> str:
        raise NotImplementedError


class HelmStep(BaseStep):
    """Helm release installed either from a chart archive or from a chart repository"""
    type: Literal["helm"] = "helm"
    location: str = ""
    repo: str = ""
    chart: str = ""
    values: str = ""
    version: str = ""

    @model_validator(mode="after")
    def _check_chart_source(self):
        if self.location:
            return self
        if not self.repo:
            raise ValueError("Neither chart repository nor chart location was provided")
        if not self.chart:
            raise ValueError("Chart name not provided")
        return self

    @property
    def uses_archive(self) -> bool:
        """Chart archive location takes precedence over repo + chart"""
        return bool(self.location)

    @property
    def source(self) -> str:
        if self.uses_archive:
            return self.location
        return f"{self.repo}/{self.chart}"


class _LocationStep(BaseStep):
    location: str

    @field_validator("location")
    @classmethod
    def _require_location(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("location cannot be empty")
        return v

    @property
    def source(self) -> str:
        return self.location


class ManifestStep(_LocationStep):
    """Plain kubernetes manifest applied with kubectl"""
    type: Literal["manifest"] = "manifest"


class KustomizeStep(_LocationStep):
    """Kustomize overlay directory applied with kubectl"""
    type: Literal["kustomize"] = "kustomize"


class ScriptStep(_LocationStep):
    """Executable script; responsible for its own idempotency"""
    type: Literal["script"] = "script"


InstallStep = Union[HelmStep, ManifestStep, KustomizeStep, ScriptStep]

_STEP_MODELS = {
    StepType.HELM: HelmStep,
    StepType.MANIFEST: ManifestStep,
    StepType.KUSTOMIZE: KustomizeStep,
    StepType.SCRIPT: ScriptStep,
}


def parse_step(raw: Any) -> InstallStep:
    """
    Build the typed step for one entry of the install/uninstall lists

    Steps are kept raw in the descriptor and turned into their typed variant
    right before execution, so an invalid step only fails when it is reached.

    Raises:
        InstallationError: Unsupported step type or missing/invalid fields
    """
    if not isinstance(raw, dict):
        raise InstallationError(
            f"Invalid step definition: {raw!r}",
            error_code=InstallErrorCode.INVALID_STEP
        )

    step_type = None
    for key, value in raw.items():
        if normalize_key(key) == "type":
            step_type = value
            break

    try:
        model = _STEP_MODELS[StepType(step_type)]
    except ValueError:
        raise InstallationError(
            f"Unsupported step type: {step_type}",
            error_code=InstallErrorCode.UNSUPPORTED_STEP_TYPE,
            failed_step=str(step_type),
            hint=f"Supported types: {', '.join(t.value for t in StepType)}"
        )

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        messages = "; ".join(err["msg"] for err in e.errors())
        raise InstallationError(
            f"Invalid {step_type} step: {messages}",
            error_code=InstallErrorCode.INVALID_STEP,
            failed_step=str(step_type),
            hint="Check the step definition in the extension description file"
        ) from e


# ============================================
# Gateways, RBAC
# ============================================

class GatewaySpec(LenientModel):
    """Ingress gateway exposing one of the extension's services"""
    namespace: str = ""
    name: str
    port: int = 0
    host_prefix: str = ""
    service_host: str = ""

    def hostname(self, domain: str) -> str:
        prefix = self.host_prefix or self.name
        return f"{prefix}.{domain}"


class RoleRule(LenientModel):
    """Rule granted to the shared workloads role"""
    api_groups: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    verbs: List[str] = Field(default_factory=list)


# ============================================
# Services, endpoints, credentials
# ============================================

class EndpointDescriptor(LenientModel):
    url: str
    type: str = ""
    configuration: StringMap = Field(default_factory=dict)


class CredentialDescriptor(LenientModel):
    id: str
    default: bool = False
    scope: str = ""
    projects: List[str] = Field(default_factory=list)
    users: List[str] = Field(default_factory=list)
    configuration: StringMap = Field(default_factory=dict)


class ServiceDescriptor(LenientModel):
    id: str
    resource: str = ""
    category: str = ""
    description: str = ""
    auth_required: bool = False
    endpoints: List[EndpointDescriptor] = Field(default_factory=list)
    credentials: List[CredentialDescriptor] = Field(default_factory=list)


class CredentialTransformValue(LenientModel):
    """Populate configuration key `config_value` from field `secret_value` of a secret"""
    config_value: str
    secret_value: str
    secret: str
    namespace: str


class CredentialTemplate(LenientModel):
    id: str
    transform: List[CredentialTransformValue] = Field(default_factory=list)


class ServiceCredentialTemplate(LenientModel):
    service_id: str
    credentials: List[CredentialTemplate] = Field(default_factory=list)


@dataclass(frozen=True)
class CredentialTransformRule:
    """One flattened transform: (service, credential, key) <- secret field"""
    service_id: str
    credential_id: str
    config_key: str
    namespace: str
    secret: str
    field: str


# ============================================
# Extension descriptor
# ============================================

class ExtensionDescriptor(LenientModel):
    """Parsed description.yaml of one extension"""
    name: str = ""
    product: str = ""
    version: str = ""
    description: str = ""
    namespace: str = ""
    zone: str = ""
    requires: List[str] = Field(default_factory=list)
    install: List[Dict[str, Any]] = Field(default_factory=list)
    uninstall: List[Dict[str, Any]] = Field(default_factory=list)
    gateways: List[GatewaySpec] = Field(default_factory=list)
    services: List[ServiceDescriptor] = Field(default_factory=list)
    service_credentials: List[ServiceCredentialTemplate] = Field(default_factory=list)
    role_rules: List[RoleRule] = Field(default_factory=list)

    # service id -> credential id -> configuration key -> value
    transformed_credentials: Dict[str, Dict[str, Dict[str, str]]] = Field(
        default_factory=dict, exclude=True
    )

    @field_validator(
        "requires", "install", "uninstall", "gateways", "services",
        "service_credentials", "role_rules", mode="before"
    )
    @classmethod
    def _null_lists(cls, v):
        return _empty_to_default(v, [])

    @field_validator("namespace", "zone", "product", "version", "description", "name", mode="before")
    @classmethod
    def _null_strings(cls, v):
        return _empty_to_default(v, "")

    def credential_transform_rules(self) -> Iterator[CredentialTransformRule]:
        for service in self.service_credentials:
            for credential in service.credentials:
                for transform in credential.transform:
                    yield CredentialTransformRule(
                        service_id=service.service_id,
                        credential_id=credential.id,
                        config_key=transform.config_value,
                        namespace=transform.namespace,
                        secret=transform.secret,
                        field=transform.secret_value,
                    )


# ============================================
# Registry wire models
# ============================================

class RegisteredStatus(LenientModel):
    registered: Optional[str] = None
    updated: Optional[str] = None


class RegisteredCredentialsStatus(LenientModel):
    created: Optional[str] = None
    updated: Optional[str] = None


class RegisteredEndpoint(LenientModel):
    url: str
    extension_id: Optional[str] = None
    service_id: Optional[str] = None
    type: Optional[str] = None
    configuration: StringMap = Field(default_factory=dict)
    status: Optional[Dict[str, Any]] = None


class RegisteredCredentials(LenientModel):
    id: str
    extension_id: Optional[str] = None
    service_id: Optional[str] = None
    default: bool = False
    scope: Optional[str] = None
    projects: List[str] = Field(default_factory=list)
    users: List[str] = Field(default_factory=list)
    configuration: StringMap = Field(default_factory=dict)
    status: Optional[RegisteredCredentialsStatus] = None


class RegisteredService(LenientModel):
    id: str
    extension_id: Optional[str] = None
    resource: Optional[str] = None
    category: Optional[str] = None
    description: Optional[str] = None
    auth_required: bool = False
    status: Optional[RegisteredStatus] = None
    endpoints: List[RegisteredEndpoint] = Field(default_factory=list)
    credentials: List[RegisteredCredentials] = Field(default_factory=list)


class RegisteredExtension(LenientModel):
    """Extension record as stored by the extension registry"""
    id: str
    product: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None
    zone: Optional[str] = None
    configuration: StringMap = Field(default_factory=dict)
    status: Optional[RegisteredStatus] = None
    services: List[RegisteredService] = Field(default_factory=list)
