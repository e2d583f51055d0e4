"""
Centralized Configuration Management for the FuseML extension manager

Provides pydantic-based configuration with:
- Environment variable loading (.env support)
- Type validation
- Default values

Every component accepts an explicit config object; get_config() only
supplies the process-wide default when none is given.

Usage:
    from fuseml.core.config import get_config

    config = get_config()
    print(config.workloads_namespace)
    print(config.registry_base_url)
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExtensionManagerConfig(BaseSettings):
    """
    Configuration for extension installation and registration

    All settings can be overridden via environment variables with FUSEML_ prefix.
    For example: FUSEML_SYSTEM_DOMAIN, FUSEML_DEFAULT_TIMEOUT, etc.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FUSEML_",
        case_sensitive=False,
        extra="ignore",
    )

    # ============================================
    # Cluster Layout
    # ============================================

    workloads_namespace: str = Field(
        default="fuseml-workloads",
        description="Shared workloads namespace; never deleted by an extension uninstall"
    )

    ownership_label_key: str = Field(
        default="fuseml.io/deployment",
        description="Label marking a namespace as created and managed by FuseML"
    )

    ownership_label_value: str = Field(
        default="true",
        description="Value of the ownership label"
    )

    workloads_role: str = Field(
        default="fuseml-workloads",
        description="Role in the workloads namespace extended by extension RBAC rules"
    )

    # ============================================
    # Extension Assets
    # ============================================

    description_filename: str = Field(
        default="description.yaml",
        description="Well-known name of the description file under <repository>/<extension>/"
    )

    scratch_prefix: str = Field(
        default="fuseml-extension",
        description="Prefix of the temporary directories created per operation"
    )

    download_max_size: int = Field(
        default=50 * 1024 * 1024,  # 50MB
        description="Maximum size of a downloaded asset in bytes"
    )

    # ============================================
    # Installation Behaviour
    # ============================================

    default_timeout: int = Field(
        default=300,
        description="Timeout in seconds for wait-for conditions that do not declare one"
    )

    force_reinstall: bool = Field(
        default=False,
        description="Upgrade/reapply extensions whose namespace already exists and is owned"
    )

    wait_poll_interval: float = Field(
        default=2.0,
        description="Seconds between polls while waiting for resources to appear"
    )

    # ============================================
    # Registry / Networking
    # ============================================

    system_domain: Optional[str] = Field(
        default=None,
        description="Domain under which FuseML services and gateways are exposed"
    )

    registry_url: Optional[str] = Field(
        default=None,
        description="Extension registry URL (defaults to http://<core_service_name>.<system_domain>)"
    )

    core_service_name: str = Field(
        default="fuseml-core",
        description="Host prefix of the service running the extension registry"
    )

    http_timeout: int = Field(
        default=30,
        description="Timeout in seconds for each registry and download request"
    )

    http_max_retries: int = Field(
        default=4,
        description="Retries for transient transport failures"
    )

    # ============================================
    # Diagnostics
    # ============================================

    debug: bool = Field(
        default=False,
        description="Enable debug mode (tool output and HTTP retry logging)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(
                f"log_level must be one of: {', '.join(valid_levels)}"
            )
        return v.upper()

    @field_validator("default_timeout", "http_timeout")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @property
    def registry_base_url(self) -> str:
        """Get the extension registry URL.

        Priority:
        1. Explicitly set registry_url
        2. http://<core_service_name>.<system_domain>

        Raises:
            ValueError: If neither registry_url nor system_domain is set
        """
        if self.registry_url:
            return self.registry_url.rstrip("/")
        if not self.system_domain:
            raise ValueError("system_domain value not provided")
        return f"http://{self.core_service_name}.{self.system_domain}"


# Global config instance
_config: Optional[ExtensionManagerConfig] = None


def get_config(force_reload: bool = False) -> ExtensionManagerConfig:
    """
    Get the global configuration instance

    Args:
        force_reload: Force reload configuration from environment

    Returns:
        ExtensionManagerConfig instance
    """
    global _config

    if _config is None or force_reload:
        _config = ExtensionManagerConfig()

    return _config
