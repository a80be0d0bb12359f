"""Configuration system for sdxauth using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.sdxauth] section (project-level)
3. ./sdxauth.toml (project-level, explicit)
4. ~/.config/sdxauth/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use SDXAUTH_ prefix with nested delimiter __.
Example: SDXAUTH_ORCID__CLIENT_ID, SDXAUTH_REFRESH__CHECK_INTERVAL_SECONDS
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    NoDecode,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .exceptions import ConfigurationError


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    # Project-level pyproject.toml [tool.sdxauth] (lowest file priority)
    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    sdxauth_toml = Path("sdxauth.toml")
    if sdxauth_toml.exists():
        files.append(sdxauth_toml)

    # User-level config (overrides project configs)
    if sys.platform == "win32":
        user_config = Path(os.environ.get("APPDATA", "~")) / "sdxauth" / "config.toml"
    else:
        user_config = Path("~/.config/sdxauth/config.toml")
    user_config = user_config.expanduser()
    if user_config.exists():
        files.append(user_config)

    # Environment variable override for config file (highest file priority)
    env_config = os.environ.get("SDXAUTH_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files.

    Unreadable or invalid files are skipped.
    """
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue

        # Handle pyproject.toml [tool.sdxauth] section
        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("sdxauth", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
}

_REDACTED = "********"


class _TomlSectionSource(PydanticBaseSettingsSource):
    """One table of the merged TOML configuration, ranked below the environment."""

    def __init__(self, settings_cls: type[BaseSettings], section: str) -> None:
        super().__init__(settings_cls)
        table = _load_toml_config().get(section, {})
        self._table: dict[str, Any] = table if isinstance(table, dict) else {}

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._table.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {k: v for k, v in self._table.items() if k in self.settings_cls.model_fields}


class _SectionSettings(BaseSettings):
    """A configuration section read from its TOML table and ``SDXAUTH_<SECTION>__`` env.

    Precedence, highest first: constructor arguments, environment
    variables, TOML files, defaults.
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        prefix = settings_cls.model_config.get("env_prefix", "")
        section = prefix.removeprefix("SDXAUTH_").rstrip("_").lower()
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            _TomlSectionSource(settings_cls, section),
            file_secret_settings,
        )


class ProviderSettings(_SectionSettings):
    """Settings shared by the OAuth providers."""

    model_config = SettingsConfigDict(extra="ignore")

    client_id: str = Field(default="", description="OAuth2 client ID")
    client_secret: str = Field(
        default="",
        description="OAuth2 client secret (empty for public clients)",
    )
    scope: str = Field(default="openid email profile", description="Space-separated scopes")
    authorization_endpoint: str = Field(default="", description="Authorization endpoint URL")
    token_endpoint: str = Field(default="", description="Token endpoint URL")
    revocation_endpoint: str = Field(default="", description="RFC 7009 revocation endpoint URL")
    redirect_uri: str = Field(
        default="",
        description="Redirect URI registered with the provider (empty to use the callback page)",
    )
    default_expires_in: int = Field(
        default=3600,
        gt=0,
        description="Lifetime assumed when a token response omits expires_in",
    )


class CILogonSettings(ProviderSettings):
    """CILogon (academic federation) settings.

    Environment prefix: SDXAUTH_CILOGON__
    Example: SDXAUTH_CILOGON__CLIENT_ID=cilogon:/client_id/...
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_CILOGON__",
        extra="ignore",
    )

    client_id: str = "cilogon:/client_id/e33e29a20f84e0edd144d1e9a6e2b0"
    authorization_endpoint: str = "https://cilogon.org/authorize"
    token_endpoint: str = "https://cilogon.org/oauth2/token"
    revocation_endpoint: str = "https://cilogon.org/oauth2/revoke"
    device_authorization_endpoint: str = Field(
        default="https://cilogon.org/oauth2/device/code",
        description="RFC 8628 device authorization endpoint",
    )
    use_pkce: bool = Field(
        default=False,
        description="Send a PKCE challenge on the popup authorization-code path",
    )


class ORCIDSettings(ProviderSettings):
    """ORCID (researcher identifier) settings.

    Environment prefix: SDXAUTH_ORCID__
    Example: SDXAUTH_ORCID__CLIENT_ID=APP-XXXXXXXXXXXXXXXX
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_ORCID__",
        extra="ignore",
    )

    client_id: str = "APP-S3BU1LVHOTHITEU2"
    authorization_endpoint: str = "https://orcid.org/oauth/authorize"
    token_endpoint: str = "https://orcid.org/oauth/token"
    revocation_endpoint: str = "https://orcid.org/oauth/revoke"
    issuer_url: str = "https://orcid.org"
    use_pkce: bool = True
    allow_placeholder_fallback: bool = Field(
        default=True,
        description=(
            "Synthesize a flagged placeholder token when the direct code "
            "exchange cannot reach the token endpoint"
        ),
    )


class FabricSettings(_SectionSettings):
    """FABRIC credential manager settings.

    Environment prefix: SDXAUTH_FABRIC__
    Example: SDXAUTH_FABRIC__PROJECT_ID=1ecd9d6a-...
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_FABRIC__",
        extra="ignore",
    )

    cm_base: str = "https://cm.fabric-testbed.net"
    create_path: str = "/tokens/create"
    refresh_path: str = "/tokens/refresh"
    revocation_endpoint: str = ""
    project_id: str = "1ecd9d6a-7701-40fa-b78e-b2293c9526ed"
    project_name: str = "AtlanticWave-SDX"
    scope: str = "all"
    default_expires_in: int = Field(default=3600, gt=0)


class BackendSettings(_SectionSettings):
    """Token handoff backend settings.

    Environment prefix: SDXAUTH_BACKEND__
    Example: SDXAUTH_BACKEND__ENVIRONMENT=staging
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_BACKEND__",
        extra="ignore",
    )

    environment: str = Field(default="production", description="Sent as the X-Env header")
    base_url_by_environment: dict[str, str] = Field(
        default_factory=lambda: {"production": "https://sdxapi.atlanticwave-sdx.ai"},
        description="Backend base URL for each environment",
    )
    token_handoff_path: str = "/auth/oidc-token"
    timeout_seconds: float = Field(default=30.0, gt=0)

    @property
    def base_url(self) -> str:
        """Base URL for the configured environment."""
        try:
            return self.base_url_by_environment[self.environment]
        except KeyError:
            msg = f"No backend URL configured for environment '{self.environment}'"
            raise ConfigurationError(msg, environment=self.environment) from None


class RefreshSettings(_SectionSettings):
    """Token refresh monitor settings.

    Environment prefix: SDXAUTH_REFRESH__
    Example: SDXAUTH_REFRESH__CHECK_INTERVAL_SECONDS=30
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_REFRESH__",
        extra="ignore",
    )

    check_interval_seconds: float = Field(default=60.0, gt=0)
    refresh_window_seconds: int = Field(
        default=300,
        gt=0,
        description="Refresh tokens that expire within this many seconds",
    )
    warning_window_seconds: int = Field(
        default=300,
        gt=0,
        description="Warn about non-refreshable tokens within this many seconds",
    )
    providers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["cilogon", "orcid", "fabric"],
        description="Providers watched by the refresh monitor (comma-separated in env)",
    )

    @field_validator("providers", mode="before")
    @classmethod
    def _parse_providers(cls, v: Any) -> list[str]:
        """Accept a comma-separated string (from env var) or a list."""
        if isinstance(v, str):
            v = [p.strip() for p in v.split(",") if p.strip()]
        if not isinstance(v, list):
            msg = f"providers must be a list or comma-separated string, got {type(v).__name__}"
            raise TypeError(msg)
        unknown = set(v) - {"cilogon", "orcid", "fabric"}
        if unknown:
            msg = f"Unknown provider(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        return v


class PopupSettings(_SectionSettings):
    """Authorization popup settings.

    Environment prefix: SDXAUTH_POPUP__
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_POPUP__",
        extra="ignore",
    )

    width: int = Field(default=600, gt=0)
    height: int = Field(default=700, gt=0)
    timeout_seconds: float = Field(default=300.0, gt=0)
    closed_check_interval_seconds: float = Field(default=1.0, gt=0)


class StoreSettings(_SectionSettings):
    """Token store settings.

    Environment prefix: SDXAUTH_STORE__
    Example: SDXAUTH_STORE__BACKEND=keyring
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_STORE__",
        extra="ignore",
    )

    backend: Literal["memory", "file", "keyring"] = "file"
    path: str = Field(default="~/.sdxauth/tokens.json", description="File backend location")
    service_name: str = Field(default="sdxauth", description="Keyring service name")
    key_prefix: str = Field(default="auth", description="Prefix of provider-qualified keys")


class LogSettings(_SectionSettings):
    """Logging settings.

    Environment prefix: SDXAUTH_LOG__
    Example: SDXAUTH_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


_SECTIONS: list[tuple[str, str, str]] = [
    ("CILogon", "cilogon", "CILOGON"),
    ("ORCID", "orcid", "ORCID"),
    ("FABRIC", "fabric", "FABRIC"),
    ("Backend", "backend", "BACKEND"),
    ("Refresh Monitor", "refresh", "REFRESH"),
    ("Popup", "popup", "POPUP"),
    ("Token Store", "store", "STORE"),
    ("Logging", "log", "LOG"),
]


class SdxAuthSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: SDXAUTH__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.sdxauth] section
    3. ./sdxauth.toml (project-level)
    4. ~/.config/sdxauth/config.toml (user-level, overrides project)
    5. SDXAUTH_CONFIG_FILE
    6. Environment variables
    7. Constructor arguments (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="SDXAUTH__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    cilogon: CILogonSettings = Field(default_factory=CILogonSettings)
    orcid: ORCIDSettings = Field(default_factory=ORCIDSettings)
    fabric: FabricSettings = Field(default_factory=FabricSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    refresh: RefreshSettings = Field(default_factory=RefreshSettings)
    popup: PopupSettings = Field(default_factory=PopupSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        # Sections given as dicts still read TOML and env for the other fields
        for name, value in data.items():
            field = type(self).model_fields.get(name)
            if isinstance(value, dict) and field is not None and field.default_factory:
                data[name] = field.default_factory(**value)
        super().__init__(**data)

    def _section_data(self) -> dict[str, Any]:
        """Dump all sections with sensitive fields excluded."""
        return self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, attr, _ in _SECTIONS},
        )

    def _redacted_fields(self, attr_name: str) -> list[str]:
        section_cls = type(getattr(self, attr_name))
        return sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# sdxauth Configuration", "# Generated by: sdxauth config --toml", ""]
        all_data = self._section_data()

        for _, section_name, _ in _SECTIONS:
            section_data = all_data.get(section_name, {})
            lines.append(f"[{section_name}]")
            nested: list[tuple[str, dict[str, Any]]] = []
            for field_name, field_value in section_data.items():
                if isinstance(field_value, dict):
                    nested.append((field_name, field_value))
                    continue
                lines.append(f"{field_name} = {_toml_value(field_value)}")
            lines.extend(f'{rn} = "{_REDACTED}"' for rn in self._redacted_fields(section_name))
            for table_name, table in nested:
                lines.append(f"\n[{section_name}.{table_name}]")
                lines.extend(f"{k} = {_toml_value(v)}" for k, v in table.items())
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# sdxauth Environment Variables",
            "# Generated by: sdxauth config --env",
            "",
        ]
        all_data = self._section_data()

        for _, attr_name, env_prefix in _SECTIONS:
            section_data = all_data.get(attr_name, {})
            for field_name, field_value in section_data.items():
                if isinstance(field_value, dict):
                    continue
                env_name = f"SDXAUTH_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, list):
                    value_str = ",".join(str(v) for v in field_value)
                elif isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            for redacted_name in self._redacted_fields(attr_name):
                env_name = f"SDXAUTH_{env_prefix}__{redacted_name.upper()}"
                lines.append(f'export {env_name}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["sdxauth Configuration", "=" * 60, ""]
        all_data = self._section_data()

        for display_name, attr_name, _ in _SECTIONS:
            section_data = all_data.get(attr_name, {})
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in section_data.items():
                # Truncate long values
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:30} = {value_str}")
            lines.extend(f"  {rn:30} = {_REDACTED}" for rn in self._redacted_fields(attr_name))

        return "\n".join(lines)


def _toml_value(value: Any) -> str:
    if isinstance(value, list):
        return "[" + ", ".join(f'"{v}"' for v in value) + "]"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return f'"{value}"'
    return str(value)


@lru_cache(maxsize=1)
def get_settings() -> SdxAuthSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return SdxAuthSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> SdxAuthSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
