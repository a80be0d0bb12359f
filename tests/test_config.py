"""Tests for configuration classes.

Tests SdxAuthSettings, its sections, layered TOML loading and the
export formats.
"""

from __future__ import annotations

import sys

from pathlib import Path

import pytest

from pydantic import ValidationError

from sdxauth.config import (
    BackendSettings,
    CILogonSettings,
    FabricSettings,
    ORCIDSettings,
    RefreshSettings,
    SdxAuthSettings,
    StoreSettings,
    clear_settings,
    get_settings,
    reload_settings,
)


if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


class TestProviderSettings:
    """Tests for the provider sections."""

    def test_cilogon_defaults(self) -> None:
        """CILogon points at the production endpoints."""
        settings = CILogonSettings()
        assert settings.token_endpoint == "https://cilogon.org/oauth2/token"
        assert settings.device_authorization_endpoint == "https://cilogon.org/oauth2/device/code"
        assert settings.use_pkce is False
        assert settings.client_id.startswith("cilogon:/client_id/")

    def test_orcid_defaults(self) -> None:
        """ORCID uses PKCE and allows the placeholder fallback."""
        settings = ORCIDSettings()
        assert settings.use_pkce is True
        assert settings.allow_placeholder_fallback is True
        assert settings.issuer_url == "https://orcid.org"

    def test_fabric_defaults(self) -> None:
        """FABRIC targets the credential manager."""
        settings = FabricSettings()
        assert settings.cm_base == "https://cm.fabric-testbed.net"
        assert settings.create_path == "/tokens/create"
        assert settings.project_name == "AtlanticWave-SDX"

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Section environment variables override defaults."""
        monkeypatch.setenv("SDXAUTH_ORCID__CLIENT_ID", "APP-FROM-ENV")
        monkeypatch.setenv("SDXAUTH_ORCID__ALLOW_PLACEHOLDER_FALLBACK", "false")
        settings = ORCIDSettings()
        assert settings.client_id == "APP-FROM-ENV"
        assert settings.allow_placeholder_fallback is False

    def test_default_expires_in_positive(self) -> None:
        """The fallback lifetime must be positive."""
        with pytest.raises(ValidationError):
            CILogonSettings(default_expires_in=0)


class TestRefreshSettings:
    """Tests for RefreshSettings."""

    def test_defaults(self) -> None:
        """All providers are watched every minute."""
        settings = RefreshSettings()
        assert settings.check_interval_seconds == 60
        assert settings.refresh_window_seconds == 300
        assert settings.providers == ["cilogon", "orcid", "fabric"]

    def test_providers_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Providers may be given as a comma-separated list."""
        monkeypatch.setenv("SDXAUTH_REFRESH__PROVIDERS", "cilogon, fabric")
        assert RefreshSettings().providers == ["cilogon", "fabric"]

    def test_unknown_provider(self) -> None:
        """Unknown provider names are rejected."""
        with pytest.raises(ValidationError, match="Unknown provider"):
            RefreshSettings(providers=["cilogon", "github"])


class TestBackendSettings:
    """Tests for BackendSettings."""

    def test_base_url(self) -> None:
        """The base URL follows the environment."""
        settings = BackendSettings(
            environment="staging",
            base_url_by_environment={"staging": "https://staging.example"},
        )
        assert settings.base_url == "https://staging.example"


class TestStoreSettings:
    """Tests for StoreSettings."""

    def test_backend_choices(self) -> None:
        """Only known store backends are accepted."""
        assert StoreSettings().backend == "file"
        with pytest.raises(ValidationError):
            StoreSettings(backend="redis")


class TestLayeredLoading:
    """Tests for TOML and environment precedence."""

    def test_sdxauth_toml(self, tmp_path: Path) -> None:
        """./sdxauth.toml overrides defaults."""
        (tmp_path / "sdxauth.toml").write_text(
            '[orcid]\nclient_id = "APP-TOML"\n\n[refresh]\ncheck_interval_seconds = 15\n',
            encoding="utf-8",
        )
        settings = SdxAuthSettings()
        assert settings.orcid.client_id == "APP-TOML"
        assert settings.refresh.check_interval_seconds == 15

    def test_pyproject_section(self, tmp_path: Path) -> None:
        """[tool.sdxauth] in pyproject.toml is read."""
        (tmp_path / "pyproject.toml").write_text(
            '[tool.sdxauth.backend]\nenvironment = "staging"\n', encoding="utf-8"
        )
        assert SdxAuthSettings().backend.environment == "staging"

    def test_user_config_overrides_project(self, tmp_path: Path) -> None:
        """The user config wins over project files."""
        (tmp_path / "sdxauth.toml").write_text('[log]\nlevel = "INFO"\n', encoding="utf-8")
        user_dir = tmp_path / "home" / ".config" / "sdxauth"
        user_dir.mkdir(parents=True)
        (user_dir / "config.toml").write_text('[log]\nlevel = "DEBUG"\n', encoding="utf-8")
        assert SdxAuthSettings().log.level == "DEBUG"

    def test_config_file_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """SDXAUTH_CONFIG_FILE names an extra config file."""
        path = tmp_path / "custom.toml"
        path.write_text('[fabric]\nproject_id = "p-42"\n', encoding="utf-8")
        monkeypatch.setenv("SDXAUTH_CONFIG_FILE", str(path))
        assert SdxAuthSettings().fabric.project_id == "p-42"

    def test_env_overrides_toml(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables win over TOML files."""
        (tmp_path / "sdxauth.toml").write_text(
            '[orcid]\nclient_id = "APP-TOML"\nscope = "/authenticate"\n', encoding="utf-8"
        )
        monkeypatch.setenv("SDXAUTH_ORCID__CLIENT_ID", "APP-ENV")
        settings = SdxAuthSettings()
        assert settings.orcid.client_id == "APP-ENV"
        assert settings.orcid.scope == "/authenticate"
        assert ORCIDSettings().client_id == "APP-ENV"

    def test_partial_section_keeps_toml(self, tmp_path: Path) -> None:
        """Constructor values for one field keep TOML values for the others."""
        (tmp_path / "sdxauth.toml").write_text(
            '[store]\nbackend = "keyring"\nservice_name = "sdx-test"\n', encoding="utf-8"
        )
        settings = SdxAuthSettings(store={"backend": "memory"})
        assert settings.store.backend == "memory"
        assert settings.store.service_name == "sdx-test"

    def test_invalid_toml_skipped(self, tmp_path: Path) -> None:
        """Unparsable files are ignored."""
        (tmp_path / "sdxauth.toml").write_text("[orcid\nbroken", encoding="utf-8")
        assert SdxAuthSettings().orcid.client_id == ORCIDSettings().client_id

    def test_explicit_values_win(self, tmp_path: Path) -> None:
        """Constructor arguments override TOML."""
        (tmp_path / "sdxauth.toml").write_text('[store]\nbackend = "keyring"\n', encoding="utf-8")
        settings = SdxAuthSettings(store={"backend": "memory"})
        assert settings.store.backend == "memory"


class TestExport:
    """Tests for to_toml, to_env and show."""

    def test_to_toml_redacts_secrets(self) -> None:
        """Client secrets never appear in exports."""
        settings = SdxAuthSettings(cilogon={"client_secret": "hunter2"})
        toml = settings.to_toml()
        assert "hunter2" not in toml
        assert 'client_secret = "********"' in toml
        assert "[cilogon]" in toml
        assert "[backend.base_url_by_environment]" in toml

    def test_to_toml_parses(self) -> None:
        """The TOML export is valid TOML."""
        data = tomllib.loads(SdxAuthSettings().to_toml())
        assert data["refresh"]["providers"] == ["cilogon", "orcid", "fabric"]
        assert data["orcid"]["use_pkce"] is True

    def test_to_env(self) -> None:
        """Environment export uses section prefixes."""
        settings = SdxAuthSettings(orcid={"client_secret": "hunter2"})
        env = settings.to_env()
        assert 'export SDXAUTH_ORCID__USE_PKCE="true"' in env
        assert 'export SDXAUTH_REFRESH__PROVIDERS="cilogon,orcid,fabric"' in env
        assert "hunter2" not in env

    def test_show(self) -> None:
        """show() lists every section."""
        output = SdxAuthSettings().show()
        for title in ("CILogon", "ORCID", "FABRIC", "Backend", "Refresh Monitor", "Token Store"):
            assert title in output


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self) -> None:
        """get_settings() returns the same instance until cleared."""
        first = get_settings()
        assert get_settings() is first
        clear_settings()
        assert get_settings() is not first

    def test_reload(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """reload_settings() picks up new environment values."""
        get_settings()
        monkeypatch.setenv("SDXAUTH_LOG__LEVEL", "ERROR")
        assert reload_settings().log.level == "ERROR"
