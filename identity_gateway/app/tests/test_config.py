"""
Configuration Tests

Tests environment loading, mapping validation and the fail-fast
construction of ``AuthConfig``.
"""

import pytest
from pydantic import ValidationError

from identity_gateway.app.auth.errors import ConfigurationError
from identity_gateway.app.config import (
    Settings,
    auth_config_from_settings,
    create_auth_config,
    get_auth_config,
    get_settings,
    validate_configuration,
)
from identity_gateway.app.main import create_app

from .support import CLIENT_ID, SESSION_SECRET, TENANT_ID, make_config


REQUIRED_ENV = {
    "AZURE_TENANT_ID": TENANT_ID,
    "AZURE_CLIENT_ID": CLIENT_ID,
    "AZURE_CLIENT_SECRET": "test-client-secret",
    "AZURE_REDIRECT_URI": "https://app.example.com/auth/callback",
    "SESSION_JWT_SECRET": SESSION_SECRET,
}


@pytest.fixture
def env(monkeypatch, tmp_path):
    for key, value in REQUIRED_ENV.items():
        monkeypatch.setenv(key, value)
    # Keep a developer's .env out of the way.
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    get_auth_config.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
    get_auth_config.cache_clear()


def load_settings() -> Settings:
    return Settings(_env_file=None)


class TestCreateAuthConfig:

    def test_defaults(self):
        config = make_config()

        assert config.provider == "azure"
        assert config.azure.scopes == ("openid", "profile", "email")
        assert config.azure.authority == f"https://login.microsoftonline.com/{TENANT_ID}"
        assert config.azure.issuer == f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
        assert config.session_cookie_name == "ajp_identity_session"
        assert config.session_max_age == 28800
        assert config.post_login_redirect_path == "/"
        assert config.protected_paths == ()
        assert not config.azure.should_fetch_app_roles

    def test_overrides_reach_nested_provider_config(self):
        config = make_config(
            service_principal_id="sp-1",
            group_role_strategy="union",
            session_max_age=600,
            login_path="/signin",
        )

        assert config.azure.service_principal_id == "sp-1"
        assert config.azure.group_role_strategy == "union"
        assert config.azure.should_fetch_app_roles
        assert config.session_max_age == 600
        assert config.login_path == "/signin"

    def test_config_is_immutable(self):
        config = make_config()

        with pytest.raises(ValidationError):
            config.jwt_secret = "changed"

    @pytest.mark.parametrize("field", ["tenant_id", "client_id", "client_secret", "redirect_uri", "jwt_secret"])
    def test_missing_required_value(self, field):
        with pytest.raises(ConfigurationError, match=field):
            make_config(**{field: ""})

    def test_unsupported_provider(self):
        with pytest.raises(ConfigurationError, match="Unsupported provider"):
            make_config(provider="okta")

    def test_invalid_override_type(self):
        with pytest.raises(ConfigurationError):
            create_auth_config(
                tenant_id=TENANT_ID,
                client_id=CLIENT_ID,
                client_secret="s",
                redirect_uri="https://app.example.com/auth/callback",
                jwt_secret=SESSION_SECRET,
                session_max_age="not-a-number",
            )


class TestSettings:

    def test_loads_from_environment(self, env):
        settings = load_settings()

        assert settings.AZURE_TENANT_ID == TENANT_ID
        assert settings.AUTH_PROVIDER == "azure"
        assert settings.scopes_list == ["openid", "profile", "email"]
        assert settings.protected_paths_list == []
        assert settings.role_mapping == {}

    def test_lists_are_split(self, env):
        env.setenv("AZURE_SCOPES", "openid, profile User.Read")
        env.setenv("PROTECTED_PATHS", "/app/*, /reports")
        env.setenv("ALLOWED_ORIGINS", "https://a.example.com,https://b.example.com")

        settings = load_settings()

        assert settings.scopes_list == ["openid", "profile", "User.Read"]
        assert settings.protected_paths_list == ["/app/*", "/reports"]
        assert settings.allowed_origins_list == ["https://a.example.com", "https://b.example.com"]

    def test_role_mappings_are_parsed(self, env):
        env.setenv("AZURE_ROLE_MAPPING", '{"role-guid-1": "admin"}')
        env.setenv("AZURE_GROUP_ROLE_MAPPING", '{"admins": "admin", "readers": "reader"}')

        settings = load_settings()

        assert settings.role_mapping == {"role-guid-1": "admin"}
        assert list(settings.group_role_mapping) == ["admins", "readers"]

    @pytest.mark.parametrize("raw", ["not json", '["admin"]', '{"admins": 1}'])
    def test_invalid_role_mapping(self, env, raw):
        env.setenv("AZURE_ROLE_MAPPING", raw)

        with pytest.raises(ValidationError):
            load_settings()

    def test_invalid_group_strategy(self, env):
        env.setenv("AZURE_GROUP_ROLE_STRATEGY", "intersection")

        with pytest.raises(ValidationError):
            load_settings()

    def test_short_session_secret_rejected(self, env):
        env.setenv("SESSION_JWT_SECRET", "too-short")

        with pytest.raises(ValidationError):
            load_settings()

    def test_missing_required_variable(self, env):
        env.delenv("AZURE_CLIENT_SECRET")

        with pytest.raises(ValidationError):
            load_settings()

    def test_get_settings_wraps_validation_errors(self, env):
        env.delenv("AZURE_TENANT_ID")

        with pytest.raises(ConfigurationError):
            get_settings()


class TestSettingsToAuthConfig:

    def test_translation(self, env):
        env.setenv("AZURE_SERVICE_PRINCIPAL_ID", "sp-1")
        env.setenv("AZURE_GROUP_ROLE_MAPPING", '{"admins": "admin"}')
        env.setenv("PROTECTED_PATHS", "/app/*")
        env.setenv("SESSION_MAX_AGE_SECONDS", "3600")

        config = auth_config_from_settings(load_settings())

        assert config.azure.service_principal_id == "sp-1"
        assert config.azure.group_role_mapping == {"admins": "admin"}
        assert config.protected_paths == ("/app/*",)
        assert config.session_max_age == 3600

    def test_fetch_toggle(self, env):
        env.setenv("AZURE_SERVICE_PRINCIPAL_ID", "sp-1")
        env.setenv("AZURE_FETCH_APP_ROLES", "false")

        config = auth_config_from_settings(load_settings())

        assert not config.azure.should_fetch_app_roles

    def test_validation_report(self, env):
        env.setenv("AZURE_REDIRECT_URI", "http://app.example.com/auth/callback")
        env.setenv("LOGOUT_REDIRECT_PATH", "//elsewhere")

        report = validate_configuration(load_settings())

        assert report["valid"]
        assert any("AZURE_REDIRECT_URI" in w for w in report["warnings"])
        assert any("LOGOUT_REDIRECT_PATH" in w for w in report["warnings"])

    def test_login_path_inside_protected_paths_is_an_error(self, env):
        env.setenv("PROTECTED_PATHS", "/app/*")
        env.setenv("LOGIN_PATH", "/app/login")

        report = validate_configuration(load_settings())

        assert not report["valid"]
        assert any("LOGIN_PATH" in e for e in report["errors"])


class TestCreateAppFromEnvironment:
    """Test suite for create_app() without an explicit config"""

    def test_uses_environment_config(self, env):
        env.setenv("PROTECTED_PATHS", "/app/*")

        app = create_app()

        config = app.state.auth_flow.config
        assert config is get_auth_config()
        assert config.azure.tenant_id == TENANT_ID
        assert config.protected_paths == ("/app/*",)

    def test_missing_variable_fails_at_startup(self, env):
        env.delenv("SESSION_JWT_SECRET")

        with pytest.raises(ConfigurationError):
            create_app()

    def test_validation_errors_fail_at_startup(self, env):
        env.setenv("PROTECTED_PATHS", "/login")

        with pytest.raises(ConfigurationError, match="LOGIN_PATH"):
            create_app()
