"""
설정 로드 및 검증 테스트
"""

import pytest

from infra.core.config import Config
from infra.core.exceptions import ConfigurationError


class TestConfigValidation:
    """필수 설정 검증"""

    def test_missing_encryption_key(self, tmp_path, monkeypatch):
        """ENCRYPTION_KEY 가 없으면 실패"""
        monkeypatch.delenv("ENCRYPTION_KEY")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(env_file=tmp_path / "missing.env")
        assert exc_info.value.details["missing_settings"] == ["ENCRYPTION_KEY"]

    def test_invalid_batch_count(self, tmp_path, monkeypatch):
        """배치 크기는 1 이상"""
        monkeypatch.setenv("OAUTH2_BATCH_COUNT", "0")

        with pytest.raises(ConfigurationError):
            Config(env_file=tmp_path / "missing.env")

    def test_env_file_loaded(self, tmp_path, monkeypatch):
        """.env 파일 값 로드"""
        # 테스트 종료 시 .env 로 들어온 값까지 제거되도록 등록
        monkeypatch.setenv("OAUTH2_SIGN_UP_URL", "placeholder")
        monkeypatch.delenv("OAUTH2_SIGN_UP_URL")
        env_file = tmp_path / ".env"
        env_file.write_text("OAUTH2_SIGN_UP_URL=/join\n")

        config = Config(env_file=env_file)

        assert config.sign_up_url == "/join"


class TestConfigDefaults:
    """기본값 확인"""

    def test_defaults(self, config):
        assert config.auth_login_url_prefix == "/authorize"
        assert config.redirect_url_prefix == "/callback"
        assert config.auto_sign_up is True
        assert config.default_authorities == ["ROLE_USER"]
        assert config.temporary_user_authorities == ["ROLE_TEMPORARY_USER"]
        assert config.ignore_check_state is False
        assert config.state_timeout_seconds == 180
        assert config.enable_auth_token_table is True
        assert config.enable_refresh_token_job is False
        assert config.batch_count == 1000
        assert config.remaining_expire_in_hours == 24
        assert config.redis_url is None

    def test_redirect_uri(self, config):
        """콜백 URL = domain + prefix + provider"""
        assert config.redirect_uri("github") == "http://auth.test/callback/github"

    def test_provider_settings(self, config, monkeypatch):
        """provider 별 설정 읽기"""
        monkeypatch.setenv("OAUTH2_GOOGLE_CLIENT_ID", "g-id")
        monkeypatch.setenv("OAUTH2_GOOGLE_SCOPES", "openid email")

        settings = config.provider_settings("google")

        assert settings["kind"] == "google"
        assert settings["client_id"] == "g-id"
        assert settings["client_secret"] is None
        assert settings["scopes"] == ["openid", "email"]

    def test_to_dict_hides_secrets(self, config, monkeypatch):
        """민감한 값은 노출하지 않음"""
        monkeypatch.setenv("OAUTH2_TEMPORARY_USER_PASSWORD", "temp-pass")

        values = config.to_dict()

        assert "encryption_key" not in values
        assert "temp-pass" not in str(values)
