"""
Tests for eld_integration_hub.config and the logging setup.

Tests model validation rules, YAML loading, and environment overrides.
"""

import logging
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from eld_integration_hub.common.logger import PACKAGE_LOGGER_NAME, setup_logger
from eld_integration_hub.config import (
    ELDHubConfig,
    HttpConfig,
    LoggingConfig,
    ProviderConfig,
    ReaderConfig,
    SyncConfig,
    load_config,
)


class TestProviderConfig:
    """Test ProviderConfig validation."""

    def test_base_url_trailing_slash_stripped(self) -> None:
        """Should normalize the base URL."""
        config = ProviderConfig(base_url='https://sandbox.gomotive.com/v1/')

        assert config.base_url == 'https://sandbox.gomotive.com/v1'

    def test_base_url_requires_scheme(self) -> None:
        """Should reject a base URL without http(s)."""
        with pytest.raises(ValidationError, match='base_url'):
            ProviderConfig(base_url='api.gomotive.com')

    def test_timeouts_must_be_positive(self) -> None:
        """Should reject non-positive timeout values."""
        with pytest.raises(ValidationError, match='positive'):
            ProviderConfig(request_timeout=(0.0, 30.0))

    def test_secret_is_masked(self) -> None:
        """Should not reveal the client secret in repr."""
        config = ProviderConfig(client_secret='top-secret')  # pyright: ignore[reportArgumentType]

        assert 'top-secret' not in repr(config)


class TestSectionValidation:
    """Test cross-field rules on the other sections."""

    def test_backoff_multiplier_must_be_positive(self) -> None:
        """Should reject a zero backoff multiplier."""
        with pytest.raises(ValidationError):
            HttpConfig(backoff_multiplier=0.0)

    def test_critical_threshold_cannot_exceed_low_time(self) -> None:
        """Should reject a critical threshold above the low-time threshold."""
        with pytest.raises(ValidationError, match='hos_critical_minutes'):
            ReaderConfig(hos_low_time_minutes=30, hos_critical_minutes=60)

    def test_sync_domains_must_be_unique(self) -> None:
        """Should reject repeated sync domains."""
        with pytest.raises(ValidationError, match='must not repeat'):
            SyncConfig(domains=('vehicles', 'vehicles'))

    def test_unknown_section_rejected(self) -> None:
        """Should forbid keys the configuration does not define."""
        with pytest.raises(ValidationError):
            ELDHubConfig.model_validate({'pipeline': {}})

    def test_provider_keys_lowercased(self) -> None:
        """Should store provider sections under lowercase ids."""
        config = ELDHubConfig(providers={'Motive': ProviderConfig(client_id='abc')})

        assert config.provider_config('MOTIVE').client_id == 'abc'
        assert config.provider_config('samsara').client_id is None


class TestLoggingConfig:
    """Test LoggingConfig normalization."""

    def test_log_suffix_added(self) -> None:
        """Should append .log to a file path without it."""
        config = LoggingConfig(file_path='logs/hub')  # pyright: ignore[reportArgumentType]

        assert config.file_path == Path('logs/hub.log')
        assert config.get_file_level_int() == logging.DEBUG

    def test_file_level_requires_path(self) -> None:
        """Should reject a file level without a file path."""
        with pytest.raises(ValidationError, match='file_path is missing'):
            LoggingConfig(file_level='INFO')

    def test_numeric_level_must_be_standard(self) -> None:
        """Should reject numeric levels that are not logging constants."""
        with pytest.raises(ValidationError, match='Numeric log level'):
            LoggingConfig(console_level=15)

    def test_setup_logger_adds_file_handler(self, tmp_path: Path) -> None:
        """Should attach console and file handlers at the configured levels."""
        config = LoggingConfig(
            file_path=tmp_path / 'hub.log',
            console_level='WARNING',
            file_level='DEBUG',
        )

        package_logger: logging.Logger = setup_logger(config=config)

        try:
            assert package_logger.name == PACKAGE_LOGGER_NAME
            assert len(package_logger.handlers) == 2  # noqa: PLR2004
            assert package_logger.level == logging.DEBUG
        finally:
            for handler in package_logger.handlers:
                handler.close()
            package_logger.handlers.clear()


class TestLoadConfig:
    """Test YAML loading with environment overrides."""

    def test_loads_yaml_sections(self, tmp_path: Path) -> None:
        """Should parse and validate every section present in the file."""
        config_path: Path = tmp_path / 'eld_hub.yaml'
        config_path.write_text(
            yaml.safe_dump(
                {
                    'providers': {'motive': {'client_id': 'from-yaml'}},
                    'sync': {'hos_lookback_days': 7},
                    'reconciliation': {'overlap_precedence': 'manual'},
                }
            ),
            encoding='utf-8',
        )

        config: ELDHubConfig = load_config(config_path, environ={})

        assert config.provider_config('motive').client_id == 'from-yaml'
        assert config.sync.hos_lookback_days == 7  # noqa: PLR2004
        assert config.reconciliation.overlap_precedence == 'manual'
        assert config.http.max_attempts == 3  # noqa: PLR2004

    def test_environment_fills_credentials(self, tmp_path: Path) -> None:
        """Should take credentials from the environment when YAML omits them."""
        config_path: Path = tmp_path / 'eld_hub.yaml'
        config_path.write_text(
            yaml.safe_dump({'providers': {'motive': {'client_id': 'from-yaml'}}}),
            encoding='utf-8',
        )
        environ: dict[str, str] = {
            'MOTIVE_CLIENT_ID': 'from-env',
            'MOTIVE_CLIENT_SECRET': 'env-secret',
            'SAMSARA_CLIENT_ID': 'samsara-env',
            'ELD_DATABASE_URL': 'postgresql+psycopg://db/fleet',
        }

        config: ELDHubConfig = load_config(config_path, environ=environ)

        motive: ProviderConfig = config.provider_config('motive')
        assert motive.client_id == 'from-yaml'
        assert motive.client_secret is not None
        assert motive.client_secret.get_secret_value() == 'env-secret'
        assert config.provider_config('samsara').client_id == 'samsara-env'
        assert config.database.url == 'postgresql+psycopg://db/fleet'

    def test_no_path_uses_defaults(self) -> None:
        """Should build a default configuration without a file."""
        config: ELDHubConfig = load_config(None, environ={})

        assert config.providers == {}
        assert config.reconciliation.default_mode == 'eld'

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Should raise FileNotFoundError for a missing path."""
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / 'absent.yaml', environ={})

    def test_non_mapping_root_rejected(self, tmp_path: Path) -> None:
        """Should reject YAML whose root is not a mapping."""
        config_path: Path = tmp_path / 'eld_hub.yaml'
        config_path.write_text('- just\n- a list\n', encoding='utf-8')

        with pytest.raises(ValueError, match='must be a mapping'):
            load_config(config_path, environ={})

    def test_invalid_values_raise_value_error(self, tmp_path: Path) -> None:
        """Should wrap validation failures in ValueError."""
        config_path: Path = tmp_path / 'eld_hub.yaml'
        config_path.write_text(
            yaml.safe_dump({'http': {'max_attempts': 0}}), encoding='utf-8'
        )

        with pytest.raises(ValueError, match='Configuration validation failed'):
            load_config(config_path, environ={})
