# eld_integration_hub/config/loader.py
"""
Configuration loading logic.

Reads the YAML file, layers environment overrides on top, and validates the
result into an ELDHubConfig.

Environment Overrides:
    {PROVIDER}_CLIENT_ID / {PROVIDER}_CLIENT_SECRET fill in OAuth credentials
    for every known provider when the YAML leaves them empty, so secrets can
    stay out of the file. ELD_DATABASE_URL replaces database.url.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

import yaml

from eld_integration_hub.config.config_models import ELDHubConfig

__all__: list[str] = ['KNOWN_PROVIDER_IDS', 'apply_environment_overrides', 'load_config']

logger: logging.Logger = logging.getLogger(__name__)

KNOWN_PROVIDER_IDS: Final[tuple[str, ...]] = ('motive', 'samsara', 'terminal')
DATABASE_URL_ENV: Final[str] = 'ELD_DATABASE_URL'


def load_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> ELDHubConfig:
    """
    Load and validate the hub configuration.

    Args:
        config_path: Path to the YAML configuration file. None skips the
            file entirely and builds the configuration from defaults plus
            environment overrides.
        environ: Environment mapping (defaults to os.environ).

    Returns:
        Validated ELDHubConfig.

    Raises:
        FileNotFoundError: If config_path is given but does not exist.
        yaml.YAMLError: If the YAML cannot be parsed.
        ValueError: If validation fails.

    Example:
        >>> config = load_config('config/eld_hub.yaml')
        >>> config.sync.hos_lookback_days
        14
    """
    raw_config_data: dict[str, Any] = {}

    if config_path is not None:
        config_path = Path(config_path)
        logger.info('Loading ELD hub configuration from: %s', config_path)

        if not config_path.exists():
            error_message: str = f'Configuration file not found: {config_path}'
            logger.error(error_message)
            raise FileNotFoundError(error_message)

        try:
            with config_path.open(encoding='utf-8') as config_file:
                loaded: Any = yaml.safe_load(config_file)
        except yaml.YAMLError as error:
            error_message = f'Failed to parse YAML configuration: {error}'
            logger.error(error_message)
            raise yaml.YAMLError(error_message) from error

        if loaded is not None and not isinstance(loaded, dict):
            error_message = (
                f'Configuration root must be a mapping, got {type(loaded).__name__}'
            )
            logger.error(error_message)
            raise ValueError(error_message)

        raw_config_data = loaded or {}
    else:
        logger.debug('No config path provided, using defaults and environment')

    raw_config_data = apply_environment_overrides(
        raw_config_data, os.environ if environ is None else environ
    )

    try:
        validated_config = ELDHubConfig.model_validate(raw_config_data)
    except ValueError as error:
        error_message = f'Configuration validation failed: {error}'
        logger.error(error_message)
        raise ValueError(error_message) from error

    logger.info('Configuration loaded and validated successfully')
    return validated_config


def apply_environment_overrides(
    raw_config_data: dict[str, Any],
    environ: Mapping[str, str],
) -> dict[str, Any]:
    """
    Layer environment variables onto raw (unvalidated) configuration data.

    Values already present in the YAML win for client credentials; the
    database URL variable always wins.

    Args:
        raw_config_data: Parsed YAML mapping.
        environ: Environment mapping.

    Returns:
        A new mapping; the input is not modified.
    """
    merged: dict[str, Any] = dict(raw_config_data)
    providers: dict[str, Any] = {
        str(name).lower(): dict(section or {})
        for name, section in (merged.get('providers') or {}).items()
    }

    for provider_id in KNOWN_PROVIDER_IDS:
        prefix: str = provider_id.upper()
        client_id: str | None = environ.get(f'{prefix}_CLIENT_ID')
        client_secret: str | None = environ.get(f'{prefix}_CLIENT_SECRET')

        if client_id is None and client_secret is None:
            continue

        section: dict[str, Any] = providers.setdefault(provider_id, {})
        if client_id and not section.get('client_id'):
            section['client_id'] = client_id
        if client_secret and not section.get('client_secret'):
            section['client_secret'] = client_secret

    if providers:
        merged['providers'] = providers

    database_url: str | None = environ.get(DATABASE_URL_ENV)
    if database_url:
        database_section: dict[str, Any] = dict(merged.get('database') or {})
        database_section['url'] = database_url
        merged['database'] = database_section

    return merged
