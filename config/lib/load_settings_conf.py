"""Settings configuration loader module.

This module handles loading and parsing of the main settings.conf file which contains
the explorer API credentials, the ledger RPC endpoint and the marketplace contract
address, together with the timing knobs of the refresh pipeline.

The settings file uses INI format with a [DEFAULT] section containing key-value pairs.

Required settings:
    explorer_api_key: API key for the block explorer (txlist / tokentx endpoints)

Example settings.conf:
    [DEFAULT]
    explorer_api_key = YOURAPIKEY
    rpc_url = https://ethereum-rpc.publicnode.com
    state_path = ~/.sourcerer/state.json

Raises:
    SettingsError: If the settings file is missing, invalid, or missing required settings
"""
from configparser import ConfigParser
from pathlib import Path
from typing import Dict, Any, List
import os

class ConfigValidationError:
    """Helper class to format configuration validation errors"""
    def __init__(self):
        self.missing: List[str] = []
        self.invalid_values: List[str] = []

    def has_errors(self) -> bool:
        """Check if any errors exist"""
        return bool(self.missing or self.invalid_values)

    def format_message(self) -> str:
        """Format error message in a clean, readable way"""
        messages = []

        if self.missing:
            messages.append("Missing required settings:")
            messages.extend(f"  - {item}" for item in self.missing)

        if self.invalid_values:
            if messages:
                messages.append("")
            messages.append("Invalid values:")
            messages.extend(f"  - {item}" for item in self.invalid_values)

        return "\n".join(messages)

class SettingsError(Exception):
    """Raised when there are issues loading or parsing the settings configuration."""
    pass

# Default settings
DEFAULTS = {
    'rpc_url': 'https://ethereum-rpc.publicnode.com',
    'explorer_url': 'https://api.etherscan.io/v2/api',
    'chain_id': '1',
    'market_contract_address': '0x5b8902de436A13Cb5097a7cF9bAd16c30fbf5902',
    'explorer_rate_limit_ms': '1200',  # Explorer free tier allows < 1 request/second
    'refresh_interval_minutes': '30',
    'error_expiry_seconds': '20',
    'receipt_timeout_seconds': '300',
    'state_path': os.path.expanduser('~/.sourcerer/state.json'),
    'api_host': '127.0.0.1',
    'api_port': '11200',
    'api_cors_origins': ''  # Comma separated; empty allows no browser origins
}

REQUIRED_SETTINGS = ['explorer_api_key']

INTEGER_SETTINGS = [
    'chain_id',
    'explorer_rate_limit_ms',
    'refresh_interval_minutes',
    'error_expiry_seconds',
    'receipt_timeout_seconds',
    'api_port'
]

def load_settings_conf(settings_path: str = ".") -> Dict[str, Any]:
    """Load and parse settings.conf file with strict validation

    Args:
        settings_path: Directory containing settings.conf

    Returns:
        Dictionary containing parsed and validated settings

    Raises:
        SettingsError: If file not found, parsing fails, or validation fails
    """
    config_path = Path(settings_path) / 'settings.conf'

    if not config_path.exists():
        raise SettingsError(
            f"Settings file not found at: {config_path}\n"
            "Please create settings.conf based on examples/settings.conf.example"
        )

    try:
        parser = ConfigParser(defaults=DEFAULTS)
        parser.read(config_path)

        errors = ConfigValidationError()

        # Get settings from DEFAULT section (defaults already merged in)
        settings = dict(parser['DEFAULT'])

        missing = [key for key in REQUIRED_SETTINGS if not settings.get(key)]
        if missing:
            errors.missing.extend(missing)
            raise SettingsError(
                "Settings Configuration Validation Failed\n\n" +
                errors.format_message()
            )

        return validate_settings(settings)

    except Exception as e:
        if isinstance(e, SettingsError):
            raise
        raise SettingsError(f"Error parsing settings.conf: {str(e)}")

def validate_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Validate loaded settings.

    Args:
        settings: Dictionary of settings to validate

    Returns:
        Validated and processed settings

    Raises:
        SettingsError: If validation fails
    """
    errors = ConfigValidationError()

    for key in INTEGER_SETTINGS:
        try:
            settings[key] = int(settings[key])
        except KeyError:
            errors.missing.append(key)
        except (TypeError, ValueError):
            errors.invalid_values.append(f"{key}: {settings[key]!r} is not an integer")

    if not errors.has_errors():
        # Validate numeric ranges
        if settings['chain_id'] < 1:
            errors.invalid_values.append("chain_id must be at least 1")
        if settings['explorer_rate_limit_ms'] < 0:
            errors.invalid_values.append("explorer_rate_limit_ms must not be negative")
        if settings['refresh_interval_minutes'] < 1:
            errors.invalid_values.append("refresh_interval_minutes must be at least 1")
        if settings['error_expiry_seconds'] < 1:
            errors.invalid_values.append("error_expiry_seconds must be at least 1 second")
        if settings['receipt_timeout_seconds'] < 1:
            errors.invalid_values.append("receipt_timeout_seconds must be at least 1 second")

    address = str(settings.get('market_contract_address', ''))
    if not (address.startswith('0x') and len(address) == 42):
        errors.invalid_values.append(f"market_contract_address: {address!r} is not a 20-byte hex address")

    if errors.has_errors():
        raise SettingsError(
            "Invalid settings configuration\n\n" +
            errors.format_message()
        )

    settings['state_path'] = os.path.expanduser(settings['state_path'])
    settings['api_cors_origins'] = [
        origin.strip() for origin in str(settings.get('api_cors_origins', '')).split(',')
        if origin.strip()
    ]
    return settings
