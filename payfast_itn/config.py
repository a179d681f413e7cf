"""
Configuration module for the Payfast ITN receiver.

Loads settings from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from typing import List, Optional
from dotenv import load_dotenv

from .models.credentials import MerchantCredentials
from .services.origin import DEFAULT_VALID_HOSTS

# Load environment variables from .env file
load_dotenv()


def _bool(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class MerchantConfig:
    """Payfast merchant account configuration."""
    merchant_id: str
    merchant_key: str
    passphrase: Optional[str]
    sandbox: bool = True


@dataclass
class ValidationConfig:
    """ITN validation configuration."""
    valid_hosts: List[str]
    dns_timeout: float
    confirm_timeout: float
    amount_tolerance: float


@dataclass
class APIConfig:
    """API server configuration."""
    host: str
    port: int
    itn_path: str
    amount_lookup: Optional[str] = None


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str
    file: Optional[str]


@dataclass
class ServiceConfig:
    """Service-level configuration."""
    name: str
    shutdown_timeout: int


class Config:
    """
    Main configuration class that aggregates all config sections.

    Usage:
        from payfast_itn.config import config

        print(config.merchant.merchant_id)
        credentials = config.credentials()
    """

    def __init__(self):
        self._load_config()

    def _load_config(self):
        """Load all configuration from environment variables."""

        # Merchant configuration
        self.merchant = MerchantConfig(
            merchant_id=os.getenv('PAYFAST_MERCHANT_ID', ''),
            merchant_key=os.getenv('PAYFAST_MERCHANT_KEY', ''),
            passphrase=os.getenv('PAYFAST_PASSPHRASE') or None,
            sandbox=_bool(os.getenv('PAYFAST_SANDBOX', 'true'))
        )

        # Validation configuration
        hosts_str = os.getenv('PAYFAST_VALID_HOSTS', ','.join(DEFAULT_VALID_HOSTS))
        valid_hosts = [h.strip() for h in hosts_str.split(',') if h.strip()]

        self.validation = ValidationConfig(
            valid_hosts=valid_hosts,
            dns_timeout=float(os.getenv('PAYFAST_DNS_TIMEOUT', '5')),
            confirm_timeout=float(os.getenv('PAYFAST_CONFIRM_TIMEOUT', '10')),
            amount_tolerance=float(os.getenv('PAYFAST_AMOUNT_TOLERANCE', '0.01'))
        )

        # API configuration
        self.api = APIConfig(
            host=os.getenv('API_HOST', '0.0.0.0'),
            port=int(os.getenv('API_PORT', '8000')),
            itn_path=os.getenv('ITN_PATH', '/itn'),
            amount_lookup=os.getenv('ITN_AMOUNT_LOOKUP') or None
        )

        # Logging configuration
        self.logging = LoggingConfig(
            level=os.getenv('LOG_LEVEL', 'INFO'),
            file=os.getenv('LOG_FILE')
        )

        # Service configuration
        self.service = ServiceConfig(
            name=os.getenv('SERVICE_NAME', 'PayfastITNReceiver'),
            shutdown_timeout=int(os.getenv('SHUTDOWN_TIMEOUT', '30'))
        )

    def validate(self) -> List[str]:
        """
        Validate required configuration values.

        Returns:
            List of validation error messages (empty if all valid)
        """
        errors = []

        if not self.merchant.merchant_id:
            errors.append("PAYFAST_MERCHANT_ID is required")

        if not self.merchant.merchant_key:
            errors.append("PAYFAST_MERCHANT_KEY is required")

        if not self.validation.valid_hosts:
            errors.append("PAYFAST_VALID_HOSTS must list at least one host")

        if not self.api.itn_path.startswith('/'):
            errors.append("ITN_PATH must start with '/'")

        if self.api.amount_lookup and ':' not in self.api.amount_lookup:
            errors.append("ITN_AMOUNT_LOOKUP must look like 'module:function'")

        return errors

    def is_valid(self) -> bool:
        """Check if configuration is valid."""
        return len(self.validate()) == 0

    def credentials(self) -> MerchantCredentials:
        """
        Merchant credentials from the merchant section.

        Raises:
            ValueError: If merchant id or key is missing
        """
        return MerchantCredentials(
            merchant_id=self.merchant.merchant_id,
            merchant_key=self.merchant.merchant_key,
            passphrase=self.merchant.passphrase,
            sandbox=self.merchant.sandbox
        )


# Global configuration instance
config = Config()
