"""
Configuration Management for the Proposal Pricing Core
Centralizes all configuration with environment variable support
"""
import os
from typing import Optional
import logging

from dotenv import load_dotenv

# Hydrate env vars from a local .env in the current working directory when present.
load_dotenv()

logger = logging.getLogger(__name__)


class PricingConfig:
    """Where pricing settings come from and how outputs are rounded"""

    def __init__(self):
        self.settings_path: Optional[str] = os.getenv('PROPOSAL_PRICING_CONFIG') or None
        self.rounding = os.getenv('PROPOSAL_ROUNDING', 'cent').strip().lower()
        if self.rounding not in ('cent', 'whole'):
            logger.warning(
                "Unknown PROPOSAL_ROUNDING=%r, falling back to 'cent'", self.rounding
            )
            self.rounding = 'cent'

    def to_dict(self) -> dict:
        return {
            'settings_path': self.settings_path,
            'rounding': self.rounding,
        }


class BackendConfig:
    """Hosted backend used to render and deliver generated proposals"""

    def __init__(self):
        self.base_url = os.getenv('PROPOSAL_BACKEND_URL', '').rstrip('/')
        self.api_key = os.getenv('PROPOSAL_BACKEND_KEY', '')
        self.tenant_id = os.getenv('PROPOSAL_TENANT_ID', '')
        try:
            self.timeout = float(os.getenv('PROPOSAL_COLLABORATOR_TIMEOUT', '30'))
        except ValueError:
            logger.error("PROPOSAL_COLLABORATOR_TIMEOUT is not a number, using 30s")
            self.timeout = 30.0

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key)

    def to_dict(self) -> dict:
        """Get config as dictionary (without key for logging)"""
        return {
            'base_url': self.base_url,
            'tenant_id': self.tenant_id,
            'timeout': self.timeout,
            'api_key': '***REDACTED***' if self.api_key else '',
        }


class AppConfig:
    """Main application configuration"""

    def __init__(self):
        self.version = "1.0.0"
        self.service_name = "Roofing Proposal Pricing Core"
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')
        self.environment = os.getenv('ENVIRONMENT', 'production')
        self.pricing = PricingConfig()
        self.backend = BackendConfig()


config = AppConfig()
