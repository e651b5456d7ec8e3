# GearShare Rentals - Equipment Rental Marketplace Backend
# Copyright (C) 2025 Oleg Tokmakov
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Configuration management for GearShare Rentals."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class AppConfig(BaseModel):
    """Application configuration."""

    name: str = "GearShare"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    base_url: str = "http://localhost:8000"


class DatabaseConfig(BaseModel):
    """Database configuration."""

    path: str = "/data/gearshare.db"
    url: Optional[str] = None  # Overrides path when set


class PaymentConfig(BaseModel):
    """Payment processor configuration."""

    provider_api_base: str = "https://api.stripe.com/v1"
    secret_key: str = ""
    webhook_secret: str = ""
    currency: str = "eur"
    webhook_tolerance_seconds: int = 300
    request_timeout_seconds: float = 30.0
    frontend_url: str = "http://localhost:3000"


class CorsConfig(BaseModel):
    """CORS configuration."""

    checkout_origin: str = "http://localhost:3000"  # Only origin allowed to create payments


class RentalConfig(BaseModel):
    """Rental and reservation hold configuration."""

    reservation_ttl_minutes: int = 30
    sweep_interval_minutes: int = 5
    max_duration_days: int = 365


class NotificationConfig(BaseModel):
    """Notification settings configuration."""

    retention_days: int = 90  # Read notifications older than this are removed


class SecurityConfig(BaseModel):
    """Security configuration."""

    auth_token_days: int = 30


class Settings(BaseModel):
    """Main settings container."""

    app: AppConfig = Field(default_factory=AppConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
    rental: RentalConfig = Field(default_factory=RentalConfig)
    notification: NotificationConfig = Field(default_factory=NotificationConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)

    @property
    def payments_configured(self) -> bool:
        """Check if the payment processor credentials are present."""
        return bool(self.payment.secret_key and self.payment.webhook_secret)


# Environment variables that override values from the config file
ENV_OVERRIDES = {
    "GEARSHARE_STRIPE_SECRET_KEY": ("payment", "secret_key"),
    "GEARSHARE_STRIPE_WEBHOOK_SECRET": ("payment", "webhook_secret"),
    "GEARSHARE_DATABASE_URL": ("database", "url"),
    "GEARSHARE_CHECKOUT_ORIGIN": ("cors", "checkout_origin"),
}


def apply_env_overrides(config_data: dict) -> dict:
    """Apply secret and deployment overrides from the environment."""
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config_data.setdefault(section, {})[key] = value
    return config_data


def load_config(config_path: Optional[str] = None) -> Settings:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, tries default locations.

    Returns:
        Settings object with loaded configuration.
    """
    default_paths = [
        Path("config/config.yaml"),
        Path("config.yaml"),
        Path("/app/config/config.yaml"),
        Path("/etc/gearshare/config.yaml"),
    ]

    if config_path is None:
        config_path = os.environ.get("GEARSHARE_CONFIG")

    config_file = None

    if config_path:
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for path in default_paths:
            if path.exists():
                config_file = path
                break

    config_data = {}
    if config_file is None:
        print("No config file found, using defaults")
    else:
        print(f"Loading config from: {config_file}")
        with open(config_file, "r") as f:
            config_data = yaml.safe_load(f) or {}

    return Settings(**apply_env_overrides(config_data))


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = load_config()
    return _settings


def init_settings(config_path: Optional[str] = None) -> Settings:
    """Initialize settings from config file."""
    global _settings
    _settings = load_config(config_path)
    return _settings


def update_settings(new_settings: Settings) -> None:
    """Update the global settings instance."""
    global _settings
    _settings = new_settings
