"""
Configuration Management for MEI Ledger

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CloudinarySettings(BaseSettings):
    """Cloudinary receipt storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CLOUDINARY_",
        extra="ignore"
    )

    cloud_name: str = Field(
        ...,
        description="Cloudinary cloud name"
    )
    api_key: str = Field(
        ...,
        description="Cloudinary API key"
    )
    api_secret: str = Field(
        ...,
        description="Cloudinary API secret"
    )

    # Folders mirror the original storage buckets
    tax_receipts_folder: str = Field(
        default="das_receipts",
        description="Folder for tax payment receipts"
    )
    sale_receipts_folder: str = Field(
        default="sale_receipts",
        description="Folder for sale receipts"
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets storage configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )
    spreadsheet_id: str = Field(
        ...,
        description="ID of the Google Sheets spreadsheet to use"
    )

    # Sheet names within the spreadsheet
    ledger_sheet_name: str = Field(
        default="Transactions",
        description="Name of the sheet for ledger entries"
    )
    tax_sheet_name: str = Field(
        default="TaxObligations",
        description="Name of the sheet for DAS obligations"
    )
    sales_sheet_name: str = Field(
        default="Sales",
        description="Name of the sheet for sales"
    )
    audit_sheet_name: str = Field(
        default="AuditLog",
        description="Name of the sheet for audit logs"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Tax obligation (DAS) rules
    tax_marker: str = Field(
        default="DAS",
        min_length=1,
        description="Substring that marks an expense description as tax-related"
    )
    tax_due_day: int = Field(
        default=20,
        ge=1,
        le=28,
        description="Day of month the DAS is due"
    )
    tax_payment_method: str = Field(
        default="Transfer",
        description="Payment method recorded on ledger entries created for DAS payments"
    )

    # Sales
    sales_category_id: Optional[str] = Field(
        default=None,
        description="Category assigned to income entries created from sales"
    )

    # Alerting
    alert_window_days: int = Field(
        default=10,
        ge=0,
        description="Alert on pending obligations due within this many days"
    )
    high_priority_days: int = Field(
        default=3,
        ge=0,
        description="Alerts due within this many days are high priority"
    )
    notification_cache_path: str = Field(
        default=".mei_ledger/notifications.json",
        description="Local file backing the notification cache"
    )

    # DAS amount calculation (values in force for 2025)
    minimum_wage: Decimal = Field(
        default=Decimal("1518.00"),
        gt=0,
        description="Monthly minimum wage used for the INSS share"
    )
    das_activity: str = Field(
        default="services",
        pattern="^(commerce|services|both)$",
        description="MEI activity type used for default DAS amounts"
    )
    das_truck_driver: bool = Field(
        default=False,
        description="MEI truck driver (12% INSS instead of 5%)"
    )

    # Refuse to mark a DAS paid when the month's balance can't cover it
    enforce_balance_check: bool = Field(
        default=False,
        description="Check the current month balance before registering a DAS payment"
    )

    @field_validator('tax_marker')
    @classmethod
    def validate_tax_marker(cls, v: str) -> str:
        """Marker must not be blank once stripped."""
        if not v.strip():
            raise ValueError("tax_marker cannot be blank")
        return v


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Note: These are loaded lazily to allow partial configuration

    @property
    def cloudinary(self) -> CloudinarySettings:
        return CloudinarySettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("cloudinary", "google_sheets", "app"):
        try:
            _ = getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
