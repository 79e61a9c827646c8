"""Configuration management for the 3DCart-NetSuite order sync.

Uses pydantic-settings to load configuration from environment variables
with validation and type coercion.
"""

from pathlib import Path
from typing import Optional
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # 3DCart Configuration
    cart_secure_url: str = Field(
        ...,
        description="3DCart store secure URL (e.g., https://your-store.3dcartstores.com)"
    )
    cart_private_key: str = Field(
        ...,
        description="3DCart REST API private key"
    )
    cart_token: str = Field(
        ...,
        description="3DCart REST API token"
    )
    cart_api_url: str = Field(
        default="https://apirest.3dcart.com/3dCartWebAPI/v2",
        description="3DCart REST API base URL"
    )

    # NetSuite Configuration
    netsuite_account_id: str = Field(
        ...,
        description="NetSuite account ID, used as the OAuth realm (e.g., 1234567_SB1)"
    )
    netsuite_consumer_key: str = Field(
        ...,
        description="Integration record consumer key"
    )
    netsuite_consumer_secret: str = Field(
        ...,
        description="Integration record consumer secret"
    )
    netsuite_token_id: str = Field(
        ...,
        description="Token-based authentication token ID"
    )
    netsuite_token_secret: str = Field(
        ...,
        description="Token-based authentication token secret"
    )
    netsuite_base_url: Optional[str] = Field(
        default=None,
        description="SuiteTalk base URL (derived from the account ID when unset)"
    )
    netsuite_signature_method: str = Field(
        default="HMAC-SHA256",
        description="OAuth signature method: HMAC-SHA256 or HMAC-SHA1"
    )

    # Sales Order Settings
    netsuite_subsidiary_id: int = Field(
        default=1,
        description="Subsidiary assigned to created customers and sales orders"
    )
    netsuite_department_id: int = Field(
        default=3,
        description="Department required on every sales order"
    )
    netsuite_default_item_id: int = Field(
        default=14238,
        description="Item used when a cart product has no NetSuite match"
    )
    sales_order_taxable: bool = Field(
        default=False,
        description="Whether sales orders and their lines are flagged taxable"
    )
    total_tolerance: float = Field(
        default=0.01,
        ge=0.0,
        le=10.0,
        description="Tolerance when comparing reconciled totals (currency units)"
    )
    catalog_key_field: str = Field(
        default="ItemID",
        description="Line item field used as the catalog key: ItemID or OrderItemID"
    )
    include_tax_as_line_item: bool = Field(
        default=False,
        description="Add the cart's sales tax to the sales order as a line on tax_item_id"
    )
    tax_item_id: int = Field(
        default=2,
        description="NetSuite item used for the sales tax line"
    )
    include_shipping_as_line_item: bool = Field(
        default=False,
        description="Add the cart's shipping cost to the sales order as a line on shipping_item_id"
    )
    shipping_item_id: int = Field(
        default=3,
        description="NetSuite item used for the shipping line"
    )

    # Order Processing
    update_cart_status: bool = Field(
        default=True,
        description="If true, move synced orders to the success status in 3DCart"
    )
    success_status_id: int = Field(
        default=2,
        ge=1,
        description="3DCart status ID for successfully synced orders (2 = Processing)"
    )
    status_comments: bool = Field(
        default=True,
        description="Add an internal comment when updating the 3DCart status"
    )

    # Bulk Sync
    bulk_max_batch: int = Field(
        default=50,
        ge=1,
        le=200,
        description="Maximum number of orders accepted by one bulk sync call"
    )
    bulk_order_delay: float = Field(
        default=0.5,
        ge=0.0,
        le=5.0,
        description="Delay between orders in a bulk sync (seconds)"
    )

    # Application Settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    database_path: Path = Field(
        default=Path("data/sync.db"),
        description="SQLite database file path"
    )
    log_file: Path = Field(
        default=Path("logs/sync.log"),
        description="Log file path"
    )

    # Performance Tuning
    request_timeout: float = Field(
        default=30.0,
        ge=1.0,
        le=300.0,
        description="Timeout for every HTTP request (seconds)"
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum attempts for idempotent API calls"
    )
    cart_rate_limit_delay: float = Field(
        default=0.5,
        ge=0.0,
        le=5.0,
        description="Delay between 3DCart API calls (seconds)"
    )
    netsuite_rate_limit_delay: float = Field(
        default=0.2,
        ge=0.0,
        le=5.0,
        description="Delay between NetSuite API calls (seconds)"
    )

    @field_validator("cart_secure_url")
    @classmethod
    def validate_secure_url(cls, v: str) -> str:
        """Ensure the store URL is properly formatted."""
        v = v.strip().rstrip("/")
        if not v.startswith("https://"):
            v = f"https://{v.removeprefix('http://')}"
        return v

    @field_validator("cart_api_url", "netsuite_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Base URLs are joined with paths, so drop any trailing slash."""
        return v.rstrip("/") if v else v

    @field_validator("netsuite_signature_method")
    @classmethod
    def validate_signature_method(cls, v: str) -> str:
        """Ensure signature method is one NetSuite accepts."""
        v = v.upper()
        valid_methods = {"HMAC-SHA256", "HMAC-SHA1"}
        if v not in valid_methods:
            raise ValueError(f"Signature method must be one of: {valid_methods}")
        return v

    @field_validator("catalog_key_field")
    @classmethod
    def validate_catalog_key_field(cls, v: str) -> str:
        """Ensure the catalog key names a real line item field."""
        valid_fields = {"ItemID", "OrderItemID"}
        if v not in valid_fields:
            raise ValueError(f"Catalog key field must be one of: {valid_fields}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        v = v.upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v

    @model_validator(mode="after")
    def derive_netsuite_base_url(self) -> "Settings":
        """Build the SuiteTalk host from the account ID when not configured."""
        if not self.netsuite_base_url:
            host = self.netsuite_account_id.lower().replace("_", "-")
            self.netsuite_base_url = f"https://{host}.suitetalk.api.netsuite.com"
        return self

    @property
    def netsuite_record_url(self) -> str:
        """Get the NetSuite REST record API base URL."""
        return f"{self.netsuite_base_url}/services/rest/record/v1"

    @property
    def netsuite_suiteql_url(self) -> str:
        """Get the NetSuite SuiteQL endpoint."""
        return f"{self.netsuite_base_url}/services/rest/query/v1/suiteql"


def get_settings() -> Settings:
    """Get application settings.

    Returns:
        Settings: Application settings loaded from environment
    """
    return Settings()
