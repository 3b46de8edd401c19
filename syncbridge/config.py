"""Configuration for the SAP B1 / Odoo sync bridge."""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./syncbridge.db"
    api_prefix: str = "/api/v1"
    debug: bool = False

    # Webhook queue worker
    queue_enabled: bool = True
    queue_worker_autostart: bool = True
    queue_poll_interval_seconds: float = 30.0
    queue_batch_size: int = 10
    queue_max_retries: int = 5
    # A processing row claimed longer ago than this is handed back to the
    # retry policy on the next cycle. 0 disables the reclaim.
    queue_stale_after_seconds: int = 600

    # Odoo JSON-RPC
    odoo_base_url: str = ""
    odoo_database: str = ""
    odoo_username: str = ""
    odoo_password: str = ""
    odoo_timeout_seconds: float = 30.0
    # COGS journal entries
    odoo_cogs_journal_id: int = 0
    odoo_cogs_expense_account_id: int = 0
    odoo_cogs_stock_account_id: int = 0

    # SAP Business One Service Layer
    sap_service_layer_url: str = "https://localhost:50000/b1s/v1/"
    sap_company_db: str = ""
    sap_username: str = ""
    sap_password: str = ""
    sap_verify_tls: bool = True
    sap_timeout_seconds: float = 60.0

    # Odoo integration control center callback (best-effort status feed)
    monitor_enabled: bool = False
    monitor_callback_url: str = ""
    monitor_api_key: str = ""

    model_config = {"env_prefix": "SYNC_"}

    @field_validator("queue_batch_size", "queue_max_retries")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


settings = Settings()
