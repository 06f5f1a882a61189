"""Application configuration via environment variables."""

from decimal import Decimal
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./qrpay.db"
    log_level: str = "INFO"

    # Gateway (NETS sandbox)
    gateway_base_url: str = "https://sandbox.nets.openapipaas.com/api/v1"
    gateway_api_key: str = ""
    gateway_project_id: str = ""
    gateway_timeout_seconds: float = 30.0
    approved_response_code: str = "00"

    # Transaction flow
    countdown_seconds: int = 300  # 5 minute QR validity on the client
    tick_interval_seconds: float = 1.0
    heartbeat_timeout_seconds: float = 150.0  # Push channel inactivity window
    default_amount: Decimal = Decimal("3.00")
    txn_id_prefix: str = "sandbox_nets|m|"
    decline_message: str = "Payment could not be completed. Please try again."
    finished_retention_seconds: float = 600.0  # How long the API keeps finished attempts

    # Demo mode: run against the in-process gateway instead of the sandbox
    use_mock_gateway: bool = False
    mock_latency_ms: int = 100
    mock_auto_confirm_seconds: Optional[float] = 10.0  # Simulated scan after subscribing

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
