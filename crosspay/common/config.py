"""Central environment-driven settings shared by the payment and FX stub services.

Each process loads this once at startup. Behavior is controlled by environment
variables (see `.env.example`); every resilience number used by the FX gateway
lives here rather than in code.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class CommonSettings(BaseSettings):
    """Typed view of runtime configuration from environment variables."""

    service_name: str = "payments"
    log_level: str = "INFO"
    database_dsn: str = "sqlite:///./crosspay.db"
    fx_service_url: str = "http://fx-service:8080"
    fx_timeout_seconds: float = 5.0
    fx_retry_max_attempts: int = 3
    fx_retry_wait_seconds: float = 0.5
    fx_cb_failure_rate_threshold: float = 0.5
    fx_cb_sliding_window_size: int = 10
    fx_cb_minimum_calls: int = 5
    fx_cb_wait_open_seconds: float = 30.0
    fx_cb_half_open_calls: int = 1
    db_create_all: bool = False
    tracing_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://otel-collector:4318/v1/traces"
    fx_stub_failure_rate: float = 0.0
    fx_stub_quote_ttl_seconds: int = 60
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = CommonSettings()
