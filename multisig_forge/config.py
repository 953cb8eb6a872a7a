"""multisig-forge — Application configuration via environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class ForgeSettings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "FORGE_",
        "extra": "ignore",
    }

    # ── Network ────────────────────────────────────────────────
    rpc_url: str = "https://ethereum-sepolia-rpc.publicnode.com"
    chain_id: int = 11155111  # Sepolia
    rpc_timeout_seconds: float = 30.0

    # ── Deployment ─────────────────────────────────────────────
    # Applied uniformly to every stage's confirmation wait.
    confirmation_timeout_seconds: float = 120.0
    poll_interval_seconds: float = 2.0

    # ── Persistence ────────────────────────────────────────────
    database_url: str = "sqlite:///multisig_forge.db"

    # ── API ────────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # ── Logging ────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"


settings = ForgeSettings()
