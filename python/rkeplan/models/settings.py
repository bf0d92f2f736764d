# rkeplan/models/settings.py

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ControllerSettings(BaseSettings):
    """
    Pydantic settings for the machine controller daemon.
    Fields map to environment variables prefixed with `RKEPLAN_`,
    e.g. `RKEPLAN_WORKERS=8` or `RKEPLAN_KUBECTL_CONTEXT=mgmt`.
    """

    workers: int = Field(4, ge=1)
    resync_interval_seconds: float = Field(15.0, gt=0)
    reconcile_timeout_seconds: float = Field(60.0, gt=0)
    retry_base_delay_seconds: float = Field(0.005, gt=0)
    retry_max_delay_seconds: float = Field(300.0, gt=0)
    log_level: str = "INFO"
    kubectl_context: Optional[str] = None
    field_manager: str = "rkeplan"

    model_config = SettingsConfigDict(env_prefix="RKEPLAN_")
