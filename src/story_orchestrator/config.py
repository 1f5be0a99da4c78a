from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .events.publisher import DEFAULT_EVENT_CHANNEL
from .events.room_bridge import DEFAULT_MAX_PENDING


class OrchestratorSettings(BaseSettings):
    """
    Runtime configuration, read from STORY_ORCHESTRATOR_* environment
    variables or a local .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORY_ORCHESTRATOR_",
        env_file=".env",
        extra="ignore",
    )

    # ------------------------------------------------------------
    # Broker
    # ------------------------------------------------------------
    mqtt_url: str | None = Field(
        None,
        description="MQTT broker URL (mqtt://host:port); unset uses the in-process broker",
    )
    mqtt_connect_timeout: float = Field(5.0, gt=0)
    event_channel: str = DEFAULT_EVENT_CHANNEL

    # ------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------
    observer_queue_size: int = Field(
        DEFAULT_MAX_PENDING,
        ge=1,
        description="Messages buffered per observer before new ones are dropped",
    )

    log_level: str = "INFO"
