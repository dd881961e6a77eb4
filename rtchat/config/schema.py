"""Configuration schema using Pydantic."""

from pathlib import Path
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings

USERS_JSON_URL = "https://hr2.sibers.com/test/frontend/users.json"


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DirectoryConfig(Base):
    """User directory source."""

    url: str = USERS_JSON_URL
    timeout: float = 5.0  # Seconds; one attempt, then the built-in list


class StoreConfig(Base):
    """Durable snapshot slot."""

    path: str = "~/.rtchat/storage.json"
    key: str = "rtchat_v4_channels"


class SessionConfig(Base):
    """Session marker slot (active user of this client)."""

    path: str = "~/.rtchat/session.json"
    key: str = "rtchat_user"


class BusConfig(Base):
    """Broadcast topic shared by all replicas on this host."""

    topic: str = "rtchat_v4_bc"
    group: str = "239.255.77.77"  # Multicast group, never leaves the host (TTL 0)
    port: int = 47474


class Config(BaseSettings):
    """Root configuration for rtchat."""

    directory: DirectoryConfig = Field(default_factory=DirectoryConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    log_level: str = "WARNING"

    @property
    def store_path(self) -> Path:
        """Get expanded snapshot file path."""
        return Path(self.store.path).expanduser()

    @property
    def session_path(self) -> Path:
        """Get expanded session marker file path."""
        return Path(self.session.path).expanduser()

    model_config = ConfigDict(env_prefix="RTCHAT_", env_nested_delimiter="__")
