"""Configuration for the daemon gateway."""
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import constants
from .models import Node, Pool


class GatewaySettings(BaseSettings):
    """
    Gateway configuration.

    Every field can be set from the environment with a ``GATEWAY_`` prefix
    (``GATEWAY_DEFAULT_HOST``, ``GATEWAY_SEEDS='[{"host": ..., "port": ...}]'``)
    or from a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    # Caching
    cache_timeout: int = Field(default=constants.CACHE_TIMEOUT, gt=0,
                               description="Default TTL for cached responses (seconds)")
    cache_max_size: int = Field(default=constants.CACHE_MAX_SIZE, gt=0)

    # Upstream
    timeout: float = Field(default=constants.REQUEST_TIMEOUT, gt=0,
                           description="Per-call upstream timeout (seconds)")
    default_host: str = Field(default=constants.DEFAULT_HOST)
    default_port: int = Field(default=constants.DEFAULT_PORT, gt=0, lt=65536)
    seeds: List[Node] = Field(
        default_factory=lambda: [Node(**seed) for seed in constants.BACKUP_SEEDS],
        description="Trusted daemons polled for network height and difficulty"
    )
    pools: List[Pool] = Field(
        default_factory=list,
        description="Static pool list; when empty the pool directory is polled"
    )
    pool_list_url: str = Field(default=constants.POOL_LIST_URL)
    pool_refresh_interval: int = Field(default=constants.POOL_REFRESH_INTERVAL, gt=0)
    breaker_failure_threshold: int = Field(default=constants.BREAKER_FAILURE_THRESHOLD, gt=0)
    breaker_recovery_timeout: float = Field(default=constants.BREAKER_RECOVERY_TIMEOUT, ge=0)
    breaker_registry_size: int = Field(default=constants.BREAKER_REGISTRY_SIZE, gt=0,
                                       description="Most upstreams tracked by circuit breakers at once")

    # Consensus
    target_block_time: int = Field(default=constants.TARGET_BLOCK_TIME, gt=0)
    max_deviance: int = Field(default=constants.MAX_DEVIANCE, ge=0,
                              description="Blocks the mirror may differ from the network")

    # Mirror
    mirror_query_timeout: float = Field(default=constants.MIRROR_QUERY_TIMEOUT, gt=0)

    # Background refresh
    refresh_enabled: bool = Field(default=True)

    # HTTP
    bind_ip: str = Field(default="0.0.0.0")
    bind_port: int = Field(default=80, gt=0, lt=65536)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    cache_control_max_age: int = Field(default=30, ge=0)

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=True)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @property
    def default_node(self) -> Node:
        return Node(host=self.default_host, port=self.default_port)

    @property
    def aggregate_ttl(self) -> int:
        """TTL for the network-wide aggregates: a third of a block interval."""
        return max(1, round(self.target_block_time / 3))

    @property
    def refresh_interval(self) -> int:
        """Period of the background aggregate refresh and cache sweep."""
        return max(1, round(self.cache_timeout / 2))
