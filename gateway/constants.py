"""Constants for the daemon gateway."""

# Network constants
TARGET_BLOCK_TIME = 30  # Target block time: 30 seconds
DEFAULT_HOST = "public.turtlenode.io"
DEFAULT_PORT = 11898

BACKUP_SEEDS = [
    {"host": "us-east.turtlenode.io", "port": 11898},
    {"host": "us-west.turtlenode.io", "port": 11898},
    {"host": "asia.turtlenode.io", "port": 11898},
    {"host": "europe.turtlenode.io", "port": 11898},
    {"host": "public.turtlenode.io", "port": 11898},
    {"host": "daemon.turtle.link", "port": 11898},
]

POOL_LIST_URL = "https://raw.githubusercontent.com/turtlecoin/turtlecoin-pools-json/master/turtlecoin-pools.json"
POOL_REFRESH_INTERVAL = 60 * 60  # Pool directory refresh: hourly

# Cache constants
CACHE_TIMEOUT = 30  # Default TTL for per-node responses (seconds)
CACHE_MAX_SIZE = 10000  # Maximum number of items in cache
MAX_DEVIANCE = 5  # Blocks the mirror may trail the network consensus

# Upstream constants
REQUEST_TIMEOUT = 5.0  # Per-call upstream timeout (seconds)
MIRROR_QUERY_TIMEOUT = 20.0  # Per-query mirror timeout (seconds)
BREAKER_FAILURE_THRESHOLD = 5
BREAKER_RECOVERY_TIMEOUT = 60
BREAKER_REGISTRY_SIZE = 1000

# Cache scope tags for network-wide aggregates
NETWORK_SCOPE = "network"
POOL_SCOPE = "pool"

JSONRPC_VERSION = "2.0"
