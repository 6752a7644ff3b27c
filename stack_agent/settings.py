import os
from typing import Optional


def env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None or v.strip() == "":
        return default
    return v.strip()


STACK_AGENT_HOST = env("STACK_AGENT_HOST", "0.0.0.0")
STACK_AGENT_PORT = int(env("STACK_AGENT_PORT", "7010"))
STACK_AGENT_TOKEN = env("STACK_AGENT_TOKEN", "CHANGE_ME")

# -----------------------------
# Persistence / working directories
# -----------------------------
STACK_DATABASE_URL = env("STACK_DATABASE_URL", "sqlite+aiosqlite:////data/stack-agent/stack-agent.db")
STACK_APPS_DIR = env("STACK_APPS_DIR", "/data/stack-agent/apps")  # one sub-directory per app id
STACK_COMPOSE_FILE = env("STACK_COMPOSE_FILE", "docker-compose.yml")

# -----------------------------
# Container runtime
# -----------------------------
# Image tags are <prefix>-<buildId>, container names are <prefix>-<appId>.
STACK_CONTAINER_PREFIX = env("STACK_CONTAINER_PREFIX", "dockerizalo")
RUNTIME_DOCKER_BIN = env("RUNTIME_DOCKER_BIN", "docker")
# Bulk status snapshots are reused for this long (0 disables the cache).
STACK_STATUS_CACHE_SECONDS = float(env("STACK_STATUS_CACHE_SECONDS", "2") or "2")

# -----------------------------
# Realtime streams
# -----------------------------
STACK_LOG_TAIL = int(env("STACK_LOG_TAIL", "100") or "100")
STACK_LOG_RETRY_MIN_SECONDS = float(env("STACK_LOG_RETRY_MIN_SECONDS", "1") or "1")
STACK_LOG_RETRY_MAX_SECONDS = float(env("STACK_LOG_RETRY_MAX_SECONDS", "1") or "1")
STACK_LOG_RETRY_FACTOR = float(env("STACK_LOG_RETRY_FACTOR", "2") or "2")
# A subscriber that falls this many snapshots behind is dropped.
STACK_SUBSCRIBER_QUEUE_SIZE = int(env("STACK_SUBSCRIBER_QUEUE_SIZE", "64") or "64")

# -----------------------------
# Build service (invoked when start cannot reuse an existing image)
# -----------------------------
STACK_BUILDER_BASE_URL = env("STACK_BUILDER_BASE_URL")  # e.g. http://10.0.0.10:7002
STACK_BUILDER_TOKEN = env("STACK_BUILDER_TOKEN")  # X-Builder-Token
STACK_BUILDER_TIMEOUT_SECONDS = int(env("STACK_BUILDER_TIMEOUT_SECONDS", "10") or "10")
