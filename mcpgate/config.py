"""
Configuration module for mcpgate.

Centralizes all configuration with environment variable support,
validation, and caching for file-backed settings.
"""

import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("MCPGATE_ENV", "dev")  # dev|stage|prod

# Storage
DB_PATH = os.getenv("MCPGATE_DB_PATH", "data/mcpgate.db")

# Dispatch
IDEMPOTENCY_MODE = os.getenv("MCPGATE_IDEMPOTENCY_MODE", "race_tolerant")  # race_tolerant|strict
MAX_PAYLOAD_BYTES = int(os.getenv("MAX_PAYLOAD_BYTES", str(256 * 1024)))

# Policy
DEFAULT_POLICY_PATH = os.getenv("MCPGATE_DEFAULT_POLICY_PATH", "")

# Tenant secrets encryption
SECRET_KEY = os.getenv("MCPGATE_SECRET_KEY", "")
SECRET_KEY_PATH = os.getenv("MCPGATE_SECRET_KEY_PATH", "secrets/mcpgate_secret_key.json")

# Workflows
N8N_BASE_URL = os.getenv("N8N_BASE_URL", "")
WORKFLOW_TIMEOUT_SECONDS = float(os.getenv("WORKFLOW_TIMEOUT_SECONDS", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_JSON = os.getenv("LOG_JSON", "1").lower() in ("1", "true", "yes")

# Cache TTL (seconds)
CONFIG_CACHE_TTL = int(os.getenv("MCPGATE_CONFIG_CACHE_TTL", "60"))


# ============================================================
# Cached Configuration Loaders
# ============================================================

class CachedConfig:
    """
    Thread-safe cached configuration loader.
    Reloads configuration files periodically based on TTL.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Any] = {}
        self._timestamps: Dict[str, float] = {}
        self._lock = threading.RLock()
        self._ttl = ttl_seconds

    def _is_stale(self, key: str) -> bool:
        if key not in self._timestamps:
            return True
        return (time.time() - self._timestamps[key]) > self._ttl

    def get_json(self, path: str, force_reload: bool = False) -> Any:
        """
        Load JSON file with caching.
        Returns cached version if within TTL, otherwise reloads.
        """
        with self._lock:
            if not force_reload and path in self._cache and not self._is_stale(path):
                return self._cache[path]

            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)

            self._cache[path] = data
            self._timestamps[path] = time.time()
            return data

    def invalidate(self, path: Optional[str] = None) -> None:
        """Invalidate cache for a specific path or all paths."""
        with self._lock:
            if path:
                self._cache.pop(path, None)
                self._timestamps.pop(path, None)
            else:
                self._cache.clear()
                self._timestamps.clear()


# Global cached config instance
_config_cache = CachedConfig(ttl_seconds=CONFIG_CACHE_TTL)


def load_json_cached(path: str) -> Any:
    """Load JSON file with caching."""
    return _config_cache.get_json(path)


def invalidate_config_cache() -> None:
    """Invalidate all cached configuration."""
    _config_cache.invalidate()


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate that all configured files exist.
    Returns dict of name -> exists.
    """
    paths = {}
    if DEFAULT_POLICY_PATH:
        paths["default_policy"] = DEFAULT_POLICY_PATH
    if not SECRET_KEY:
        paths["secret_key"] = SECRET_KEY_PATH

    return {name: Path(path).exists() for name, path in paths.items()}


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"



def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("MCPGATE_DEBUG", "").lower() in ("1", "true", "yes")
