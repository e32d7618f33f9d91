"""Global configuration for the itinerary map service.

This module loads environment variables from .env file and provides
centralized configuration for the entire application.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
# Look for .env in the project root directory
env_path = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=env_path)


# ============================================================================
# Map Provider Configuration
# ============================================================================

# Active map backend: osm | amap | baidu
MAP_PROVIDER: str = os.getenv("MAP_PROVIDER", "osm").strip().lower()

SUPPORTED_PROVIDERS = ("osm", "amap", "baidu")

# Nominatim asks every client to identify itself
NOMINATIM_USER_AGENT: str = os.getenv("NOMINATIM_USER_AGENT", "itinerary-map/1.0")

# Timeout for a single provider HTTP call
HTTP_TIMEOUT_S: float = float(os.getenv("HTTP_TIMEOUT_S", "15"))

# How long to poll a map SDK before giving up
BACKEND_LOAD_TIMEOUT_S: float = float(os.getenv("BACKEND_LOAD_TIMEOUT_S", "10"))


# ============================================================================
# Reconciliation Engine Configuration
# ============================================================================

# Max in-flight geocoding requests per render
GEOCODE_MAX_CONCURRENCY: int = int(os.getenv("GEOCODE_MAX_CONCURRENCY", "6"))

# Strict-pass radius around the destination center, in kilometres
BOUNDARY_RADIUS_KM: float = float(os.getenv("BOUNDARY_RADIUS_KM", "60"))

# Decimal places of the dedupe grid (5 ~= 1 m)
DEDUPE_PRECISION: int = int(os.getenv("DEDUPE_PRECISION", "5"))

# Markers added per batch before yielding to the event loop
MARKER_BATCH_SIZE: int = int(os.getenv("MARKER_BATCH_SIZE", "24"))

# Padding (pixels) used when fitting the viewport
VIEWPORT_PADDING_PX: int = int(os.getenv("VIEWPORT_PADDING_PX", "40"))


# ============================================================================
# Application Configuration
# ============================================================================

# FastAPI/Backend
API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
API_PORT: int = int(os.getenv("API_PORT", "8000"))
ITINERARY_MAP_API_URL: str = os.getenv("ITINERARY_MAP_API_URL", "http://localhost:8000")

# CORS Configuration
CORS_ORIGINS: List[str] = os.getenv("CORS_ORIGINS", "*").split(",") if os.getenv("CORS_ORIGINS") else ["*"]

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()


# ============================================================================
# Snapshot Storage Configuration
# ============================================================================

# Redis connection URL (e.g., redis://localhost:6379/0 or redis://:password@host:port/0)
REDIS_URL: Optional[str] = os.getenv("REDIS_URL")

# Snapshot TTL in seconds (default: 24 hours)
SNAPSHOT_TTL_SECONDS: int = int(os.getenv("SNAPSHOT_TTL_SECONDS", "86400"))

# Live maps kept in memory; older sessions are redrawn from their stored snapshot
MAX_ACTIVE_SESSIONS: int = int(os.getenv("MAX_ACTIVE_SESSIONS", "128"))


# ============================================================================
# AWS Configuration
# ============================================================================

# AWS Region
AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")

# AWS Secrets Manager secret name (optional, for storing API keys)
AWS_SECRETS_MANAGER_SECRET_NAME: Optional[str] = os.getenv("AWS_SECRETS_MANAGER_SECRET_NAME")


# ============================================================================
# AWS Secrets Manager Integration
# ============================================================================

def _get_secret_from_aws(secret_name: str, region: str = AWS_REGION) -> Optional[dict]:
    """Fetch secret from AWS Secrets Manager."""
    logger = logging.getLogger(__name__)
    try:
        import boto3
        from botocore.exceptions import ClientError
    except ImportError:
        logger.warning("boto3 not installed. Cannot fetch secrets from AWS Secrets Manager.")
        return None

    try:
        client = boto3.client("secretsmanager", region_name=region)
        response = client.get_secret_value(SecretId=secret_name)
        import json

        return json.loads(response["SecretString"])
    except ClientError as e:
        logger.warning(f"Failed to fetch secret from AWS Secrets Manager: {e}")
        return None


def _get_api_key_with_fallback(env_var: str, secret_key: Optional[str] = None) -> Optional[str]:
    """Get API key from environment variable or AWS Secrets Manager."""
    # First try environment variable
    value = os.getenv(env_var)
    if value:
        return value

    # Then try AWS Secrets Manager if configured
    if AWS_SECRETS_MANAGER_SECRET_NAME and secret_key:
        secrets = _get_secret_from_aws(AWS_SECRETS_MANAGER_SECRET_NAME)
        if secrets and secret_key in secrets:
            return secrets[secret_key]

    return None


# ============================================================================
# API Keys (with AWS Secrets Manager support)
# ============================================================================

def get_amap_api_key() -> Optional[str]:
    """Get AMap key - must be a "Web (JS API)" key for the map SDK."""
    return _get_api_key_with_fallback("AMAP_API_KEY", "AMAP_API_KEY")


def get_baidu_api_key() -> Optional[str]:
    """Get Baidu Maps AK - checks environment, then AWS Secrets Manager."""
    return _get_api_key_with_fallback("BAIDU_MAP_AK", "BAIDU_MAP_AK")


def get_map_api_key(provider: Optional[str] = None) -> Optional[str]:
    """Return the credential for ``provider`` (OSM needs none)."""
    provider = (provider or MAP_PROVIDER).lower()
    if provider == "amap":
        return get_amap_api_key()
    if provider == "baidu":
        return get_baidu_api_key()
    return None


# ============================================================================
# Validation
# ============================================================================

def validate_api_keys(provider: Optional[str] = None) -> List[str]:
    """Validate that required API keys are present. Returns list of missing keys."""
    provider = (provider or MAP_PROVIDER).lower()
    missing = []

    if provider not in SUPPORTED_PROVIDERS:
        missing.append(f"MAP_PROVIDER (unsupported value '{provider}')")
    elif provider == "amap" and not get_amap_api_key():
        missing.append("AMAP_API_KEY")
    elif provider == "baidu" and not get_baidu_api_key():
        missing.append("BAIDU_MAP_AK")

    return missing


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for service entry points."""
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
