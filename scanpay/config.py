"""
Configuration management for the scan-and-pay checkout pipeline.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
import boto3
from typing import Optional

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    REGION: str = os.getenv("REGION", "ap-southeast-2")

    # Transaction / item catalog service
    API_SERVER_BASE_URL: str = os.getenv("API_SERVER_BASE_URL", "http://localhost:8080")
    API_VERSION: str = os.getenv("API_VERSION", "v1")
    REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "5"))
    LOOKUP_MAX_RETRIES: int = int(os.getenv("LOOKUP_MAX_RETRIES", "3"))

    # Checkout settings
    DEFAULT_CUSTOMER_REF: str = os.getenv("DEFAULT_CUSTOMER_REF", "")
    MERCHANT_NAME: Optional[str] = os.getenv("MERCHANT_NAME")
    TRANSACTION_REF_PREFIX: str = "TXD"
    CART_TTL_SECONDS: int = int(os.getenv("CART_TTL_SECONDS", str(24 * 60 * 60)))  # idle carts expire after 1 day

    # Receipt storage settings
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "redis")  # redis | memory
    RECEIPTS_STORAGE_KEY: str = os.getenv("RECEIPTS_STORAGE_KEY", "saved_receipts")

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = _env_bool("REDIS_SSL")

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    @classmethod
    def redis_url(cls) -> str:
        scheme = "rediss" if cls.REDIS_SSL else "redis"
        auth = f":{cls.REDIS_AUTH_TOKEN}@" if cls.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{cls.REDIS_HOST}:{cls.REDIS_PORT}/{cls.REDIS_DB}"

    @classmethod
    def load_redis_secrets(cls) -> None:
        """Load Redis authentication token from AWS Secrets Manager"""
        if cls.REDIS_AUTH_TOKEN:
            return  # Already loaded from environment

        secret_name = os.getenv("REDIS_SECRET_NAME")
        if not secret_name:
            return  # No secret name provided, use no auth

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])

            cls.REDIS_AUTH_TOKEN = secret_data.get("auth_token")
            if "endpoint" in secret_data:
                cls.REDIS_HOST = secret_data["endpoint"]
        except Exception as e:
            logger.warning(f"Could not load Redis secrets from Secrets Manager: {e}")
            # Continue without auth token (may fail on connection)

# Load secrets at module import
Config.load_redis_secrets()
