"""Application configuration for the bucketgate service."""

from __future__ import annotations

from typing import Optional

from pydantic import Field, RedisDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class GatewaySettings(BaseSettings):
    """Runtime settings for the redirecting gateway."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    s3_bucket: str = env_field(..., "BUCKETGATE_S3_BUCKET")
    content_domain: str = env_field(..., "BUCKETGATE_CONTENT_DOMAIN")
    s3_endpoint_url: Optional[str] = env_field(None, "BUCKETGATE_S3_ENDPOINT")
    s3_region: Optional[str] = env_field(None, "BUCKETGATE_S3_REGION")
    s3_signature_version: str = env_field("s3v4", "BUCKETGATE_S3_SIGNATURE_VERSION")
    s3_addressing_style: str = env_field("virtual", "BUCKETGATE_S3_ADDRESSING_STYLE")
    s3_connect_timeout_seconds: float = env_field(5.0, "BUCKETGATE_S3_CONNECT_TIMEOUT")
    s3_read_timeout_seconds: float = env_field(10.0, "BUCKETGATE_S3_READ_TIMEOUT")
    redis_url: RedisDsn = env_field("redis://localhost:6379/0", "BUCKETGATE_REDIS_URL")
    redis_socket_timeout_seconds: float = env_field(5.0, "BUCKETGATE_REDIS_SOCKET_TIMEOUT")
    signed_url_window_seconds: int = env_field(24 * 60 * 60, "BUCKETGATE_SIGNED_URL_WINDOW")
    status_log_threshold: int = env_field(1000, "BUCKETGATE_STATUS_LOG_THRESHOLD")
    real_ip_header: str = env_field("X-Real-IP", "BUCKETGATE_REAL_IP_HEADER")
    metrics_path: Optional[str] = env_field(None, "BUCKETGATE_METRICS_PATH")
    metrics_token: Optional[SecretStr] = env_field(None, "BUCKETGATE_METRICS_TOKEN")
    bind_host: str = env_field("0.0.0.0", "BUCKETGATE_BIND_HOST")
    bind_port: int = env_field(8080, "BUCKETGATE_BIND_PORT")
    log_level: str = env_field("INFO", "BUCKETGATE_LOG_LEVEL")
    log_format: str = env_field("json", "BUCKETGATE_LOG_FORMAT")
    otel_exporter_endpoint: Optional[str] = env_field(None, "BUCKETGATE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "BUCKETGATE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "BUCKETGATE_OTEL_SAMPLER_RATIO")

    @field_validator("content_domain", mode="before")
    @classmethod
    def _strip_domain_scheme(cls, value):
        if isinstance(value, str):
            value = value.strip()
            for scheme in ("http://", "https://"):
                if value.lower().startswith(scheme):
                    value = value[len(scheme):]
            return value.rstrip("/")
        return value

    @field_validator("metrics_path", mode="before")
    @classmethod
    def _normalize_metrics_path(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            if not value.startswith("/"):
                value = "/" + value
        return value

    @field_validator("status_log_threshold", "signed_url_window_seconds")
    @classmethod
    def _reject_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value
