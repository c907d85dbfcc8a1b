"""S3-compatible object storage for finished recordings."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import boto3
from botocore.config import Config


def _normalize_segment(value: str) -> str:
    """Normalize a path segment for an S3 object key."""
    return "/".join(part for part in value.replace("\\", "/").split("/") if part)


def build_object_key(name: str, prefix: str = "") -> str:
    """Build an S3 object key from an optional prefix and the object name."""
    parts = []

    if prefix:
        normalized_prefix = _normalize_segment(prefix)
        if normalized_prefix:
            parts.append(normalized_prefix)

    parts.append(_normalize_segment(name))
    return "/".join(parts)


@dataclass
class S3Config:
    """Configuration for S3-compatible storage."""

    bucket: str
    endpoint_url: str
    access_key: str
    secret_key: str
    region: Optional[str] = None
    prefix: str = ""
    public_base_url: Optional[str] = None
    verify_ssl: bool = True
    path_style: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3Config":
        """Build and validate S3 config from mapping."""
        required_fields = ("bucket", "endpoint_url", "access_key", "secret_key")
        missing = [field for field in required_fields if not data.get(field)]
        if missing:
            raise ValueError(f"Missing required S3 configuration fields: {', '.join(missing)}")

        return cls(
            bucket=str(data["bucket"]),
            endpoint_url=str(data["endpoint_url"]),
            access_key=str(data["access_key"]),
            secret_key=str(data["secret_key"]),
            region=str(data["region"]) if data.get("region") else None,
            prefix=str(data.get("prefix", "")),
            public_base_url=str(data["public_base_url"]) if data.get("public_base_url") else None,
            verify_ssl=bool(data.get("verify_ssl", True)),
            path_style=bool(data.get("path_style", True)),
        )


class S3Uploader:
    """Uploader for S3-compatible object storage services."""

    def __init__(self, config: S3Config) -> None:
        """Initialize uploader client with S3-compatible settings."""
        self._config = config
        addressing_style = "path" if config.path_style else "virtual"

        self._client = boto3.client(
            "s3",
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key,
            aws_secret_access_key=config.secret_key,
            region_name=config.region,
            verify=config.verify_ssl,
            config=Config(s3={"addressing_style": addressing_style}),
        )

    @property
    def bucket(self) -> str:
        """Return configured bucket name."""
        return self._config.bucket

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "S3Uploader":
        """Build uploader directly from dictionary config."""
        return cls(S3Config.from_dict(data))

    def public_url(self, object_key: str) -> str:
        """Return the URL under which *object_key* is publicly readable."""
        if self._config.public_base_url:
            return f"{self._config.public_base_url.rstrip('/')}/{object_key}"
        return f"{self._config.endpoint_url.rstrip('/')}/{self._config.bucket}/{object_key}"

    def upload_bytes(self, name: str, data: bytes, content_type: str) -> str:
        """Upload *data* under *name* and return its public URL."""
        object_key = build_object_key(name, prefix=self._config.prefix)
        self._client.put_object(
            Bucket=self._config.bucket,
            Key=object_key,
            Body=data,
            ContentType=content_type,
        )
        return self.public_url(object_key)

    def check_bucket(self) -> bool:
        """Verify that the configured bucket is accessible.

        Makes a lightweight ``head_bucket`` call. Any client error (not found,
        forbidden, etc.) is caught and ``False`` is returned instead.
        """
        try:
            # head_bucket does not return content, it just raises on failure
            self._client.head_bucket(Bucket=self._config.bucket)
            return True
        except Exception:  # boto3 raises botocore.exceptions.ClientError
            return False
