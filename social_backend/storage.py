"""
Storage abstraction for S3-compatible object storage and in-memory testing.

Only profile images live in object storage. The API hands out presigned
upload URLs; clients upload directly and then save the public URL on their
profile.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 900
    ) -> str:
        ...

    def public_url(self, path: str) -> str:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    presigned: dict = field(default_factory=dict)

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 900
    ) -> str:
        self.presigned[path] = content_type
        return f"{self.base_url}/{path}?op=put&expires={expires_in}"

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{path}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, Tencent COS, MinIO, ...).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: Optional[str] = None

    def __post_init__(self):
        # Virtual-hosted style addressing works for both S3 and COS.
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def presign_put(
        self, path: str, content_type: str, expires_in: int = 900
    ) -> str:
        # The signed content type must match the browser upload header.
        return self._client.generate_presigned_url(
            ClientMethod="put_object",
            Params={
                "Bucket": self.bucket,
                "Key": path,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{path}"
        if self.endpoint:
            host = self.endpoint.split("://", 1)[-1].rstrip("/")
            return f"https://{self.bucket}.{host}/{path}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{path}"
