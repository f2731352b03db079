import base64
import binascii
import re
import uuid
from typing import Iterable, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from . import config
from .errors import UploadError, ValidationError

logger = structlog.get_logger(__name__)

ALLOWED_MIME_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
DANGEROUS_MIME_TYPES = (
    "image/svg+xml",
    "text/html",
    "application/javascript",
    "text/javascript",
    "application/xml",
)
MAX_FILE_SIZE = 10 * 1024 * 1024  # 10MB decoded
SIGNED_URL_EXPIRES_SECONDS = 3600

_DATA_URL_RE = re.compile(r"^data:([A-Za-z0-9.+/-]+);base64,(.+)$", re.DOTALL)


def is_data_url(value: Optional[str]) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def validate_mime_type(mime_type: str) -> None:
    """
    Refuse script-capable content types and anything outside the image allow-list.

    Raises
    ------
    ValidationError
        If the type is dangerous or unsupported.
    """
    normalized = mime_type.lower()
    if normalized in DANGEROUS_MIME_TYPES:
        raise ValidationError(
            f"File type '{mime_type}' is not allowed for security reasons"
        )
    if normalized not in ALLOWED_MIME_TYPES:
        raise ValidationError(
            f"File type '{mime_type}' is not supported. "
            f"Allowed types: {', '.join(ALLOWED_MIME_TYPES)}"
        )


def decode_data_url(data_url: str) -> Tuple[str, bytes]:
    """
    Split ``data:<mime>;base64,<payload>`` into (mime, bytes) after checks.
    """
    match = _DATA_URL_RE.match(data_url)
    if not match:
        raise ValidationError("Image must be a base64 data URL")

    content_type = match.group(1)
    validate_mime_type(content_type)

    try:
        payload = base64.b64decode(match.group(2), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Image data is not valid base64")

    if len(payload) > MAX_FILE_SIZE:
        raise ValidationError("File size exceeds maximum allowed size of 10MB")
    return content_type, payload


class ImageStorage:
    """
    Object-storage adapter: encoded image in, durable URL out.

    When no bucket is configured data URLs are validated and then stored
    as-is (development fallback). Plain URLs always pass through.
    """

    def __init__(
        self,
        bucket: Optional[str] = None,
        region: Optional[str] = None,
        client=None,
    ):
        self.bucket = bucket
        self.region = region
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.bucket and (self._client is not None or self.region))

    @property
    def client(self):
        if self._client is None:
            kwargs = {"region_name": self.region}
            if config.AWS_ACCESS_KEY_ID and config.AWS_SECRET_ACCESS_KEY:
                kwargs["aws_access_key_id"] = config.AWS_ACCESS_KEY_ID
                kwargs["aws_secret_access_key"] = config.AWS_SECRET_ACCESS_KEY
            self._client = boto3.client("s3", **kwargs)
        return self._client

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def store(self, data: Optional[str], folder: str = "uploads") -> Optional[str]:
        """
        Return a durable URL for ``data``.

        Raises
        ------
        ValidationError
            For refused MIME types, bad encoding or oversized payloads.
        UploadError
            If the bucket rejects the upload.
        """
        if not is_data_url(data):
            return data

        content_type, payload = decode_data_url(data)

        if not self.configured:
            logger.warning("storage_not_configured_passthrough", folder=folder)
            return data

        extension = content_type.split("/")[1] or "jpg"
        key = f"{folder}/{uuid.uuid4()}.{extension}"
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=payload,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("image_upload_failed", key=key, error=str(exc))
            raise UploadError("Failed to upload image")

        logger.info("image_uploaded", key=key, size=len(payload))
        return self.public_url(key)

    def store_many(self, items: Optional[Iterable[str]], folder: str) -> List[str]:
        return [self.store(item, folder) for item in (items or []) if item]

    def signed_url(self, url: Optional[str]) -> Optional[str]:
        """
        Presigned GET for an object we stored, so admins can view media
        in buckets that block public access.
        """
        if not url or not self.configured or is_data_url(url):
            return url
        key = url
        if url.startswith("http"):
            key = unquote(urlparse(url).path.lstrip("/"))
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=SIGNED_URL_EXPIRES_SECONDS,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("sign_url_failed", key=key, error=str(exc))
            return url


def get_image_storage() -> ImageStorage:
    return ImageStorage(bucket=config.AWS_BUCKET_NAME, region=config.AWS_REGION)
