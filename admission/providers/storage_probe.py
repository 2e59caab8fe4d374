"""Object-storage reachability probes.

A probe performs a full round trip against the declared endpoint with the
declared credentials:
    verify bucket -> write marker -> read marker -> list -> delete marker

Failures surface as `ExternalProbeFailure` with a coarse category; SDK error
details (which may echo credentials or endpoints) are only logged.

NOTE: the round trip writes and deletes a marker object using the caller's
credentials during ordinary validation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, runtime_checkable
from urllib.parse import quote

from admission.config import AdmissionConfig
from admission.core.errors import ExternalProbeFailure, ValidationBusinessRule
from admission.core.models import STORAGE_AZURE, STORAGE_S3

logger = logging.getLogger(__name__)

MARKER_OBJECT_S3 = "admission-write-test"
MARKER_OBJECT_AZURE = "admission-test-blob"


@dataclass(frozen=True)
class StorageTarget:
    type: str
    bucket: str
    region: str = ""
    endpoint_url: Optional[str] = None
    access_key: str = ""
    secret_key: str = ""
    verify_tls: bool = True
    force_path_style: bool = False

    def __repr__(self) -> str:
        # Credentials never end up in logs or tracebacks.
        return f"StorageTarget(type={self.type!r}, bucket={self.bucket!r}, region={self.region!r}, endpoint_url={self.endpoint_url!r})"


@runtime_checkable
class StorageProbe(Protocol):
    def check(self, target: StorageTarget, *, timeout: float) -> None: ...


ProbeFactory = Callable[[str], StorageProbe]


class NoopProbe:
    """Debug mode: every storage is reachable."""

    def check(self, target: StorageTarget, *, timeout: float) -> None:
        logger.debug(f"Skipping reachability probe for {target!r} (debug mode)")


class S3Probe:
    def _client(self, target: StorageTarget, timeout: float):  # type: ignore[no-untyped-def]
        import boto3
        from botocore.config import Config

        cfg = Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"max_attempts": 1},
            s3={"addressing_style": "path" if target.force_path_style else "auto"},
        )
        session = boto3.session.Session(
            aws_access_key_id=target.access_key,
            aws_secret_access_key=target.secret_key,
            region_name=target.region or None,
        )
        return session.client("s3", endpoint_url=target.endpoint_url or None, verify=target.verify_tls, config=cfg)

    def check(self, target: StorageTarget, *, timeout: float) -> None:
        from botocore.exceptions import BotoCoreError, ClientError

        try:
            s3 = self._client(target, timeout)
        except (BotoCoreError, ValueError) as e:
            logger.error(f"Could not initialize S3 client for {target!r}: {e}")
            raise ExternalProbeFailure(ExternalProbeFailure.CONNECT, "could not initialize S3 session") from e

        bucket = target.bucket
        steps = (
            (
                ExternalProbeFailure.CONNECT,
                "unable to connect to s3. Check your credentials",
                lambda: s3.head_bucket(Bucket=bucket),
            ),
            (
                ExternalProbeFailure.WRITE,
                "could not write to S3 bucket",
                lambda: s3.put_object(Bucket=bucket, Key=MARKER_OBJECT_S3, Body=b""),
            ),
            (
                ExternalProbeFailure.READ,
                "could not read from S3 bucket",
                lambda: s3.get_object(Bucket=bucket, Key=MARKER_OBJECT_S3)["Body"].read(),
            ),
            (
                ExternalProbeFailure.LIST,
                "could not list objects in S3 bucket",
                lambda: s3.list_objects_v2(Bucket=bucket, MaxKeys=1),
            ),
            (
                ExternalProbeFailure.DELETE,
                "could not delete an object from S3 bucket",
                lambda: s3.delete_object(Bucket=bucket, Key=MARKER_OBJECT_S3),
            ),
        )
        for category, message, call in steps:
            try:
                call()
            except ClientError as e:
                code = e.response.get("Error", {}).get("Code", "Unknown")
                logger.warning(f"S3 probe step '{category}' failed for {target!r}: {code}")
                raise ExternalProbeFailure(category, message) from e
            except BotoCoreError as e:
                logger.warning(f"S3 probe step '{category}' failed for {target!r}: {e}")
                raise ExternalProbeFailure(category, message) from e


class AzureProbe:
    def _container(self, target: StorageTarget, timeout: float):  # type: ignore[no-untyped-def]
        from azure.storage.blob import BlobServiceClient

        # For Azure the access key is the account name and the secret key the account key.
        account_url = f"https://{quote(target.access_key, safe='')}.blob.core.windows.net/"
        service = BlobServiceClient(
            account_url=account_url,
            credential={"account_name": target.access_key, "account_key": target.secret_key},
            connection_timeout=timeout,
            read_timeout=timeout,
        )
        return service.get_container_client(target.bucket)

    def check(self, target: StorageTarget, *, timeout: float) -> None:
        from azure.core.exceptions import AzureError

        try:
            container = self._container(target, timeout)
        except (AzureError, ValueError) as e:
            logger.error(f"Could not initialize Azure client for {target!r}: {e}")
            raise ExternalProbeFailure(ExternalProbeFailure.CONNECT, "could not initialize Azure client") from e

        steps = (
            (
                ExternalProbeFailure.LIST,
                "could not list blobs in Azure container",
                lambda: next(iter(container.list_blobs(results_per_page=1).by_page()), None),
            ),
            (
                ExternalProbeFailure.WRITE,
                "could not write to Azure container",
                lambda: container.upload_blob(MARKER_OBJECT_AZURE, b"", overwrite=True),
            ),
            (
                ExternalProbeFailure.READ,
                "could not read from Azure container",
                lambda: container.download_blob(MARKER_OBJECT_AZURE).readall(),
            ),
            (
                ExternalProbeFailure.DELETE,
                "could not delete a blob from Azure container",
                lambda: container.delete_blob(MARKER_OBJECT_AZURE),
            ),
        )
        for category, message, call in steps:
            try:
                call()
            except AzureError as e:
                logger.warning(f"Azure probe step '{category}' failed for {target!r}: {e}")
                raise ExternalProbeFailure(category, message) from e


def probe_factory(config: AdmissionConfig) -> ProbeFactory:
    def _get(storage_type: str) -> StorageProbe:
        if config.debug:
            return NoopProbe()
        if storage_type == STORAGE_S3:
            return S3Probe()
        if storage_type == STORAGE_AZURE:
            return AzureProbe()
        raise ValidationBusinessRule(f"storage type '{storage_type}' is not supported")

    return _get
