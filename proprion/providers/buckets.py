from __future__ import annotations

import json
from typing import Any

from botocore.config import Config as BotoConfig
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ..errors import BucketConflict, OpError, ProviderUnreachable
from ..models import BucketStatus, WorkflowStep

_UNREACHABLE = (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError)
_MISSING_CODES = {"404", "NoSuchBucket", "NotFound"}
_NO_POLICY_CODES = {"NoSuchBucketPolicy", "404", "NoSuchPolicy"}


def s3_client(
    session: Any,
    *,
    endpoint: str,
    region: str,
    access_key: str,
    secret_key: str,
) -> Any:
    # S3-compatible providers want path-style addressing and SigV4.
    return session.client(
        "s3",
        endpoint_url=endpoint,
        region_name=region,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


def _error_code(e: ClientError) -> str:
    return str((e.response or {}).get("Error", {}).get("Code", "") or "")


def _http_status(e: ClientError) -> int:
    meta = (e.response or {}).get("ResponseMetadata", {}) or {}
    try:
        return int(meta.get("HTTPStatusCode") or 0)
    except (TypeError, ValueError):
        return 0


def ensure_bucket(s3: Any, *, bucket: str, region: str) -> BucketStatus:
    try:
        s3.head_bucket(Bucket=bucket)
        return BucketStatus.READY
    except ClientError as e:
        code = _error_code(e)
        status = _http_status(e)
        if code not in _MISSING_CODES and status != 404:
            raise BucketConflict(
                f"bucket {bucket!r} exists but is not reachable with these credentials "
                f"(code={code or status})",
                step=WorkflowStep.INIT,
            ) from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 head-bucket failed for {bucket!r}: {e}") from e

    try:
        s3.create_bucket(
            Bucket=bucket,
            CreateBucketConfiguration={"LocationConstraint": region},
        )
    except ClientError as e:
        code = _error_code(e)
        if code == "BucketAlreadyOwnedByYou":
            return BucketStatus.READY
        if code == "BucketAlreadyExists":
            raise BucketConflict(
                f"bucket name {bucket!r} is owned by another account",
                step=WorkflowStep.INIT,
            ) from e
        raise OpError(f"s3 create-bucket failed for {bucket!r}: {e}") from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 create-bucket failed for {bucket!r}: {e}") from e
    return BucketStatus.CREATED


def check_s3_access(s3: Any) -> None:
    try:
        s3.list_buckets()
    except ClientError as e:
        raise OpError(f"s3 list-buckets failed: {e}") from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 list-buckets failed: {e}") from e


def get_bucket_policy(s3: Any, *, bucket: str) -> dict[str, Any] | None:
    try:
        resp = s3.get_bucket_policy(Bucket=bucket)
    except ClientError as e:
        if _error_code(e) in _NO_POLICY_CODES:
            return None
        raise OpError(f"s3 get-bucket-policy failed for {bucket!r}: {e}") from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 get-bucket-policy failed for {bucket!r}: {e}") from e
    raw = str(resp.get("Policy") or "").strip()
    if not raw:
        return None
    try:
        doc = json.loads(raw)
    except ValueError as e:
        raise OpError(f"bucket {bucket!r} has an unreadable policy: {e}") from e
    return doc if isinstance(doc, dict) else None


def put_bucket_policy(s3: Any, *, bucket: str, policy: dict[str, Any]) -> None:
    try:
        s3.put_bucket_policy(Bucket=bucket, Policy=json.dumps(policy, separators=(",", ":")))
    except ClientError as e:
        raise OpError(f"s3 put-bucket-policy failed for {bucket!r}: {e}") from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 put-bucket-policy failed for {bucket!r}: {e}") from e


def delete_bucket_policy(s3: Any, *, bucket: str) -> None:
    try:
        s3.delete_bucket_policy(Bucket=bucket)
    except ClientError as e:
        if _error_code(e) in _NO_POLICY_CODES:
            return
        raise OpError(f"s3 delete-bucket-policy failed for {bucket!r}: {e}") from e
    except _UNREACHABLE as e:
        raise ProviderUnreachable(f"s3 delete-bucket-policy failed for {bucket!r}: {e}") from e
