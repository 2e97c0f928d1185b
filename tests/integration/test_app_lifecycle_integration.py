import time

import pytest
from botocore.exceptions import ClientError

from proprion import workflow
from proprion.models import DeleteResult


def _retry_put(s3, **kwargs):
    # Fresh keys can lag behind role propagation on the data plane.
    for attempt in range(10):
        try:
            return s3.put_object(**kwargs)
        except ClientError as e:
            if attempt == 9 or e.response.get("Error", {}).get("Code") not in ("AccessDenied", "InvalidAccessKeyId"):
                raise
            time.sleep(3)


def test_app_credentials_are_confined_to_their_prefix(it_provider, app_name, s3_for_bundle):
    bundle = workflow.create_app(it_provider, app_name, "integration test")
    try:
        s3 = s3_for_bundle(bundle, it_provider.region)
        key = f"{bundle.prefix}hello.txt"
        _retry_put(s3, Bucket=bundle.bucket, Key=key, Body=b"hello")
        assert s3.get_object(Bucket=bundle.bucket, Key=key)["Body"].read() == b"hello"

        listed = s3.list_objects_v2(Bucket=bundle.bucket, Prefix=bundle.prefix)
        assert [o["Key"] for o in listed.get("Contents", [])] == [key]

        with pytest.raises(ClientError):
            s3.put_object(Bucket=bundle.bucket, Key=f"apps/{app_name}2/escape.txt", Body=b"x")
        with pytest.raises(ClientError):
            s3.list_objects_v2(Bucket=bundle.bucket, Prefix="apps/")

        s3.delete_object(Bucket=bundle.bucket, Key=key)
    finally:
        report = workflow.delete_app(it_provider, role_id=bundle.role_id)
    assert report.role_result == DeleteResult.DELETED
    assert all(a.role_id != bundle.role_id for a in workflow.list_apps(it_provider))
