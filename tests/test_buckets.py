import json

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from proprion.errors import BucketConflict, OpError, ProviderUnreachable
from proprion.models import BucketStatus, WorkflowStep
from proprion.providers import buckets


def _client_error(code, status=400, op="HeadBucket"):
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        op,
    )


class FakeS3:
    def __init__(self, *, head=None, create=None, policy=None):
        self.head = head
        self.create = create
        self.policy = policy
        self.created: list[dict] = []
        self.put_policies: list[dict] = []
        self.deleted_policy = False

    def head_bucket(self, **kwargs):
        if self.head:
            raise self.head
        return {}

    def create_bucket(self, **kwargs):
        self.created.append(kwargs)
        if self.create:
            raise self.create
        return {}

    def get_bucket_policy(self, **kwargs):
        if isinstance(self.policy, Exception):
            raise self.policy
        return {"Policy": self.policy or ""}

    def put_bucket_policy(self, **kwargs):
        self.put_policies.append(json.loads(kwargs["Policy"]))

    def delete_bucket_policy(self, **kwargs):
        self.deleted_policy = True


def test_existing_bucket_is_ready_without_create():
    s3 = FakeS3()
    assert buckets.ensure_bucket(s3, bucket="b", region="fr-par") == BucketStatus.READY
    assert s3.created == []


def test_missing_bucket_is_created_with_location():
    s3 = FakeS3(head=_client_error("404", 404))
    assert buckets.ensure_bucket(s3, bucket="b", region="ch-gva-2") == BucketStatus.CREATED
    assert s3.created == [
        {"Bucket": "b", "CreateBucketConfiguration": {"LocationConstraint": "ch-gva-2"}}
    ]


def test_forbidden_bucket_is_conflict_at_init():
    s3 = FakeS3(head=_client_error("403", 403))
    with pytest.raises(BucketConflict) as ei:
        buckets.ensure_bucket(s3, bucket="b", region="fr-par")
    assert ei.value.step == WorkflowStep.INIT
    assert s3.created == []


def test_name_taken_elsewhere_is_conflict():
    s3 = FakeS3(head=_client_error("NoSuchBucket", 404), create=_client_error("BucketAlreadyExists", 409))
    with pytest.raises(BucketConflict):
        buckets.ensure_bucket(s3, bucket="b", region="fr-par")


def test_create_race_with_self_is_ready():
    s3 = FakeS3(head=_client_error("NotFound", 404), create=_client_error("BucketAlreadyOwnedByYou", 409))
    assert buckets.ensure_bucket(s3, bucket="b", region="fr-par") == BucketStatus.READY


def test_unreachable_endpoint():
    s3 = FakeS3(head=EndpointConnectionError(endpoint_url="https://s3.example"))
    with pytest.raises(ProviderUnreachable):
        buckets.ensure_bucket(s3, bucket="b", region="fr-par")


def test_get_bucket_policy_absent_returns_none():
    s3 = FakeS3(policy=_client_error("NoSuchBucketPolicy", 404, "GetBucketPolicy"))
    assert buckets.get_bucket_policy(s3, bucket="b") is None


def test_get_bucket_policy_parses_document():
    s3 = FakeS3(policy=json.dumps({"Version": "2023-04-17", "Statement": []}))
    assert buckets.get_bucket_policy(s3, bucket="b") == {"Version": "2023-04-17", "Statement": []}


def test_get_bucket_policy_other_error_is_op_error():
    s3 = FakeS3(policy=_client_error("AccessDenied", 403, "GetBucketPolicy"))
    with pytest.raises(OpError):
        buckets.get_bucket_policy(s3, bucket="b")


def test_second_ensure_is_ready():
    class StatefulS3(FakeS3):
        def head_bucket(self, **kwargs):
            if not self.created:
                raise _client_error("404", 404)
            return {}

    s3 = StatefulS3()
    assert buckets.ensure_bucket(s3, bucket="b", region="fr-par") == BucketStatus.CREATED
    assert buckets.ensure_bucket(s3, bucket="b", region="fr-par") == BucketStatus.READY
    assert len(s3.created) == 1
