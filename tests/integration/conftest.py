import os
import secrets
import string

import boto3
import pytest
from botocore.config import Config as BotoConfig

from proprion.config_store import ConfigStore
from proprion.models import ProviderConfig


def _rand_suffix(n: int = 8) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RUN_INTEGRATION") == "1":
        return
    skip = pytest.mark.skip(reason="integration tests require RUN_INTEGRATION=1")
    for item in items:
        if "tests/integration/" in item.nodeid:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def it_provider() -> ProviderConfig:
    # Require explicit opt-in and a real, already-configured provider.
    if os.environ.get("RUN_INTEGRATION") != "1":
        pytest.skip("set RUN_INTEGRATION=1 to run integration tests")
    name = os.environ.get("PROPRION_IT_PROVIDER")
    if not name:
        raise RuntimeError("missing required env var: PROPRION_IT_PROVIDER")
    return ConfigStore().get(name)


@pytest.fixture
def app_name() -> str:
    return f"it-{_rand_suffix()}"


def _s3_for_bundle(bundle, region: str):
    return boto3.session.Session().client(
        "s3",
        endpoint_url=bundle.endpoint,
        region_name=region,
        aws_access_key_id=bundle.access_key_id,
        aws_secret_access_key=bundle.secret_key,
        config=BotoConfig(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


@pytest.fixture
def s3_for_bundle():
    return _s3_for_bundle
