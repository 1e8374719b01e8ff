import os
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from gamehost.config import config_from_dict
from gamehost.control.state import DeploymentRecord

# moto 5 only seeds AWS managed policies (e.g. AmazonSSMManagedInstanceCore) when asked.
os.environ.setdefault("MOTO_IAM_LOAD_MANAGED_POLICIES", "true")


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "uses_moto: test uses moto @mock_aws (allows boto3 calls)"
    )


@pytest.fixture(autouse=True)
def _block_real_aws(request, monkeypatch):
    """Prevent any test from making real AWS API calls."""
    if request.node.get_closest_marker("uses_moto"):
        monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
        monkeypatch.setenv("MOTO_IAM_LOAD_MANAGED_POLICIES", "true")
        return

    def _blocked_client(service, *a, **kw):
        raise RuntimeError(
            f"Unmocked boto3.client('{service}') call! "
            f"Add a @patch or fixture mock for this AWS call."
        )

    def _blocked_resource(service, *a, **kw):
        raise RuntimeError(
            f"Unmocked boto3.resource('{service}') call! "
            f"Add a @patch or fixture mock for this AWS call."
        )

    monkeypatch.setattr(boto3, "client", _blocked_client)
    monkeypatch.setattr(boto3, "resource", _blocked_resource)


# ── Record / config factories ──


@pytest.fixture
def make_deployment_record():
    """Factory for DeploymentRecord with sensible defaults. Override any field via kwargs."""
    def _make(**overrides):
        defaults = dict(
            id="dep-1", name="Satisfactory", game="satisfactory", region="us-east-1",
            instance_id="i-test123", vpc_id="vpc-test", subnet_id="subnet-test",
            security_group_id="sg-test123", save_store="satisfactory-saves-abc",
            save_store_owned=True, artifact_bucket="satisfactory-assets-abc",
            role_name="satisfactory-server-role-dep-1", status="running",
            eip_allocation_id="eipalloc-test", public_ip="54.1.2.3",
            startup_hash="hash-1", activation_enabled=True,
        )
        defaults.update(overrides)
        return DeploymentRecord(**defaults)
    return _make


@pytest.fixture
def make_config():
    """Factory for DeploymentConfig built from the satisfactory profile plus overrides."""
    def _make(**overrides):
        data = {"name": "Satisfactory", "game": "satisfactory", "region": "us-east-1"}
        data.update(overrides)
        return config_from_dict(data)
    return _make


@pytest.fixture
def make_client_error():
    """Factory for botocore ClientError."""
    def _make(code: str, message: str = "error"):
        return ClientError({"Error": {"Code": code, "Message": message}}, "TestOp")
    return _make


# ── Shared mock fixtures ──


@pytest.fixture
def mock_deploy_deps(monkeypatch):
    """Mock all AWS dependencies of Provisioner.deploy().

    Returns a SimpleNamespace with `.mocks`, a dict of every patched function
    mock keyed by name. Override return values per test as needed.
    """
    from gamehost.aws.s3 import SaveStore
    from gamehost.aws.vpc import NetworkContext
    from gamehost.control.startup import Artifact

    def _upload(region, bucket, path):
        name = Path(path).name
        return Artifact(bucket=bucket, key=f"assets/abc123/{name}", filename=name)

    defaults = {
        "resolve_network": NetworkContext(
            vpc_id="vpc-123", subnet_id="subnet-123", availability_zone="us-east-1a",
            is_default_vpc=True,
        ),
        "resolve_image": "ami-test123",
        "resolve_save_store": SaveStore(
            name="satisfactory-saves-new", owned=True, versioned=True, transition_after_days=30,
        ),
        "ensure_security_group": "sg-test123",
        "ensure_instance_role": ("satisfactory-server-role-x", "arn:aws:iam::123456789012:instance-profile/p"),
        "grant_save_store": None,
        "grant_artifacts": None,
        "create_bucket": None,
        "launch_instance": "i-test123",
        "wait_for_instance_running": None,
        "describe_instance": None,
        "allocate_eip": ("eipalloc-test", "54.1.2.3"),
        "get_eip": {"AllocationId": "eipalloc-test", "PublicIp": "54.1.2.3"},
        "associate_eip": "eipassoc-test",
        "release_eip": None,
        "terminate_instance": None,
        "get_account_id": "123456789012",
        "ensure_activation_role": "arn:aws:iam::123456789012:role/satisfactory-activation",
        "delete_role": None,
        "ensure_activation_function": (
            "satisfactory-activation-x", "https://abc123.lambda-url.us-east-1.on.aws/",
        ),
        "delete_activation_function": None,
        "get_instance_state": "running",
        "disassociate_eip": None,
    }
    mocks = {}
    for name, rv in defaults.items():
        mock = MagicMock(return_value=rv)
        monkeypatch.setattr(f"gamehost.control.provisioner.{name}", mock)
        mocks[name] = mock

    upload = MagicMock(side_effect=_upload)
    monkeypatch.setattr("gamehost.control.provisioner.upload_artifact", upload)
    mocks["upload_artifact"] = upload

    return SimpleNamespace(mocks=mocks)
