import boto3
from moto import mock_aws
import pytest

from gamehost.aws.security_groups import build_security_policy, ensure_security_group
from gamehost.games.registry import PortRule
from gamehost.games.satisfactory import satisfactory

pytestmark = pytest.mark.uses_moto


def _ingress_keys(ec2, sg_id):
    perms = ec2.describe_security_groups(GroupIds=[sg_id])["SecurityGroups"][0]["IpPermissions"]
    return {(p["IpProtocol"], p["FromPort"], p["ToPort"]) for p in perms}


def test_policy_has_exactly_the_configured_rules():
    policy = build_security_policy(satisfactory.ports)
    assert len(policy.rules) == 4
    assert policy.rules == frozenset(satisfactory.ports)


def test_policy_adds_no_implicit_rules():
    rules = [PortRule(name="game", port=27015, protocol="udp")]
    policy = build_security_policy(rules)
    perms = policy.ip_permissions()
    assert len(perms) == 1
    assert perms[0]["FromPort"] == 27015
    assert perms[0]["IpProtocol"] == "udp"
    assert all(p["FromPort"] != 22 for p in perms)


def test_empty_policy_opens_nothing():
    assert build_security_policy([]).ip_permissions() == []


def test_ip_permissions_open_to_any_source():
    perms = build_security_policy(satisfactory.ports).ip_permissions()
    assert {(p["IpProtocol"], p["FromPort"]) for p in perms} == {
        ("udp", 7777), ("tcp", 7777), ("udp", 15000), ("udp", 15777),
    }
    for perm in perms:
        assert perm["IpRanges"][0]["CidrIp"] == "0.0.0.0/0"


def test_rules_sharing_a_port_keep_cardinality():
    rules = [
        PortRule(name="game", port=7777, protocol="udp"),
        PortRule(name="voice", port=7777, protocol="udp"),
    ]
    policy = build_security_policy(rules)
    assert len(policy.rules) == 2
    perms = policy.ip_permissions()
    assert len(perms) == 1
    assert perms[0]["IpRanges"][0]["Description"] == "Game / Voice port"


@mock_aws
def test_ensure_security_group_applies_policy():
    ec2 = boto3.client("ec2", region_name="us-east-1")
    vpc_id = ec2.create_vpc(CidrBlock="10.0.0.0/16")["Vpc"]["VpcId"]
    policy = build_security_policy(satisfactory.ports)
    sg_id = ensure_security_group("us-east-1", "satisfactory", vpc_id, policy, "dep-1")
    assert sg_id.startswith("sg-")
    sg = ec2.describe_security_groups(GroupIds=[sg_id])["SecurityGroups"][0]
    assert sg["GroupName"] == "satisfactory-server-sg"
    tags = {t["Key"]: t["Value"] for t in sg.get("Tags", [])}
    assert tags["gamehost:id"] == "dep-1"
    assert _ingress_keys(ec2, sg_id) == {
        ("udp", 7777, 7777), ("tcp", 7777, 7777), ("udp", 15000, 15000), ("udp", 15777, 15777),
    }


@mock_aws
def test_ensure_security_group_reuses_and_syncs_rules():
    ec2 = boto3.client("ec2", region_name="us-east-1")
    vpc_id = ec2.create_vpc(CidrBlock="10.0.0.0/16")["Vpc"]["VpcId"]
    first = build_security_policy([
        PortRule(name="game", port=7777, protocol="udp"),
        PortRule(name="query", port=15777, protocol="udp"),
    ])
    sg_id1 = ensure_security_group("us-east-1", "satisfactory", vpc_id, first, "dep-1")

    second = build_security_policy([
        PortRule(name="game", port=7777, protocol="udp"),
        PortRule(name="api", port=7777, protocol="tcp"),
    ])
    sg_id2 = ensure_security_group("us-east-1", "satisfactory", vpc_id, second, "dep-1")

    assert sg_id1 == sg_id2
    assert _ingress_keys(ec2, sg_id2) == {("udp", 7777, 7777), ("tcp", 7777, 7777)}
