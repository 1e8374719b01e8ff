from dataclasses import dataclass
from typing import Iterable

import boto3

from gamehost.games.registry import PortRule


@dataclass(frozen=True)
class SecurityPolicy:
    rules: frozenset[PortRule]

    def ip_permissions(self) -> list[dict]:
        """One ingress entry per (port, protocol), open to any IPv4 source."""
        grouped: dict[tuple[int, str], list[str]] = {}
        for rule in sorted(self.rules, key=lambda r: (r.port, r.protocol, r.name)):
            grouped.setdefault((rule.port, rule.protocol), []).append(rule.name)
        permissions = []
        for (port, protocol), names in grouped.items():
            description = " / ".join(n.title() for n in names) + " port"
            permissions.append({
                "IpProtocol": protocol,
                "FromPort": port,
                "ToPort": port,
                "IpRanges": [{"CidrIp": "0.0.0.0/0", "Description": description}],
            })
        return permissions


def build_security_policy(rules: Iterable[PortRule]) -> SecurityPolicy:
    """Derive the ingress allow-list from configured ports. Nothing is added implicitly."""
    return SecurityPolicy(rules=frozenset(rules))


def _permission_keys(permissions: list[dict]) -> set[tuple[str, int, int]]:
    keys = set()
    for perm in permissions:
        for ip_range in perm.get("IpRanges", []):
            if ip_range.get("CidrIp") == "0.0.0.0/0":
                keys.add((perm["IpProtocol"], perm.get("FromPort"), perm.get("ToPort")))
    return keys


def ensure_security_group(
    region: str, prefix: str, vpc_id: str, policy: SecurityPolicy, deployment_id: str,
) -> str:
    """Create the deployment's security group, or bring an existing one in line with the policy."""
    ec2 = boto3.client("ec2", region_name=region)
    sg_name = f"{prefix}-server-sg"

    existing = ec2.describe_security_groups(Filters=[
        {"Name": "group-name", "Values": [sg_name]},
        {"Name": "vpc-id", "Values": [vpc_id]},
    ])
    if existing["SecurityGroups"]:
        sg_id = existing["SecurityGroups"][0]["GroupId"]
        _sync_ingress(ec2, sg_id, policy)
        return sg_id

    sg = ec2.create_security_group(
        GroupName=sg_name,
        Description=f"Allow {prefix} clients to connect to the server",
        VpcId=vpc_id,
        TagSpecifications=[{
            "ResourceType": "security-group",
            "Tags": [
                {"Key": "gamehost:id", "Value": deployment_id},
                {"Key": "Name", "Value": sg_name},
            ],
        }],
    )
    sg_id = sg["GroupId"]
    permissions = policy.ip_permissions()
    if permissions:
        ec2.authorize_security_group_ingress(GroupId=sg_id, IpPermissions=permissions)
    return sg_id


def _sync_ingress(ec2, sg_id: str, policy: SecurityPolicy) -> None:
    """Revoke ingress that is no longer configured and authorize what is missing."""
    sg = ec2.describe_security_groups(GroupIds=[sg_id])["SecurityGroups"][0]
    current = sg.get("IpPermissions", [])
    wanted = policy.ip_permissions()
    wanted_keys = _permission_keys(wanted)
    current_keys = _permission_keys(current)

    stale = [
        perm for perm in current
        if (perm["IpProtocol"], perm.get("FromPort"), perm.get("ToPort")) not in wanted_keys
    ]
    if stale:
        ec2.revoke_security_group_ingress(GroupId=sg_id, IpPermissions=[
            {k: v for k, v in perm.items() if k in ("IpProtocol", "FromPort", "ToPort", "IpRanges")}
            for perm in stale
        ])
    missing = [
        perm for perm in wanted
        if (perm["IpProtocol"], perm["FromPort"], perm["ToPort"]) not in current_keys
    ]
    if missing:
        ec2.authorize_security_group_ingress(GroupId=sg_id, IpPermissions=missing)


def delete_security_group(region: str, sg_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.delete_security_group(GroupId=sg_id)
