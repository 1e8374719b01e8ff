from dataclasses import dataclass

import boto3
from botocore.exceptions import ClientError

from gamehost.config import Default, Explicit, PlacementSpec
from gamehost.errors import ResolutionError, is_client_error


@dataclass(frozen=True)
class NetworkContext:
    vpc_id: str
    subnet_id: str
    availability_zone: str
    is_default_vpc: bool = False


def resolve_vpc(region: str, placement: PlacementSpec) -> dict:
    """Return the VPC description for the placement hint.

    An explicit VPC id is looked up as-is and never substituted by the
    default VPC when missing.
    """
    ec2 = boto3.client("ec2", region_name=region)
    if isinstance(placement.vpc, Explicit):
        vpc_id = placement.vpc.value
        try:
            vpcs = ec2.describe_vpcs(VpcIds=[vpc_id])["Vpcs"]
        except ClientError as e:
            if is_client_error(e, "InvalidVpcID.NotFound"):
                raise ResolutionError(f"VPC {vpc_id} not found in region {region}") from e
            raise
        if not vpcs:
            raise ResolutionError(f"VPC {vpc_id} not found in region {region}")
        return vpcs[0]
    if isinstance(placement.vpc, Default):
        vpcs = ec2.describe_vpcs(Filters=[{"Name": "is-default", "Values": ["true"]}])["Vpcs"]
        if not vpcs:
            raise ResolutionError(f"No default VPC found in region {region}")
        return vpcs[0]
    raise TypeError(f"Unsupported VPC hint: {placement.vpc!r}")


def _routes_to_internet(ec2, vpc_id: str, subnet_id: str) -> bool:
    tables = ec2.describe_route_tables(
        Filters=[{"Name": "association.subnet-id", "Values": [subnet_id]}],
    )["RouteTables"]
    if not tables:
        # Subnets without an explicit association use the VPC's main table.
        tables = ec2.describe_route_tables(Filters=[
            {"Name": "vpc-id", "Values": [vpc_id]},
            {"Name": "association.main", "Values": ["true"]},
        ])["RouteTables"]
    for table in tables:
        for route in table.get("Routes", []):
            if route.get("DestinationCidrBlock") == "0.0.0.0/0" and route.get("GatewayId", "").startswith("igw-"):
                return True
    return False


def find_public_subnets(region: str, vpc_id: str) -> list[dict]:
    """Subnets in the VPC that are publicly routable, sorted by subnet id."""
    ec2 = boto3.client("ec2", region_name=region)
    subnets = ec2.describe_subnets(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}])["Subnets"]
    public = [
        s for s in subnets
        if s.get("MapPublicIpOnLaunch") or _routes_to_internet(ec2, vpc_id, s["SubnetId"])
    ]
    return sorted(public, key=lambda s: s["SubnetId"])


def resolve_subnet(region: str, vpc_id: str, placement: PlacementSpec) -> dict:
    if isinstance(placement.subnet, Explicit):
        ref = placement.subnet.value
        ec2 = boto3.client("ec2", region_name=region)
        try:
            subnets = ec2.describe_subnets(SubnetIds=[ref.subnet_id])["Subnets"]
        except ClientError as e:
            if is_client_error(e, "InvalidSubnetID.NotFound"):
                raise ResolutionError(f"Subnet {ref.subnet_id} not found in region {region}") from e
            raise
        if not subnets:
            raise ResolutionError(f"Subnet {ref.subnet_id} not found in region {region}")
        subnet = subnets[0]
        if subnet["VpcId"] != vpc_id:
            raise ResolutionError(f"Subnet {ref.subnet_id} belongs to {subnet['VpcId']}, not {vpc_id}")
        if subnet["AvailabilityZone"] != ref.availability_zone:
            raise ResolutionError(
                f"Subnet {ref.subnet_id} is in {subnet['AvailabilityZone']}, "
                f"not {ref.availability_zone}"
            )
        return subnet
    if isinstance(placement.subnet, Default):
        public = find_public_subnets(region, vpc_id)
        if not public:
            raise ResolutionError(f"No public subnet available in VPC {vpc_id}")
        return public[0]
    raise TypeError(f"Unsupported subnet hint: {placement.subnet!r}")


def resolve_network(region: str, placement: PlacementSpec) -> NetworkContext:
    vpc = resolve_vpc(region, placement)
    subnet = resolve_subnet(region, vpc["VpcId"], placement)
    return NetworkContext(
        vpc_id=vpc["VpcId"],
        subnet_id=subnet["SubnetId"],
        availability_zone=subnet["AvailabilityZone"],
        is_default_vpc=bool(vpc.get("IsDefault")),
    )
