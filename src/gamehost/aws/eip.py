import boto3


def allocate_eip(region: str, deployment_id: str) -> tuple[str, str]:
    """Allocate an Elastic IP and tag it with gamehost:id. Returns (allocation_id, public_ip)."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.allocate_address(
        Domain="vpc",
        TagSpecifications=[{
            "ResourceType": "elastic-ip",
            "Tags": [{"Key": "gamehost:id", "Value": deployment_id}],
        }],
    )
    return response["AllocationId"], response["PublicIp"]


def get_eip(region: str, allocation_id: str) -> dict | None:
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.describe_addresses(
        Filters=[{"Name": "allocation-id", "Values": [allocation_id]}],
    )
    addresses = response.get("Addresses", [])
    return addresses[0] if addresses else None


def associate_eip(
    region: str, allocation_id: str, instance_id: str, allow_reassociation: bool = True,
) -> str:
    """Associate an EIP with an EC2 instance. Returns association_id."""
    ec2 = boto3.client("ec2", region_name=region)
    response = ec2.associate_address(
        AllocationId=allocation_id,
        InstanceId=instance_id,
        AllowReassociation=allow_reassociation,
    )
    return response["AssociationId"]


def disassociate_eip(region: str, allocation_id: str) -> None:
    """Disassociate an EIP. No-op if not currently associated."""
    address = get_eip(region, allocation_id)
    if not address:
        return
    association_id = address.get("AssociationId")
    if association_id:
        ec2 = boto3.client("ec2", region_name=region)
        ec2.disassociate_address(AssociationId=association_id)


def release_eip(region: str, allocation_id: str) -> None:
    """Permanently release (delete) an Elastic IP."""
    ec2 = boto3.client("ec2", region_name=region)
    ec2.release_address(AllocationId=allocation_id)
