import time

import boto3
from botocore.exceptions import ClientError

from gamehost.config import StorageSpec
from gamehost.errors import is_client_error

STARTUP_HASH_TAG = "gamehost:startup-hash"


def launch_instance(
    region: str, ami_id: str, instance_type: str, security_group_id: str,
    subnet_id: str, instance_profile_arn: str, user_data: str,
    storage: StorageSpec, deployment_id: str, name: str, startup_hash: str = "",
    profile_retries: int = 10, retry_delay: float = 3.0,
) -> str:
    ec2 = boto3.client("ec2", region_name=region)
    kwargs = {
        "ImageId": ami_id, "InstanceType": instance_type,
        "SecurityGroupIds": [security_group_id], "SubnetId": subnet_id,
        "MinCount": 1, "MaxCount": 1, "UserData": user_data,
        "IamInstanceProfile": {"Arn": instance_profile_arn},
        "BlockDeviceMappings": [{
            "DeviceName": storage.device_name,
            "Ebs": {
                "VolumeSize": storage.size_gb,
                "VolumeType": storage.volume_type,
                # Keep installed game files when the instance is replaced.
                "DeleteOnTermination": False,
            },
        }],
        "TagSpecifications": [{
            "ResourceType": "instance",
            "Tags": [
                {"Key": "Name", "Value": f"{name}-server"},
                {"Key": "gamehost:id", "Value": deployment_id},
                {"Key": "gamehost:name", "Value": name},
                {"Key": STARTUP_HASH_TAG, "Value": startup_hash},
            ],
        }],
    }
    # A freshly created instance profile takes a few seconds to become usable.
    for attempt in range(profile_retries):
        try:
            response = ec2.run_instances(**kwargs)
            return response["Instances"][0]["InstanceId"]
        except ClientError as e:
            if not is_client_error(e, "InvalidParameterValue") or attempt == profile_retries - 1:
                raise
            time.sleep(retry_delay)
    raise RuntimeError("unreachable")


def describe_instance(region: str, instance_id: str) -> dict | None:
    """Instance description, or None if it no longer exists."""
    ec2 = boto3.client("ec2", region_name=region)
    try:
        response = ec2.describe_instances(InstanceIds=[instance_id])
    except ClientError as e:
        if is_client_error(e, "InvalidInstanceID.NotFound"):
            return None
        raise
    reservations = response.get("Reservations", [])
    if not reservations or not reservations[0].get("Instances"):
        return None
    instance = reservations[0]["Instances"][0]
    if instance["State"]["Name"] == "terminated":
        return None
    return instance


def get_instance_state(region: str, instance_id: str) -> str:
    instance = describe_instance(region, instance_id)
    if not instance:
        return "terminated"
    return instance["State"]["Name"]


def get_instance_tags(instance: dict) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in instance.get("Tags", [])}


def terminate_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.terminate_instances(InstanceIds=[instance_id])


def wait_for_instance_running(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    waiter = ec2.get_waiter("instance_running")
    waiter.wait(InstanceIds=[instance_id])


def wait_for_instance_terminated(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    waiter = ec2.get_waiter("instance_terminated")
    waiter.wait(InstanceIds=[instance_id])


def stop_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.stop_instances(InstanceIds=[instance_id])


def start_instance(region: str, instance_id: str) -> None:
    ec2 = boto3.client("ec2", region_name=region)
    ec2.start_instances(InstanceIds=[instance_id])

