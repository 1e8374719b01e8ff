import json

import boto3
from botocore.exceptions import ClientError

from gamehost.errors import is_client_error

SSM_CORE_POLICY_ARN = "arn:aws:iam::aws:policy/AmazonSSMManagedInstanceCore"
LAMBDA_LOGS_POLICY_ARN = "arn:aws:iam::aws:policy/service-role/AWSLambdaBasicExecutionRole"


def _trust_policy(service: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": "sts:AssumeRole",
        }],
    })


def save_store_policy(bucket: str) -> dict:
    """Read/write on the save bucket and its objects."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Action": ["s3:GetBucket*", "s3:GetObject*", "s3:List*"],
                "Resource": [f"arn:aws:s3:::{bucket}", f"arn:aws:s3:::{bucket}/*"],
            },
            {
                "Effect": "Allow",
                "Action": ["s3:PutObject", "s3:PutObjectLegalHold", "s3:PutObjectRetention",
                           "s3:PutObjectTagging", "s3:PutObjectVersionTagging", "s3:Abort*",
                           "s3:DeleteObject*"],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            },
        ],
    }


def artifact_read_policy(bucket: str, keys: list[str]) -> dict:
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": ["s3:GetObject*", "s3:GetBucket*", "s3:List*"],
            "Resource": [f"arn:aws:s3:::{bucket}"] + [f"arn:aws:s3:::{bucket}/{k}" for k in keys],
        }],
    }


def activation_policy(region: str, account_id: str, instance_id: str) -> dict:
    """Permission to start exactly one instance."""
    return {
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Action": ["ec2:StartInstances"],
            "Resource": [f"arn:aws:ec2:{region}:{account_id}:instance/{instance_id}"],
        }],
    }


def ensure_instance_role(prefix: str, deployment_id: str) -> tuple[str, str]:
    """Create the server role and instance profile if missing. Returns (role_name, profile_arn)."""
    iam = boto3.client("iam")
    role_name = f"{prefix}-server-role-{deployment_id}"
    try:
        iam.create_role(
            RoleName=role_name,
            AssumeRolePolicyDocument=_trust_policy("ec2.amazonaws.com"),
            Description=f"Game server instance role for {prefix}",
            Tags=[{"Key": "gamehost:id", "Value": deployment_id}],
        )
    except ClientError as e:
        if not is_client_error(e, "EntityAlreadyExists"):
            raise
    # Session Manager access instead of an SSH port
    iam.attach_role_policy(RoleName=role_name, PolicyArn=SSM_CORE_POLICY_ARN)

    try:
        profile = iam.create_instance_profile(InstanceProfileName=role_name)["InstanceProfile"]
        iam.add_role_to_instance_profile(InstanceProfileName=role_name, RoleName=role_name)
    except ClientError as e:
        if not is_client_error(e, "EntityAlreadyExists"):
            raise
        profile = iam.get_instance_profile(InstanceProfileName=role_name)["InstanceProfile"]
    return role_name, profile["Arn"]


def put_role_policy(role_name: str, policy_name: str, document: dict) -> None:
    iam = boto3.client("iam")
    iam.put_role_policy(
        RoleName=role_name, PolicyName=policy_name, PolicyDocument=json.dumps(document),
    )


def grant_save_store(role_name: str, bucket: str) -> None:
    put_role_policy(role_name, "save-store-read-write", save_store_policy(bucket))


def grant_artifacts(role_name: str, bucket: str, keys: list[str]) -> None:
    put_role_policy(role_name, "startup-artifacts-read", artifact_read_policy(bucket, keys))


def ensure_activation_role(
    prefix: str, deployment_id: str, region: str, account_id: str, instance_id: str,
) -> str:
    """Role the activation function runs as. Returns the role ARN."""
    iam = boto3.client("iam")
    role_name = f"{prefix}-activation-{deployment_id}"
    try:
        role = iam.create_role(
            RoleName=role_name,
            AssumeRolePolicyDocument=_trust_policy("lambda.amazonaws.com"),
            Description=f"Start the {prefix} game server on demand",
            Tags=[{"Key": "gamehost:id", "Value": deployment_id}],
        )["Role"]
    except ClientError as e:
        if not is_client_error(e, "EntityAlreadyExists"):
            raise
        role = iam.get_role(RoleName=role_name)["Role"]
    iam.attach_role_policy(RoleName=role_name, PolicyArn=LAMBDA_LOGS_POLICY_ARN)
    # Rewritten on every deploy so a replaced instance is the only one in scope.
    put_role_policy(role_name, "start-server", activation_policy(region, account_id, instance_id))
    return role["Arn"]


def delete_role(role_name: str, instance_profile: bool = False) -> None:
    """Detach and delete a role created by gamehost. No-op if it is already gone."""
    iam = boto3.client("iam")
    try:
        if instance_profile:
            try:
                iam.remove_role_from_instance_profile(InstanceProfileName=role_name, RoleName=role_name)
                iam.delete_instance_profile(InstanceProfileName=role_name)
            except ClientError as e:
                if not is_client_error(e, "NoSuchEntity"):
                    raise
        for arn in [p["PolicyArn"] for p in iam.list_attached_role_policies(RoleName=role_name)["AttachedPolicies"]]:
            iam.detach_role_policy(RoleName=role_name, PolicyArn=arn)
        for name in iam.list_role_policies(RoleName=role_name)["PolicyNames"]:
            iam.delete_role_policy(RoleName=role_name, PolicyName=name)
        iam.delete_role(RoleName=role_name)
    except ClientError as e:
        if not is_client_error(e, "NoSuchEntity"):
            raise


def get_account_id(region: str) -> str:
    sts = boto3.client("sts", region_name=region)
    return sts.get_caller_identity()["Account"]
