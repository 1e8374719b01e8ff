import uuid
from dataclasses import dataclass

import boto3
from botocore.exceptions import ClientError

from gamehost.config import Default, Explicit, Hint
from gamehost.errors import ResolutionError, is_client_error

LIFECYCLE_RULE_ID = "SaveFileRetention"
TIERED_STORAGE_CLASS = "INTELLIGENT_TIERING"


@dataclass(frozen=True)
class SaveStore:
    name: str
    owned: bool
    versioned: bool
    retain: bool = True
    transition_after_days: int | None = None


def bucket_name_for(prefix: str, purpose: str) -> str:
    """Globally unique, DNS-safe bucket name for a new bucket."""
    base = "".join(c if c.isalnum() else "-" for c in prefix.lower()).strip("-")[:30] or "gamehost"
    return f"{base}-{purpose}-{uuid.uuid4().hex[:12]}"


def create_bucket(
    region: str, name: str, tags: dict[str, str] | None = None, block_public_access: bool = True,
) -> None:
    s3 = boto3.client("s3", region_name=region)
    kwargs = {"Bucket": name}
    if region != "us-east-1":
        kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}
    s3.create_bucket(**kwargs)
    if block_public_access:
        s3.put_public_access_block(
            Bucket=name,
            PublicAccessBlockConfiguration={
                "BlockPublicAcls": True,
                "IgnorePublicAcls": True,
                "BlockPublicPolicy": True,
                "RestrictPublicBuckets": True,
            },
        )
    if tags:
        s3.put_bucket_tagging(
            Bucket=name,
            Tagging={"TagSet": [{"Key": k, "Value": v} for k, v in tags.items()]},
        )


def _get_versioning(s3, name: str) -> bool:
    return s3.get_bucket_versioning(Bucket=name).get("Status") == "Enabled"


def _get_transition_days(s3, name: str) -> int | None:
    try:
        rules = s3.get_bucket_lifecycle_configuration(Bucket=name)["Rules"]
    except ClientError as e:
        if is_client_error(e, "NoSuchLifecycleConfiguration"):
            return None
        raise
    for rule in rules:
        for transition in rule.get("Transitions", []):
            if transition.get("StorageClass") == TIERED_STORAGE_CLASS:
                return transition.get("Days")
    return None


def adopt_save_store(region: str, name: str) -> SaveStore:
    """Look up an existing bucket. Nothing about it is modified."""
    s3 = boto3.client("s3", region_name=region)
    try:
        s3.head_bucket(Bucket=name)
    except ClientError as e:
        if is_client_error(e, "404") or is_client_error(e, "NoSuchBucket"):
            raise ResolutionError(f"Save bucket {name} does not exist") from e
        if is_client_error(e, "403"):
            raise ResolutionError(f"Save bucket {name} exists but is not accessible") from e
        raise
    return SaveStore(
        name=name,
        owned=False,
        versioned=_get_versioning(s3, name),
        transition_after_days=_get_transition_days(s3, name),
    )


def create_save_store(
    region: str, prefix: str, deployment_id: str, transition_after_days: int = 30,
    allow_public_access: bool = False,
) -> SaveStore:
    """Create a versioned save bucket that tiers objects down after a fixed age.

    The bucket is retained forever: nothing in gamehost deletes it.
    """
    name = bucket_name_for(prefix, "saves")
    create_bucket(
        region, name, tags={"gamehost:id": deployment_id, "gamehost:retain": "true"},
        block_public_access=not allow_public_access,
    )
    s3 = boto3.client("s3", region_name=region)
    s3.put_bucket_versioning(Bucket=name, VersioningConfiguration={"Status": "Enabled"})
    s3.put_bucket_lifecycle_configuration(
        Bucket=name,
        LifecycleConfiguration={"Rules": [{
            "ID": LIFECYCLE_RULE_ID,
            "Status": "Enabled",
            "Filter": {"Prefix": ""},
            "Transitions": [{"Days": transition_after_days, "StorageClass": TIERED_STORAGE_CLASS}],
        }]},
    )
    return SaveStore(
        name=name, owned=True, versioned=True, transition_after_days=transition_after_days,
    )


def resolve_save_store(
    region: str, name: Hint, prefix: str, deployment_id: str, transition_after_days: int = 30,
    allow_public_access: bool = False,
) -> SaveStore:
    if isinstance(name, Explicit):
        return adopt_save_store(region, name.value)
    if isinstance(name, Default):
        return create_save_store(
            region, prefix, deployment_id, transition_after_days, allow_public_access,
        )
    raise TypeError(f"Unsupported save store hint: {name!r}")


def upload_file(region: str, bucket: str, key: str, path: str) -> None:
    s3 = boto3.client("s3", region_name=region)
    s3.upload_file(path, bucket, key)


def delete_bucket(region: str, name: str) -> None:
    """Empty and delete a bucket, including all object versions.

    Buckets tagged gamehost:retain (save stores) are refused.
    """
    s3 = boto3.client("s3", region_name=region)
    if _bucket_tags(s3, name).get("gamehost:retain") == "true":
        raise ValueError(f"Bucket {name} holds save data and is never deleted")
    paginator = s3.get_paginator("list_object_versions")
    for page in paginator.paginate(Bucket=name):
        objects = [
            {"Key": v["Key"], "VersionId": v["VersionId"]}
            for v in page.get("Versions", []) + page.get("DeleteMarkers", [])
        ]
        if objects:
            s3.delete_objects(Bucket=name, Delete={"Objects": objects})
    s3.delete_bucket(Bucket=name)


def _bucket_tags(s3, name: str) -> dict[str, str]:
    try:
        tag_set = s3.get_bucket_tagging(Bucket=name)["TagSet"]
    except ClientError as e:
        if is_client_error(e, "NoSuchTagSet"):
            return {}
        raise
    return {t["Key"]: t["Value"] for t in tag_set}
