import boto3
from botocore.exceptions import ClientError

from gamehost.errors import ResolutionError, is_client_error


def resolve_image(region: str, image: str) -> str:
    """Turn an AMI id or an SSM parameter path into a concrete AMI id."""
    if image.startswith("ami-"):
        return image
    if not image.startswith("/"):
        raise ResolutionError(f"Image must be an AMI id or an SSM parameter path, got '{image}'")
    ssm = boto3.client("ssm", region_name=region)
    try:
        response = ssm.get_parameter(Name=image)
    except ClientError as e:
        if is_client_error(e, "ParameterNotFound"):
            raise ResolutionError(f"No image parameter {image} in region {region}") from e
        raise
    return response["Parameter"]["Value"]
