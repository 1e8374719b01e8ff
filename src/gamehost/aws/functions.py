"""The activation endpoint: a Lambda function behind a public function URL.

The function runs gamehost.control.activation.lambda_handler with the
deployment's activation role, which may start only the deployment's instance.
"""
import io
import time
import zipfile
from pathlib import Path

import boto3
from botocore.exceptions import ClientError

from gamehost.errors import is_client_error

RUNTIME = "python3.12"
HANDLER = "gamehost.control.activation.lambda_handler"
# Seconds the function may run beyond the activation time bound.
TIMEOUT_MARGIN = 5

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
PACKAGE_MODULES = ("errors.py", "control/activation.py", "control/lifecycle.py")


def build_activation_package() -> bytes:
    """Zip the modules the handler imports. Same sources give the same bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for module in PACKAGE_MODULES:
            info = zipfile.ZipInfo(f"gamehost/{module}", date_time=(1980, 1, 1, 0, 0, 0))
            info.external_attr = 0o644 << 16
            archive.writestr(info, (PACKAGE_ROOT / module).read_bytes())
    return buffer.getvalue()


def activation_function_name(prefix: str, deployment_id: str) -> str:
    return f"{prefix}-activation-{deployment_id}"[:64]


def ensure_activation_function(
    region: str, prefix: str, deployment_id: str, role_arn: str, instance_id: str,
    timeout_seconds: int = 10, role_retries: int = 10, retry_delay: float = 3.0,
) -> tuple[str, str]:
    """Create or update the activation function and its URL. Returns (function_name, url)."""
    client = boto3.client("lambda", region_name=region)
    name = activation_function_name(prefix, deployment_id)
    code = build_activation_package()
    settings = {
        "Role": role_arn,
        "Handler": HANDLER,
        "Runtime": RUNTIME,
        "Timeout": int(timeout_seconds) + TIMEOUT_MARGIN,
        "Environment": {"Variables": {
            "INSTANCE_ID": instance_id,
            "ACTIVATION_TIMEOUT_SECONDS": str(timeout_seconds),
        }},
    }

    try:
        client.get_function(FunctionName=name)
        exists = True
    except ClientError as e:
        if not is_client_error(e, "ResourceNotFoundException"):
            raise
        exists = False

    if exists:
        client.update_function_code(FunctionName=name, ZipFile=code)
        client.get_waiter("function_updated_v2").wait(FunctionName=name)
        client.update_function_configuration(FunctionName=name, **settings)
    else:
        # A freshly created role takes a few seconds before Lambda can assume it.
        for attempt in range(role_retries):
            try:
                client.create_function(
                    FunctionName=name, Code={"ZipFile": code},
                    Description=f"Start the {prefix} game server on demand",
                    Tags={"gamehost:id": deployment_id},
                    **settings,
                )
                break
            except ClientError as e:
                if not is_client_error(e, "InvalidParameterValueException") or attempt == role_retries - 1:
                    raise
                time.sleep(retry_delay)

    return name, _ensure_function_url(client, name)


def _ensure_function_url(client, name: str) -> str:
    try:
        return client.get_function_url_config(FunctionName=name)["FunctionUrl"]
    except ClientError as e:
        if not is_client_error(e, "ResourceNotFoundException"):
            raise
    url = client.create_function_url_config(FunctionName=name, AuthType="NONE")["FunctionUrl"]
    # The gateway only ever starts one instance, so the URL is open to anyone.
    client.add_permission(
        FunctionName=name, StatementId="public-function-url",
        Action="lambda:InvokeFunctionUrl", Principal="*",
        FunctionUrlAuthType="NONE",
    )
    return url


def delete_activation_function(region: str, name: str) -> None:
    """Delete the function and its URL. No-op if it is already gone."""
    client = boto3.client("lambda", region_name=region)
    try:
        client.delete_function(FunctionName=name)
    except ClientError as e:
        if not is_client_error(e, "ResourceNotFoundException"):
            raise
