import json
import os
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from gamehost.control.lifecycle import PowerStateMachine
from gamehost.errors import ActivationTimeout, is_client_error

DEFAULT_TIMEOUT_SECONDS = 10


@dataclass(frozen=True)
class ActivationResult:
    accepted: bool
    instance_id: str
    start_issued: bool = False
    reason: str = ""
    retryable: bool = False

    @property
    def status(self) -> str:
        if self.accepted:
            return "accepted"
        return "retry" if self.retryable else "denied"

    @property
    def http_status(self) -> int:
        if self.accepted:
            return 202
        return 409 if self.retryable else 403

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "instance_id": self.instance_id,
            "start_issued": self.start_issued,
            "reason": self.reason,
        }


class ActivationGateway:
    """Starts one specific instance on request, and nothing else.

    The gateway does not wait for the server to be up: an accepted result means
    the start request reached the platform, not that players can connect.
    """

    def __init__(
        self, instance_id: str, region: str, timeout: float = DEFAULT_TIMEOUT_SECONDS,
        machine: PowerStateMachine | None = None,
        start_instance: Callable[[str], None] | None = None,
    ):
        if not instance_id:
            raise ValueError("ActivationGateway needs the instance id it is scoped to")
        self.instance_id = instance_id
        self.region = region
        self.timeout = timeout
        self.machine = machine
        self._start_instance = start_instance or self._platform_start

    def _platform_start(self, instance_id: str) -> None:
        # One attempt only; exceeding the bound is reported, never retried here.
        config = Config(
            connect_timeout=self.timeout, read_timeout=self.timeout,
            retries={"total_max_attempts": 1},
        )
        ec2 = boto3.client("ec2", region_name=self.region, config=config)
        ec2.start_instances(InstanceIds=[instance_id])

    def _rollback(self) -> None:
        if self.machine is not None:
            self.machine.start_failed()

    def activate(self, target_instance_id: str) -> ActivationResult:
        if target_instance_id != self.instance_id:
            return ActivationResult(
                accepted=False, instance_id=target_instance_id,
                reason=f"not authorized to start {target_instance_id}",
            )

        if self.machine is not None and not self.machine.request_activation():
            return ActivationResult(
                accepted=True, instance_id=target_instance_id,
                reason=f"already {self.machine.state.value}",
            )

        executor = ThreadPoolExecutor(max_workers=1)
        try:
            future = executor.submit(self._start_instance, target_instance_id)
            try:
                future.result(timeout=self.timeout)
            except FutureTimeout as e:
                # The platform may still apply the start, so the machine stays in Starting.
                raise ActivationTimeout(
                    f"Start request for {target_instance_id} did not finish within {self.timeout}s; "
                    f"check the instance state before retrying"
                ) from e
            except ClientError as e:
                self._rollback()
                if is_client_error(e, "IncorrectInstanceState"):
                    return ActivationResult(
                        accepted=False, instance_id=target_instance_id, retryable=True,
                        reason="instance is still stopping, retry once it has stopped",
                    )
                raise
            except Exception:
                self._rollback()
                raise
        finally:
            executor.shutdown(wait=False)
        return ActivationResult(accepted=True, instance_id=target_instance_id, start_issued=True)


def gateway_from_env(environ=None) -> ActivationGateway:
    environ = os.environ if environ is None else environ
    return ActivationGateway(
        instance_id=environ.get("INSTANCE_ID", ""),
        region=environ.get("AWS_REGION", "us-east-1"),
        timeout=float(environ.get("ACTIVATION_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
    )


def lambda_handler(event, context):
    """AWS Lambda entry point behind the function URL. The request body is ignored.

    Runs with the deployment's activation role, which may start only INSTANCE_ID.
    """
    gateway = gateway_from_env()
    params = (event or {}).get("pathParameters") or {}
    target = params.get("instance_id") or gateway.instance_id
    try:
        result = gateway.activate(target)
    except ActivationTimeout as e:
        return {"statusCode": 504, "body": json.dumps({"status": "timeout", "detail": str(e)})}
    return {"statusCode": result.http_status, "body": json.dumps(result.to_dict())}
