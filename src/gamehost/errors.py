class ResolutionError(RuntimeError):
    """An identifier could not be resolved to an existing cloud resource."""


class ActivationTimeout(TimeoutError):
    """The start request did not complete within the activation time bound.

    The platform may still apply the start; callers should poll the instance
    state instead of assuming failure.
    """


def is_client_error(exc, code: str) -> bool:
    """True when a botocore ClientError carries the given AWS error code."""
    return exc.response["Error"]["Code"] == code
