import hashlib
from pathlib import Path

from gamehost.aws.s3 import upload_file
from gamehost.control.startup import Artifact


def artifact_key(path: Path) -> str:
    """Content-addressed object key, so a changed script gets a new key."""
    digest = hashlib.sha256(path.read_bytes()).hexdigest()[:16]
    return f"assets/{digest}/{path.name}"


def upload_artifact(region: str, bucket: str, path: str | Path) -> Artifact:
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Startup artifact not found: {path}")
    key = artifact_key(path)
    upload_file(region, bucket, key, str(path))
    return Artifact(bucket=bucket, key=key, filename=path.name)
