import json
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path


DEFAULT_STATE_DIR = Path.home() / ".gamehost"


@dataclass
class DeploymentRecord:
    id: str
    name: str
    game: str
    region: str
    instance_id: str
    vpc_id: str
    subnet_id: str
    security_group_id: str
    save_store: str
    save_store_owned: bool
    artifact_bucket: str
    role_name: str
    status: str
    eip_allocation_id: str = ""
    public_ip: str = ""
    startup_hash: str = ""
    activation_enabled: bool = False
    activation_role_arn: str = ""
    activation_function_name: str = ""
    activation_url: str = ""
    activation_timeout_seconds: int = 10
    idle_threshold_minutes: int = 20
    idle_grace_minutes: int = 5
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()
        if not self.updated_at:
            self.updated_at = self.created_at

    def outputs(self) -> dict[str, str]:
        """Values an operator needs to reach and reuse this deployment."""
        outputs = {
            "public_ip": self.public_ip,
            "instance_id": self.instance_id,
            "save_store": self.save_store,
        }
        if self.activation_url:
            outputs["activation_url"] = self.activation_url
        return outputs


class DeploymentState:
    def __init__(self, state_dir: Path = DEFAULT_STATE_DIR):
        self.state_dir = state_dir
        self.state_file = state_dir / "deployments.json"
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, dict]:
        if not self.state_file.exists():
            return {}
        return json.loads(self.state_file.read_text())

    def _save_all(self, data: dict[str, dict]) -> None:
        self.state_file.write_text(json.dumps(data, indent=2))

    def save(self, record: DeploymentRecord) -> None:
        data = self._load()
        record.updated_at = datetime.now(timezone.utc).isoformat()
        data[record.id] = asdict(record)
        self._save_all(data)

    def get(self, deployment_id: str) -> DeploymentRecord | None:
        data = self._load()
        if deployment_id in data:
            return DeploymentRecord(**data[deployment_id])
        return None

    def get_by_name_or_id(self, name_or_id: str) -> DeploymentRecord | None:
        data = self._load()
        if name_or_id in data:
            return DeploymentRecord(**data[name_or_id])
        for record_data in data.values():
            if record_data.get("name") == name_or_id:
                return DeploymentRecord(**record_data)
        for did, record_data in data.items():
            if did.startswith(name_or_id):
                return DeploymentRecord(**record_data)
        return None

    def list_all(self) -> list[DeploymentRecord]:
        data = self._load()
        return [DeploymentRecord(**v) for v in data.values()]

    def delete(self, deployment_id: str) -> None:
        data = self._load()
        data.pop(deployment_id, None)
        self._save_all(data)

    def update_status(self, deployment_id: str, status: str) -> None:
        data = self._load()
        if deployment_id in data:
            data[deployment_id]["status"] = status
            self._save_all(data)
