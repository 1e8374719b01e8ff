import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from gamehost.games.registry import GameProfile, PortRule, get_game


@dataclass(frozen=True)
class Explicit:
    """An identifier the operator supplied; resolution must honour it or fail."""
    value: Any


@dataclass(frozen=True)
class Default:
    """No identifier supplied; the platform default (or a fresh resource) applies."""


Hint = Union[Explicit, Default]


def hint(value: str | None) -> Hint:
    if value:
        return Explicit(value)
    return Default()


@dataclass(frozen=True)
class SubnetRef:
    subnet_id: str
    availability_zone: str


@dataclass(frozen=True)
class PlacementSpec:
    vpc: Hint = Default()
    subnet: Hint = Default()

    @classmethod
    def from_values(
        cls, vpc_id: str | None = None, subnet_id: str | None = None,
        availability_zone: str | None = None,
    ) -> "PlacementSpec":
        # A subnet id is only usable together with its zone.
        if subnet_id and availability_zone:
            subnet: Hint = Explicit(SubnetRef(subnet_id, availability_zone))
        else:
            subnet = Default()
        return cls(vpc=hint(vpc_id), subnet=subnet)


@dataclass(frozen=True)
class StorageSpec:
    size_gb: int = 15
    device_name: str = "/dev/sda1"
    volume_type: str = "gp3"


@dataclass(frozen=True)
class SaveStoreSpec:
    name: Hint = Default()
    transition_after_days: int = 30
    allow_public_access: bool = False


@dataclass(frozen=True)
class StartupSpec:
    install_script: Path
    auto_shutdown_script: Path
    install_aws_cli: bool = True


@dataclass(frozen=True)
class ActivationSpec:
    enabled: bool = True
    timeout_seconds: int = 10


@dataclass(frozen=True)
class IdleSpec:
    threshold_minutes: int = 20
    grace_minutes: int = 5


@dataclass(frozen=True)
class DeploymentConfig:
    name: str
    game: str
    region: str
    instance_type: str
    image: str
    storage: StorageSpec
    placement: PlacementSpec
    ports: tuple[PortRule, ...]
    save_store: SaveStoreSpec
    startup: StartupSpec
    use_experimental_build: bool = False
    activation: ActivationSpec = ActivationSpec()
    idle: IdleSpec = IdleSpec()
    allow_eip_reassociation: bool = True
    tags: dict[str, str] = field(default_factory=dict)


VALID_PROTOCOLS = ("tcp", "udp")


def _parse_ports(raw: dict[str, dict], fallback: tuple[PortRule, ...]) -> tuple[PortRule, ...]:
    if not raw:
        return fallback
    rules = []
    for name, entry in raw.items():
        if "port" not in entry or "protocol" not in entry:
            raise ValueError(f"Port '{name}' needs both 'port' and 'protocol'")
        port = int(entry["port"])
        protocol = str(entry["protocol"]).lower()
        if protocol not in VALID_PROTOCOLS:
            raise ValueError(f"Port '{name}' has unsupported protocol '{protocol}' (expected tcp or udp)")
        if not 0 < port < 65536:
            raise ValueError(f"Port '{name}' is out of range: {port}")
        rules.append(PortRule(name=name, port=port, protocol=protocol))
    return tuple(rules)


def config_from_dict(data: dict) -> DeploymentConfig:
    """Build an immutable DeploymentConfig, filling gaps from the game profile."""
    import gamehost.games.satisfactory  # noqa: F401

    game_name = data.get("game", "")
    profile: GameProfile | None = None
    if game_name:
        profile = get_game(game_name)
        if not profile:
            raise ValueError(f"Unknown game: {game_name}")

    instance_type = data.get("instance_type") or (profile.default_instance_type if profile else "")
    image = data.get("image") or (profile.image if profile else "")
    missing = [k for k, v in (("instance_type", instance_type), ("image", image)) if not v]
    if missing:
        raise ValueError(f"Missing required config key(s): {', '.join(missing)}")

    storage_raw = data.get("storage", {})
    storage = StorageSpec(
        size_gb=int(storage_raw.get("size_gb", profile.disk_gb if profile else 15)),
        device_name=storage_raw.get("device_name", profile.root_device_name if profile else "/dev/sda1"),
    )

    placement_raw = data.get("placement", {})
    placement = PlacementSpec.from_values(
        vpc_id=placement_raw.get("vpc_id"),
        subnet_id=placement_raw.get("subnet_id"),
        availability_zone=placement_raw.get("availability_zone"),
    )

    ports = _parse_ports(data.get("ports", {}), profile.ports if profile else ())

    store_raw = data.get("save_store", {})
    save_store = SaveStoreSpec(
        name=hint(store_raw.get("name")),
        transition_after_days=int(store_raw.get("transition_after_days", 30)),
        allow_public_access=bool(store_raw.get("allow_public_access", False)),
    )

    startup_raw = data.get("startup", {})
    install_script = startup_raw.get("install_script") or (profile.install_script if profile else None)
    shutdown_script = startup_raw.get("auto_shutdown_script") or (profile.auto_shutdown_script if profile else None)
    if not install_script or not shutdown_script:
        raise ValueError("Config needs startup.install_script and startup.auto_shutdown_script")
    startup = StartupSpec(
        install_script=Path(install_script),
        auto_shutdown_script=Path(shutdown_script),
        install_aws_cli=bool(startup_raw.get("install_aws_cli", True)),
    )

    flags = dict(profile.flags) if profile else {}
    flags.update(data.get("game_flags", {}))

    activation_raw = data.get("activation", {})
    idle_raw = data.get("idle", {})
    eip_raw = data.get("elastic_ip", {})

    return DeploymentConfig(
        name=data.get("name") or (profile.display_name if profile else "gamehost"),
        game=game_name,
        region=data.get("region", "us-east-1"),
        instance_type=instance_type,
        image=image,
        storage=storage,
        placement=placement,
        ports=ports,
        save_store=save_store,
        startup=startup,
        use_experimental_build=bool(flags.get("use_experimental_build", False)),
        activation=ActivationSpec(
            enabled=bool(activation_raw.get("enabled", True)),
            timeout_seconds=int(activation_raw.get("timeout_seconds", 10)),
        ),
        idle=IdleSpec(
            threshold_minutes=int(idle_raw.get("threshold_minutes", 20)),
            grace_minutes=int(idle_raw.get("grace_minutes", 5)),
        ),
        allow_eip_reassociation=bool(eip_raw.get("allow_reassociation", True)),
        tags=dict(data.get("tags", {})),
    )


def load_config(path: str | Path) -> DeploymentConfig:
    return config_from_dict(json.loads(Path(path).read_text()))


def starter_config(profile: GameProfile) -> dict:
    """Config skeleton for `gamehost init`, seeded from a game profile."""
    return {
        "name": profile.display_name,
        "game": profile.name,
        "region": "us-east-1",
        "instance_type": profile.default_instance_type,
        "placement": {"vpc_id": "", "subnet_id": "", "availability_zone": ""},
        "storage": {"size_gb": profile.disk_gb},
        "ports": {p.name: {"port": p.port, "protocol": p.protocol} for p in profile.ports},
        "save_store": {"name": "", "transition_after_days": 30},
        "game_flags": dict(profile.flags),
        "activation": {"enabled": True, "timeout_seconds": 10},
        "idle": {"threshold_minutes": 20, "grace_minutes": 5},
    }
