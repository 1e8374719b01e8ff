from dataclasses import dataclass, field
from pathlib import Path

SCRIPTS_DIR = Path(__file__).parent / "scripts"


@dataclass(frozen=True)
class PortRule:
    name: str
    port: int
    protocol: str  # "tcp" or "udp"


@dataclass(frozen=True)
class GameProfile:
    name: str
    display_name: str
    default_instance_type: str
    image: str
    ports: tuple[PortRule, ...]
    disk_gb: int = 15
    root_device_name: str = "/dev/sda1"
    install_script: Path = SCRIPTS_DIR / "install.sh"
    auto_shutdown_script: Path = SCRIPTS_DIR / "auto-shutdown.sh"
    flags: dict[str, bool] = field(default_factory=dict)


_registry: dict[str, GameProfile] = {}


def register_game(game: GameProfile) -> None:
    _registry[game.name] = game


def get_game(name: str) -> GameProfile | None:
    return _registry.get(name)


def list_games() -> list[GameProfile]:
    return list(_registry.values())
