"""First-boot sequence for the game server instance.

The sequence is a plain list of step descriptors. It is built once per deploy,
rendered into EC2 user data, and executed by cloud-init exactly once on the
first boot; nothing here runs it.
"""
import hashlib
import shlex
from dataclasses import dataclass
from typing import Union

AWS_CLI_URL = "https://awscli.amazonaws.com/awscli-exe-linux-x86_64.zip"
AUTO_SHUTDOWN_PATH = "/usr/local/bin/auto-shutdown.sh"
AUTO_SHUTDOWN_SERVICE = "auto-shutdown"
DOWNLOAD_DIR = "/tmp/gamehost"


@dataclass(frozen=True)
class Artifact:
    bucket: str
    key: str
    filename: str

    @property
    def s3_uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    @property
    def local_path(self) -> str:
        return f"{DOWNLOAD_DIR}/{self.key}"


@dataclass(frozen=True)
class InstallCloudCli:
    url: str = AWS_CLI_URL


@dataclass(frozen=True)
class FetchAndExecute:
    artifact: Artifact
    arguments: tuple[str, ...]


@dataclass(frozen=True)
class FetchAndInstallService:
    artifact: Artifact
    install_path: str
    service_name: str
    description: str = ""
    environment: tuple[tuple[str, str], ...] = ()


StartupStep = Union[InstallCloudCli, FetchAndExecute, FetchAndInstallService]


@dataclass(frozen=True)
class StartupSequence:
    steps: tuple[StartupStep, ...]

    def artifacts(self) -> list[Artifact]:
        return [s.artifact for s in self.steps if not isinstance(s, InstallCloudCli)]


def build_startup_sequence(
    save_store: str, use_experimental_build: bool,
    install_artifact: Artifact, auto_shutdown_artifact: Artifact,
    install_cloud_cli: bool = True,
    idle_minutes: int = 20, grace_minutes: int = 5, game_port: int = 7777,
) -> StartupSequence:
    """CLI install, then game install with (save store, experimental flag), then auto-shutdown service.

    The idle threshold, grace period and game port reach the service as unit environment.
    """
    steps: list[StartupStep] = []
    if install_cloud_cli:
        steps.append(InstallCloudCli())
    steps.append(FetchAndExecute(
        artifact=install_artifact,
        arguments=(save_store, "true" if use_experimental_build else "false"),
    ))
    steps.append(FetchAndInstallService(
        artifact=auto_shutdown_artifact,
        install_path=AUTO_SHUTDOWN_PATH,
        service_name=AUTO_SHUTDOWN_SERVICE,
        description="Stop the server when no players are connected",
        environment=(
            ("IDLE_MINUTES", str(idle_minutes)),
            ("GRACE_MINUTES", str(grace_minutes)),
            ("GAME_PORT", str(game_port)),
        ),
    ))
    return StartupSequence(steps=tuple(steps))


def _download(artifact: Artifact) -> list[str]:
    local = shlex.quote(artifact.local_path)
    return [
        f"mkdir -p $(dirname {local})",
        f"aws s3 cp {shlex.quote(artifact.s3_uri)} {local}",
    ]


def _render_step(step: StartupStep) -> list[str]:
    if isinstance(step, InstallCloudCli):
        return [
            "apt-get install -y unzip",
            f'curl "{step.url}" -o "awscliv2.zip" && unzip -o awscliv2.zip && ./aws/install',
        ]
    if isinstance(step, FetchAndExecute):
        local = shlex.quote(step.artifact.local_path)
        args = " ".join(shlex.quote(a) for a in step.arguments)
        return _download(step.artifact) + [
            f"chmod +x {local}",
            f"{local} {args}",
        ]
    if isinstance(step, FetchAndInstallService):
        local = shlex.quote(step.artifact.local_path)
        target = shlex.quote(step.install_path)
        unit_path = f"/etc/systemd/system/{step.service_name}.service"
        unit = "\n".join([
            "[Unit]",
            f"Description={step.description or step.service_name}",
            "After=network-online.target",
            "",
            "[Service]",
            *(f"Environment={key}={value}" for key, value in step.environment),
            f"ExecStart={step.install_path}",
            "Restart=always",
            "",
            "[Install]",
            "WantedBy=multi-user.target",
        ])
        return _download(step.artifact) + [
            f"cp {local} {target}",
            f"chmod +x {target}",
            f"cat > {unit_path} << 'GAMEHOSTEOF'\n{unit}\nGAMEHOSTEOF",
            "systemctl daemon-reload",
            f"systemctl enable {step.service_name}",
            f"systemctl start {step.service_name}",
        ]
    raise TypeError(f"Unknown startup step: {step!r}")


def render_user_data(sequence: StartupSequence) -> str:
    # set -e: a failed step aborts the rest of the boot sequence.
    lines = ["#!/bin/bash", "set -euxo pipefail", "export DEBIAN_FRONTEND=noninteractive", "apt-get update"]
    for step in sequence.steps:
        lines.append("")
        lines.extend(_render_step(step))
    return "\n".join(lines) + "\n"


def startup_fingerprint(user_data: str) -> str:
    """Changes whenever the rendered first-boot script changes."""
    return hashlib.sha256(user_data.encode()).hexdigest()
