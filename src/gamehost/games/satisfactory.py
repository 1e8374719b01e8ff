from gamehost.games.registry import SCRIPTS_DIR, GameProfile, PortRule, register_game

# Canonical publishes the current Ubuntu 20.04 AMI id under this public parameter.
UBUNTU_2004_PARAMETER = "/aws/service/canonical/ubuntu/server/20.04/stable/current/amd64/hvm/ebs-gp2/ami-id"

satisfactory = GameProfile(
    name="satisfactory",
    display_name="Satisfactory",
    default_instance_type="c6i.xlarge",
    image=UBUNTU_2004_PARAMETER,
    ports=(
        PortRule(name="game", port=7777, protocol="udp"),
        PortRule(name="api", port=7777, protocol="tcp"),
        PortRule(name="beacon", port=15000, protocol="udp"),
        PortRule(name="query", port=15777, protocol="udp"),
    ),
    disk_gb=15,
    root_device_name="/dev/sda1",
    install_script=SCRIPTS_DIR / "install.sh",
    auto_shutdown_script=SCRIPTS_DIR / "auto-shutdown.sh",
    flags={"use_experimental_build": False},
)

register_game(satisfactory)
