import json
from unittest.mock import patch, MagicMock

from click.testing import CliRunner

from gamehost.cli import cli
from gamehost.control.activation import ActivationResult
from gamehost.errors import ActivationTimeout, ResolutionError


def test_cli_version():
    runner = CliRunner()
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_games_command_shows_satisfactory():
    runner = CliRunner()
    result = runner.invoke(cli, ["games"])
    assert result.exit_code == 0
    assert "satisfactory" in result.output.lower()


def test_init_writes_starter_config(tmp_path):
    target = tmp_path / "sf.json"
    runner = CliRunner()
    result = runner.invoke(cli, ["init", "satisfactory", "-o", str(target)])
    assert result.exit_code == 0
    data = json.loads(target.read_text())
    assert data["game"] == "satisfactory"
    assert data["instance_type"] == "c6i.xlarge"
    assert data["ports"]["game"] == {"port": 7777, "protocol": "udp"}


def test_init_refuses_overwrite(tmp_path):
    target = tmp_path / "sf.json"
    target.write_text("{}")
    runner = CliRunner()
    result = runner.invoke(cli, ["init", "satisfactory", "-o", str(target)])
    assert result.exit_code == 1
    assert target.read_text() == "{}"
    result = runner.invoke(cli, ["init", "satisfactory", "-o", str(target), "--force"])
    assert result.exit_code == 0


def test_init_unknown_game(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["init", "tetris", "-o", str(tmp_path / "x.json")])
    assert result.exit_code == 1
    assert "Unknown game" in result.output


def _config_file(tmp_path, **overrides):
    data = {"name": "Satisfactory", "game": "satisfactory", "region": "us-east-1"}
    data.update(overrides)
    path = tmp_path / "deploy.json"
    path.write_text(json.dumps(data))
    return str(path)


@patch("gamehost.cli.Provisioner")
def test_deploy_prints_outputs(mock_prov_cls, make_deployment_record, tmp_path):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.deploy.return_value = make_deployment_record()

    runner = CliRunner()
    result = runner.invoke(cli, ["deploy", _config_file(tmp_path)])

    assert result.exit_code == 0
    assert "54.1.2.3" in result.output
    assert "satisfactory-saves-abc" in result.output
    config = mock_prov.deploy.call_args.args[0]
    assert config.name == "Satisfactory"


def test_deploy_rejects_bad_config(tmp_path):
    runner = CliRunner()
    result = runner.invoke(cli, ["deploy", _config_file(tmp_path, game="tetris")])
    assert result.exit_code == 1
    assert "Unknown game" in result.output


@patch("gamehost.cli.Provisioner")
def test_deploy_prints_start_url(mock_prov_cls, make_deployment_record, tmp_path):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.deploy.return_value = make_deployment_record(activation_url="https://abc123.lambda-url.us-east-1.on.aws/")

    runner = CliRunner()
    result = runner.invoke(cli, ["deploy", _config_file(tmp_path)])

    assert result.exit_code == 0
    assert "https://abc123.lambda-url.us-east-1.on.aws/" in result.output


@patch("gamehost.cli.Provisioner")
def test_deploy_resolution_error_exits_nonzero(mock_prov_cls, tmp_path):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.deploy.side_effect = ResolutionError("VPC vpc-123 not found")

    runner = CliRunner()
    result = runner.invoke(cli, ["deploy", _config_file(tmp_path)])
    assert result.exit_code == 1
    assert "vpc-123" in result.output


@patch("gamehost.cli.Provisioner")
def test_deploy_keyboard_interrupt(mock_prov_cls, tmp_path):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.deploy.side_effect = KeyboardInterrupt

    runner = CliRunner()
    result = runner.invoke(cli, ["deploy", _config_file(tmp_path)])
    assert result.exit_code == 130
    assert "Interrupted." in result.output


@patch("gamehost.cli.Provisioner")
def test_list_deployments(mock_prov_cls, make_deployment_record):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.state.list_all.return_value = [make_deployment_record()]

    runner = CliRunner()
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "dep-1" in result.output


@patch("gamehost.cli.Provisioner")
def test_list_empty(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.state.list_all.return_value = []

    runner = CliRunner()
    result = runner.invoke(cli, ["list"])
    assert result.exit_code == 0
    assert "No deployments" in result.output


@patch("gamehost.cli.Provisioner")
def test_info_refreshes_status(mock_prov_cls, make_deployment_record):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.refresh.return_value = make_deployment_record(status="stopped")

    runner = CliRunner()
    result = runner.invoke(cli, ["info", "Satisfactory"])
    assert result.exit_code == 0
    assert "stopped" in result.output
    mock_prov.refresh.assert_called_once_with("Satisfactory")


@patch("gamehost.cli.Provisioner")
def test_info_not_found(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.refresh.side_effect = ValueError("Deployment nope not found")

    runner = CliRunner()
    result = runner.invoke(cli, ["info", "nope"])
    assert result.exit_code == 1


@patch("gamehost.cli.Provisioner")
def test_outputs_json(mock_prov_cls, make_deployment_record):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.state.get_by_name_or_id.return_value = make_deployment_record()

    runner = CliRunner()
    result = runner.invoke(cli, ["outputs", "Satisfactory"])
    assert result.exit_code == 0
    assert json.loads(result.output) == {
        "public_ip": "54.1.2.3",
        "instance_id": "i-test123",
        "save_store": "satisfactory-saves-abc",
    }


@patch("gamehost.cli.Provisioner")
def test_wake_starts_server(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.wake.return_value = ActivationResult(accepted=True, instance_id="i-test123", start_issued=True)

    runner = CliRunner()
    result = runner.invoke(cli, ["wake", "Satisfactory"])
    assert result.exit_code == 0
    assert "Start requested for i-test123" in result.output


@patch("gamehost.cli.Provisioner")
def test_wake_already_running(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.wake.return_value = ActivationResult(
        accepted=True, instance_id="i-test123", reason="already running",
    )

    runner = CliRunner()
    result = runner.invoke(cli, ["wake", "Satisfactory"])
    assert result.exit_code == 0
    assert "already running" in result.output


@patch("gamehost.cli.Provisioner")
def test_wake_timeout_exits_nonzero(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.wake.side_effect = ActivationTimeout("did not finish within 10s")

    runner = CliRunner()
    result = runner.invoke(cli, ["wake", "Satisfactory"])
    assert result.exit_code == 1
    assert "did not finish" in result.output


@patch("gamehost.cli.Provisioner")
def test_wake_while_stopping_asks_to_retry(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.wake.return_value = ActivationResult(
        accepted=False, instance_id="i-test123", retryable=True,
        reason="instance is still stopping, retry once it has stopped",
    )

    runner = CliRunner()
    result = runner.invoke(cli, ["wake", "Satisfactory"])
    assert result.exit_code == 1
    assert "Not started yet" in result.output
    assert "Denied" not in result.output


@patch("gamehost.cli.Provisioner")
def test_stop(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov

    runner = CliRunner()
    result = runner.invoke(cli, ["stop", "Satisfactory"])
    assert result.exit_code == 0
    mock_prov.stop.assert_called_once_with("Satisfactory")


@patch("gamehost.cli.Provisioner")
def test_watch_interrupt_is_clean(mock_prov_cls):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.watch.side_effect = KeyboardInterrupt

    runner = CliRunner()
    result = runner.invoke(cli, ["watch", "Satisfactory", "--interval", "30"])
    assert result.exit_code == 0
    assert "Stopped watching" in result.output
    assert mock_prov.watch.call_args.kwargs["interval"] == 30.0


@patch("gamehost.cli.Provisioner")
def test_destroy_keeps_save_store(mock_prov_cls, make_deployment_record):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.state.get_by_name_or_id.return_value = make_deployment_record()

    runner = CliRunner()
    result = runner.invoke(cli, ["destroy", "Satisfactory", "-y"])
    assert result.exit_code == 0
    mock_prov.destroy.assert_called_once_with("dep-1")
    assert "was kept" in result.output


@patch("gamehost.cli.Provisioner")
def test_destroy_requires_confirmation(mock_prov_cls, make_deployment_record):
    mock_prov = MagicMock()
    mock_prov_cls.return_value = mock_prov
    mock_prov.state.get_by_name_or_id.return_value = make_deployment_record()

    runner = CliRunner()
    result = runner.invoke(cli, ["destroy", "Satisfactory"], input="n\n")
    assert result.exit_code == 1
    mock_prov.destroy.assert_not_called()


def test_missing_argument_shows_help():
    runner = CliRunner()
    result = runner.invoke(cli, ["wake"])
    assert result.exit_code == 2
    assert "Usage" in result.output
