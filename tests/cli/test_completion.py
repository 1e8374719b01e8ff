from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from gamehost.cli import _complete_deployment, _complete_game, cli


def _make_record(name, id, game="satisfactory", status="running"):
    rec = MagicMock()
    rec.name = name
    rec.id = id
    rec.game = game
    rec.status = status
    return rec


@patch("gamehost.control.state.DeploymentState")
def test_complete_deployment_by_name_and_id(mock_state_cls):
    mock_state_cls.return_value.list_all.return_value = [
        _make_record("Satisfactory", "abc123"),
        _make_record("Other", "sat999"),
    ]
    names = [item.value for item in _complete_deployment(None, None, "Sat")]
    assert names == ["Satisfactory"]
    names = [item.value for item in _complete_deployment(None, None, "sat")]
    assert names == ["Other"]


def test_complete_game():
    items = _complete_game(None, None, "sat")
    assert [item.value for item in items] == ["satisfactory"]
    assert _complete_game(None, None, "zzz") == []


def test_completion_script():
    runner = CliRunner()
    result = runner.invoke(cli, ["completion", "bash"])
    assert result.exit_code == 0
    assert "_GAMEHOST_COMPLETE" in result.output
