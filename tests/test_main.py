"""Tests for main — entry point dispatch."""

from unittest.mock import MagicMock, patch

import main


def test_default_command_starts_bot():
    with patch("src.bot.telegram_bot.main") as bot_main:
        assert main.run([]) == 0
    bot_main.assert_called_once()


def test_maintenance_runs_once_and_exits():
    services = MagicMock()
    with patch("src.bot.telegram_bot.build_services", return_value=services), \
         patch("src.bot.telegram_bot.run_maintenance", return_value=(3, 1)) as maintenance:
        assert main.run(["maintenance"]) == 0
    maintenance.assert_called_once_with(services)


def test_unknown_command(capsys):
    assert main.run(["serve"]) == 2
    assert "Unknown command" in capsys.readouterr().err
