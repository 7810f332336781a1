"""Tests for the command-line entrypoint."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mindnest.__main__ import build_parser, main
from mindnest.db.settings_store import DEVICE_NAME_KEY, SERVER_URL_KEY
from mindnest.models.sync import SyncErrorType
from mindnest.sync.errors import SyncNotConfiguredError
from mindnest.sync.result import SyncPlan, SyncResult


class TestParser:
    def test_sync_dry_run(self):
        args = build_parser().parse_args(["sync", "--dry-run"])
        assert args.command == "sync"
        assert args.dry_run is True

    def test_link_requires_token(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["link"])

    def test_config_toggle(self):
        parser = build_parser()
        assert parser.parse_args(["config"]).enabled is None
        assert parser.parse_args(["config", "--enable"]).enabled is True
        assert parser.parse_args(["config", "--disable"]).enabled is False
        with pytest.raises(SystemExit):
            parser.parse_args(["config", "--enable", "--disable"])


class TestCommands:
    def test_sync_success(self, capsys):
        service = MagicMock()
        result = SyncResult(total_items=2, success_items=2)
        service.sync_all = AsyncMock(return_value=result)
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["sync"]) == 0
        assert "Synced 2/2 items" in capsys.readouterr().out

    def test_sync_failure_exit_code(self, capsys):
        service = MagicMock()
        result = SyncResult(total_items=1, failed_items=1)
        result.error_type = SyncErrorType.NETWORK
        result.error_message = "executing request: ConnectError"
        service.sync_all = AsyncMock(return_value=result)
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["sync"]) == 1
        assert "First error (network)" in capsys.readouterr().out

    def test_sync_not_configured(self):
        service = MagicMock()
        service.sync_all = AsyncMock(side_effect=SyncNotConfiguredError("no token"))
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["sync"]) == 2

    def test_dry_run_does_not_push(self, capsys):
        service = MagicMock()
        service.plan.return_value = SyncPlan()
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["sync", "--dry-run"]) == 0
        service.sync_all.assert_not_called()
        assert "total" in capsys.readouterr().out

    def test_link_stores_token_and_name(self):
        service = MagicMock()
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["link", "--token", "abc", "--name", "laptop"]) == 0
        service.set_token.assert_called_once_with("abc")
        service.settings_store.set_setting.assert_called_once_with(DEVICE_NAME_KEY, "laptop")

    def test_config_sets_server(self):
        service = MagicMock()
        service.settings_store.get_settings.return_value = {}
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["config", "--server", "https://mindnest.example.com/"]) == 0
        service.settings_store.set_setting.assert_called_once_with(
            SERVER_URL_KEY, "https://mindnest.example.com"
        )

    def test_verify_invalid_token(self, capsys):
        service = MagicMock()
        service.verify_token = AsyncMock(return_value=False)
        with patch("mindnest.__main__._service", return_value=service):
            assert main(["verify"]) == 1
        assert "invalid" in capsys.readouterr().out
