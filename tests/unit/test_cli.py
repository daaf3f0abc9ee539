"""
Unit tests for krb5sync.cli module.

Tests argument handling and output of krb5-sync and krb5-sync-backend.
"""

from datetime import datetime, timezone

import pytest

from krb5sync import cli
from krb5sync.core.types import Operation
from krb5sync.queue.store import write_entry
from tests.conftest import RecordingClient, make_principal, queue_files


@pytest.fixture
def conf(tmp_path, queue_dir):
    """krb5.conf pointing at the test queue directory."""
    path = tmp_path / "krb5.conf"
    path.write_text(
        "[libdefaults]\n"
        "    default_realm = EXAMPLE.COM\n"
        "[appdefaults]\n"
        "    krb5-sync = {\n"
        "        ad_realm = WIN.EXAMPLE.COM\n"
        "        ad_admin_server = dc.win.example.com\n"
        "        ad_ldap_base = dc=win,dc=example,dc=com\n"
        f"        queue_dir = {queue_dir}\n"
        "        syslog = false\n"
        "    }\n"
    )
    return str(path)


@pytest.fixture
def remote(monkeypatch):
    """Replace the AD client used by the tools with a recording client."""
    client = RecordingClient()
    monkeypatch.setattr(cli, "ADSyncClient", lambda config: client)
    monkeypatch.setattr(cli, "configure_logging", lambda **kwargs: None)
    return client


class TestSyncCommand:
    """Tests for krb5-sync."""

    def test_password(self, conf, remote):
        """Test pushing a password directly."""
        assert cli.main(["-c", conf, "-p", "new pw", "jdoe@EXAMPLE.COM"]) == 0
        assert remote.calls == [("password", "jdoe@EXAMPLE.COM", "new pw")]

    def test_disable(self, conf, remote):
        """Test disabling an account directly."""
        assert cli.main(["-c", conf, "-d", "jdoe"]) == 0
        assert remote.calls == [("status", "jdoe", False)]

    def test_password_and_enable(self, conf, remote):
        """Test both actions in one call."""
        assert cli.main(["-c", conf, "-e", "-p", "pw", "jdoe"]) == 0
        assert remote.calls == [("password", "jdoe", "pw"), ("status", "jdoe", True)]

    def test_failure(self, conf, remote, capsys):
        """Test a failed push exits non-zero with the error."""
        remote.fail = True
        assert cli.main(["-c", conf, "-p", "pw", "jdoe"]) == 1
        err = capsys.readouterr().err
        assert "AD password change for jdoe failed: AD unreachable" in err

    def test_replay_file(self, conf, remote, queue_dir):
        """Test replaying a single queue file."""
        path = write_entry(
            queue_dir, make_principal("bob"), "ad", Operation.DISABLE,
            clock=lambda: datetime(2024, 3, 1, tzinfo=timezone.utc),
        ).unwrap()
        assert cli.main(["-c", conf, "-f", str(path)]) == 0
        assert remote.calls == [("status", "bob", False)]
        assert queue_files(queue_dir) == []

    def test_no_action(self, remote, capsys):
        """Test a user without an action is rejected."""
        assert cli.main(["jdoe"]) == 1
        assert "no action specified" in capsys.readouterr().err

    def test_no_user(self, remote, capsys):
        """Test an action without a user is rejected."""
        assert cli.main(["-d"]) == 1
        assert "usage" in capsys.readouterr().err

    def test_file_and_action(self, remote, capsys):
        """Test a queue file cannot be combined with an action."""
        assert cli.main(["-f", "somefile", "-d"]) == 1
        assert "not both" in capsys.readouterr().err

    def test_enable_and_disable(self, remote):
        """Test -d and -e are mutually exclusive."""
        with pytest.raises(SystemExit):
            cli.main(["-d", "-e", "jdoe"])

    def test_missing_config(self, tmp_path, remote, capsys):
        """Test an unreadable configuration file."""
        assert cli.main(["-c", str(tmp_path / "missing.conf"), "-d", "jdoe"]) == 1
        assert "cannot load configuration" in capsys.readouterr().err


class TestBackendCommand:
    """Tests for krb5-sync-backend."""

    @pytest.fixture
    def queued(self, queue_dir):
        clock = lambda: datetime(2024, 3, 1, 8, 0, 0, tzinfo=timezone.utc)
        write_entry(queue_dir, make_principal("alice"), "ad", Operation.PASSWORD, "pw", clock=clock)
        write_entry(queue_dir, make_principal("bob/root"), "ad", Operation.DISABLE, clock=clock)

    def test_list(self, conf, remote, queued, capsys):
        """Test listing queued changes without their passwords."""
        assert cli.backend_main(["-c", conf, "list"]) == 0
        out = capsys.readouterr().out.splitlines()
        assert out == [
            "2024-03-01 08:00:00 UTC  alice  ad  password",
            "2024-03-01 08:00:00 UTC  bob/root  ad  disable",
        ]

    def test_process(self, conf, remote, queued, queue_dir):
        """Test replaying the queue."""
        assert cli.backend_main(["-c", conf, "process"]) == 0
        assert remote.calls == [("password", "alice", "pw"), ("status", "bob/root", False)]
        assert queue_files(queue_dir) == []

    def test_process_failure(self, conf, remote, queued, queue_dir, capsys):
        """Test failed entries are reported and kept."""
        remote.fail = True
        assert cli.backend_main(["-c", conf, "process"]) == 1
        assert "failed: alice-ad-password-20240301T080000Z-00" in capsys.readouterr().err
        assert len(queue_files(queue_dir)) == 2

    def test_purge(self, conf, remote, queued, queue_dir, capsys):
        """Test purging everything older than zero days."""
        assert cli.backend_main(["-c", conf, "purge", "--days", "0"]) == 0
        assert queue_files(queue_dir) == []
        assert "purged: alice-ad-password-20240301T080000Z-00" in capsys.readouterr().out

    def test_purge_negative_days(self, conf, remote, capsys):
        """Test a negative age is rejected."""
        assert cli.backend_main(["-c", conf, "purge", "--days", "-1"]) == 1
        assert "must not be negative" in capsys.readouterr().err

    def test_missing_queue_dir(self, tmp_path, remote, capsys):
        """Test the queue directory setting is required."""
        path = tmp_path / "empty.conf"
        path.write_text("[appdefaults]\n")
        assert cli.backend_main(["-c", str(path), "list"]) == 1
        assert "configuration setting queue_dir missing" in capsys.readouterr().err

    def test_command_required(self, remote):
        """Test a subcommand must be given."""
        with pytest.raises(SystemExit):
            cli.backend_main([])
