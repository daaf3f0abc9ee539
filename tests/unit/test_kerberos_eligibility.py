"""
Unit tests for krb5sync.kerberos module.

Tests the principal filter and the kadmin-backed directory lookup.
"""

import subprocess

import attrs
import pytest
from returns.result import Failure, Success

from krb5sync.core.exceptions import FilterError
from krb5sync.kerberos import directory as directory_module
from krb5sync.kerberos.directory import KadminDirectory
from krb5sync.kerberos.eligibility import instance_allowed, is_eligible
from tests.conftest import FakeDirectory, make_principal


class TestInstanceAllowed:
    """Tests for instance allow-list matching."""

    def test_exact_match(self, config):
        """Test listed instances are allowed."""
        assert instance_allowed(config, "root")
        assert instance_allowed(config, "ipass")

    def test_no_substring_match(self, config):
        """Test instances are matched whole, never as substrings."""
        assert not instance_allowed(config, "root2")
        assert not instance_allowed(config, "roo")
        assert not instance_allowed(config, "ROOT")

    def test_base_instance_allowed(self, config):
        """Test the base instance is always allowed."""
        assert instance_allowed(config, "windows")
        assert not instance_allowed(attrs.evolve(config, ad_base_instance=None), "windows")

    def test_none(self, config):
        """Test principals without an instance."""
        assert not instance_allowed(config, None)


class TestIsEligible:
    """Tests for is_eligible."""

    def test_allowed_instance(self, config, directory):
        """Test a principal with an allowed instance is eligible."""
        result = is_eligible(config, directory, make_principal("jdoe/root@EXAMPLE.COM"), True)
        assert result == Success(True)

    def test_disallowed_instance(self, config, directory):
        """Test a principal with another instance is skipped."""
        result = is_eligible(config, directory, make_principal("jdoe/admin@EXAMPLE.COM"), True)
        assert result == Success(False)
        assert directory.lookups == []

    def test_base_instance_exists(self, config):
        """Test a password change is skipped when the base-instance principal exists."""
        directory = FakeDirectory({"jdoe/windows@EXAMPLE.COM"})
        result = is_eligible(config, directory, make_principal("jdoe@EXAMPLE.COM"), True)
        assert result == Success(False)
        assert directory.lookups == ["jdoe/windows@EXAMPLE.COM"]

    def test_base_instance_absent(self, config, directory):
        """Test a password change goes through when no base-instance principal exists."""
        result = is_eligible(config, directory, make_principal("jdoe@EXAMPLE.COM"), True)
        assert result == Success(True)
        assert directory.lookups == ["jdoe/windows@EXAMPLE.COM"]

    def test_status_change_skips_lookup(self, config):
        """Test the base-instance check only applies to password changes."""
        directory = FakeDirectory({"jdoe/windows@EXAMPLE.COM"})
        result = is_eligible(config, directory, make_principal("jdoe@EXAMPLE.COM"), False)
        assert result == Success(True)
        assert directory.lookups == []

    def test_no_base_instance(self, config, directory):
        """Test single-component principals are eligible without a base instance."""
        config = attrs.evolve(config, ad_base_instance=None)
        result = is_eligible(config, directory, make_principal("jdoe@EXAMPLE.COM"), True)
        assert result == Success(True)
        assert directory.lookups == []

    def test_lookup_failure(self, config):
        """Test a failed lookup aborts with a filter error."""
        directory = FakeDirectory(error="database unavailable")
        result = is_eligible(config, directory, make_principal("jdoe@EXAMPLE.COM"), True)
        assert isinstance(result, Failure)
        assert isinstance(result.failure(), FilterError)


class TestKadminDirectory:
    """Tests for KadminDirectory."""

    @pytest.fixture
    def run(self, monkeypatch):
        calls = []
        outcome = {}

        def fake_run(cmd, **kwargs):
            calls.append(cmd)
            if "error" in outcome:
                raise outcome["error"]
            return subprocess.CompletedProcess(
                cmd, outcome.get("returncode", 0), outcome.get("stdout", ""), outcome.get("stderr", "")
            )

        monkeypatch.setattr(directory_module.subprocess, "run", fake_run)
        return calls, outcome

    def test_found(self, run):
        """Test a principal listing means the principal exists."""
        calls, outcome = run
        outcome["stdout"] = "Principal: jdoe/windows@EXAMPLE.COM\nExpiration date: [never]\n"
        result = KadminDirectory().exists(make_principal("jdoe/windows@EXAMPLE.COM"))
        assert result == Success(True)
        assert calls == [
            ["kadmin.local", "-r", "EXAMPLE.COM", "-q", "getprinc jdoe/windows@EXAMPLE.COM"]
        ]

    def test_not_found(self, run):
        """Test the not-found marker is a negative answer, not an error."""
        _, outcome = run
        outcome["stderr"] = (
            'get_principal: Principal does not exist while retrieving "jdoe/windows@EXAMPLE.COM".\n'
        )
        result = KadminDirectory().exists(make_principal("jdoe/windows@EXAMPLE.COM"))
        assert result == Success(False)

    def test_other_failure(self, run):
        """Test other kadmin failures are filter errors."""
        _, outcome = run
        outcome["returncode"] = 1
        outcome["stderr"] = "kadmin.local: Cannot open DB2 database\n"
        result = KadminDirectory().exists(make_principal("jdoe/windows@EXAMPLE.COM"))
        assert isinstance(result, Failure)
        assert isinstance(result.failure(), FilterError)
        assert "Cannot open DB2 database" in str(result.failure())

    def test_command_missing(self, run):
        """Test a missing kadmin.local binary is a filter error."""
        _, outcome = run
        outcome["error"] = FileNotFoundError(2, "No such file or directory")
        result = KadminDirectory().exists(make_principal("jdoe/windows"))
        assert isinstance(result, Failure)
        assert isinstance(result.failure(), FilterError)

    def test_timeout(self, run):
        """Test a hung kadmin.local is a filter error."""
        _, outcome = run
        outcome["error"] = subprocess.TimeoutExpired("kadmin.local", 10)
        result = KadminDirectory().exists(make_principal("jdoe/windows"))
        assert isinstance(result, Failure)
        assert "timed out" in str(result.failure())
