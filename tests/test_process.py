"""Tests for external tool invocation.

Child processes are ``sys.executable -u -c ...`` so the tests run
anywhere Python does.
"""

import os
import sys
from pathlib import Path

import pytest

from bbf_backup.config.models import ConnectionDescriptor, ToolsConfig
from bbf_backup.errors import ProcessError
from bbf_backup.process.commands import connection_env, dump_command, restore_command
from bbf_backup.process.runner import run_captured, run_streamed


def _py(code: str) -> list[str]:
    return ["-u", "-c", code]


# ============================================================================
# Runner
# ============================================================================


class TestRunStreamed:
    """Merged, line-streamed process output."""

    def test_lines_forwarded_in_order(self) -> None:
        """stdout and stderr lines arrive in one ordered stream."""
        lines: list[str] = []
        code = (
            "import sys, time\n"
            "print('one')\n"
            "time.sleep(0.05)\n"
            "print('two', file=sys.stderr)\n"
            "time.sleep(0.05)\n"
            "print('three')\n"
        )
        output = run_streamed(sys.executable, _py(code), progress=lines.append)
        assert lines == ["one", "two", "three"]
        assert output == "one\ntwo\nthree"

    def test_env_only_in_child(self) -> None:
        """Extra variables reach the child but not the parent environment."""
        code = "import os; print(os.environ['BBF_TEST_SECRET'])"
        output = run_streamed(sys.executable, _py(code), {"BBF_TEST_SECRET": "s3cret"})
        assert output == "s3cret"
        assert "BBF_TEST_SECRET" not in os.environ

    def test_nonzero_exit(self) -> None:
        """A failing process raises ProcessError with code and output."""
        code = "import sys; print('partial'); sys.exit(3)"
        with pytest.raises(ProcessError) as exc_info:
            run_streamed(sys.executable, _py(code))
        assert exc_info.value.exit_code == 3
        assert exc_info.value.output == "partial"
        assert "status code: 3" in str(exc_info.value)

    def test_spawn_failure(self, tmp_path: Path) -> None:
        """A missing executable raises ProcessError without an exit code."""
        with pytest.raises(ProcessError, match="Error spawning process") as exc_info:
            run_streamed(str(tmp_path / "no_such_tool"), [])
        assert exc_info.value.exit_code is None


class TestRunCaptured:
    """Non-streaming variant."""

    def test_returns_combined_output(self) -> None:
        """Output from both streams is returned."""
        code = "import sys; print('out'); sys.stdout.flush(); print('err', file=sys.stderr)"
        output = run_captured(sys.executable, _py(code))
        assert "out" in output
        assert "err" in output

    def test_nonzero_exit(self) -> None:
        """A failing process raises ProcessError."""
        with pytest.raises(ProcessError):
            run_captured(sys.executable, _py("import sys; sys.exit(1)"))


# ============================================================================
# Command construction
# ============================================================================


@pytest.fixture
def descriptor() -> ConnectionDescriptor:
    return ConnectionDescriptor(host="db.local", port=1433, user="sysadmin", password="s3cret")


class TestCommands:
    """Dump and restore command values."""

    def test_dump_command(self, descriptor: ConnectionDescriptor, tmp_path: Path) -> None:
        """Dump uses directory format, parallel jobs and no compression."""
        tools = ToolsConfig(bin_dir="/opt/pg/bin", dump_jobs=2)
        cmd = dump_command(descriptor, tools, "babelfish_db", "acme", tmp_path / "out")
        assert cmd.program == str(Path("/opt/pg/bin") / "pg_dump")
        assert cmd.args == (
            "-v",
            "-h", "db.local",
            "-p", "1433",
            "-U", "sysadmin",
            "-d", "babelfish_db",
            "--bbf-database-name", "acme",
            "-F", "d",
            "-Z", "0",
            "-j", "2",
            "-f", str(tmp_path / "out"),
        )

    def test_restore_command(self, descriptor: ConnectionDescriptor, tmp_path: Path) -> None:
        """Restore runs in a single transaction without parallel jobs."""
        cmd = restore_command(descriptor, ToolsConfig(), "babelfish_db", tmp_path)
        assert cmd.program == "pg_restore"
        assert "--single-transaction" in cmd.args
        assert "-j" not in cmd.args
        assert cmd.args[-1] == str(tmp_path)

    def test_password_only_in_env(self, descriptor: ConnectionDescriptor, tmp_path: Path) -> None:
        """The password travels in the environment, never in arguments."""
        cmd = dump_command(descriptor, ToolsConfig(), "babelfish_db", "acme", tmp_path)
        assert cmd.env["PGPASSWORD"] == "s3cret"
        assert "s3cret" not in cmd.args
        assert "s3cret" not in cmd.display()

    def test_pgpass_omits_password(self) -> None:
        """With use_pgpass no PGPASSWORD is set."""
        desc = ConnectionDescriptor(user="u", password="pw", use_pgpass=True)
        assert "PGPASSWORD" not in connection_env(desc)

    @pytest.mark.parametrize(
        ("enable_tls", "accept_invalid", "mode"),
        [(False, True, "disable"), (True, False, "verify-full"), (True, True, "require")],
    )
    def test_ssl_mode(self, enable_tls: bool, accept_invalid: bool, mode: str) -> None:
        """TLS flags map to PGSSLMODE."""
        desc = ConnectionDescriptor(
            user="u", enable_tls=enable_tls, accept_invalid_tls=accept_invalid
        )
        assert connection_env(desc)["PGSSLMODE"] == mode

    def test_env_is_read_only(self, descriptor: ConnectionDescriptor) -> None:
        """Command environments cannot be mutated after construction."""
        env = connection_env(descriptor)
        with pytest.raises(TypeError):
            env["PGPASSWORD"] = "other"  # type: ignore[index]
