"""External tool invocation: command values and streamed runner.

Usage:
    from bbf_backup.process import dump_command, run_streamed
"""

from bbf_backup.process.commands import PgCommand, dump_command, restore_command
from bbf_backup.process.runner import run_captured, run_streamed

__all__ = [
    "PgCommand",
    "dump_command",
    "restore_command",
    "run_captured",
    "run_streamed",
]
