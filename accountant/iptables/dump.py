"""
iptables-save invocation.

Runs `iptables-save -t filter -c` and captures its whole output before
parsing, so the parser can make two passes without re-running the
command. The process is always reaped: on a timeout or a read failure it
is killed before the error propagates.
"""

import subprocess
from dataclasses import dataclass
from typing import List, Optional

from ..constants import Defaults, Timeouts
from ..exceptions import DumpError
from ..logging_config import get_logger
from .models import AccountingRecord
from .parser import parse_text, workloads_by_interface

logger = get_logger(__name__)


@dataclass
class CompletedDump:
    """Output and exit status of one iptables-save run."""
    stdout: str
    stderr: str
    returncode: int

    def check_returncode(self) -> None:
        if self.returncode != 0:
            message = f"iptables-save failed with exit status {self.returncode}"
            if self.stderr.strip():
                message = f"{message}: {self.stderr.strip()[:500]}"
            raise DumpError(message)


class IptablesSave:
    """Producer of the iptables counter dump."""

    def __init__(
        self,
        binary: str = Defaults.IPTABLES_SAVE,
        table: str = Defaults.IPTABLES_TABLE,
        timeout: float = Timeouts.DUMP_DEFAULT,
    ):
        self.binary = binary
        self.table = table
        self.timeout = timeout

    @property
    def command(self) -> List[str]:
        return [self.binary, "-t", self.table, "-c"]

    def capture(self) -> CompletedDump:
        """
        Run iptables-save and capture its output.

        Raises:
            DumpError: if the process cannot be started, times out, or its
                output cannot be read
        """
        try:
            proc = subprocess.Popen(
                self.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding='utf-8',
                errors='replace',
            )
        except OSError as e:
            logger.error(f"Failed to start iptables-save: {e}")
            raise DumpError(f"Failed to start iptables-save: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            self._kill(proc)
            raise DumpError(f"iptables-save timed out after {self.timeout}s") from e
        except OSError as e:
            self._kill(proc)
            logger.error(f"Failed to read iptables-save output: {e}")
            raise DumpError(f"Failed to read iptables-save output: {e}") from e
        except BaseException:
            self._kill(proc)
            raise

        return CompletedDump(stdout=stdout, stderr=stderr, returncode=proc.returncode)

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            proc.kill()
        except OSError as e:
            logger.error(f"Failed to kill iptables-save process: {e}")
        try:
            proc.communicate(timeout=Timeouts.PROCESS_REAP)
        except (subprocess.TimeoutExpired, OSError, ValueError) as e:
            logger.error(f"Failed to reap iptables-save process {proc.pid}: {e}")


def scan(cache, dump: Optional[IptablesSave] = None) -> List[AccountingRecord]:
    """
    Take one counter dump and parse it against the cache's local workloads.

    The exit status is checked after parsing; a failure discards the
    records.

    Raises:
        DumpError: if iptables-save fails
        UnsupportedGrammarError: for a chain token outside the naming scheme
    """
    dump = dump or IptablesSave()
    interface_to_workload = workloads_by_interface(cache.list_workloads())

    completed = dump.capture()
    results = parse_text(completed.stdout, interface_to_workload)

    try:
        completed.check_returncode()
    except DumpError as e:
        logger.error(f"iptables-save failed: {e}")
        raise

    return results
