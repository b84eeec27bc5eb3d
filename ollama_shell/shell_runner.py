import os
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import IO, Dict, List, Optional

from .errors import SpawnError

# Serializes console writes from the two drain threads.
_print_lock = threading.Lock()


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int


class ShellRunner:
    """
    Runs command strings through a shell, e.g. ``["bash", "-lc"] + [command]``.

    ``stream`` echoes output live and returns the combined log; ``capture``
    waits for the command and returns stdout, stderr and the exit status.
    A non-zero exit status is data, not an error. Only a failure to start
    the shell raises SpawnError.
    """

    def __init__(self, shell_prefix: List[str], extra_env: Optional[Dict[str, str]] = None):
        self.shell_prefix = list(shell_prefix)
        self.extra_env = dict(extra_env or {})

    def _env(self) -> Dict[str, str]:
        env = os.environ.copy()
        env.update(self.extra_env)
        return env

    def stream(self, command: str, cwd: Optional[str] = None) -> str:
        try:
            proc = subprocess.Popen(
                self.shell_prefix + [command],
                cwd=cwd or os.getcwd(),
                env=self._env(),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            raise SpawnError(str(e)) from e

        log: List[str] = []

        def drain(pipe: IO[str], console: IO[str]) -> None:
            with pipe:
                for line in iter(pipe.readline, ""):
                    with _print_lock:
                        console.write(line)
                        console.flush()
                        log.append(line)

        readers = [
            threading.Thread(target=drain, args=(proc.stdout, sys.stdout), daemon=True),
            threading.Thread(target=drain, args=(proc.stderr, sys.stderr), daemon=True),
        ]
        for t in readers:
            t.start()
        for t in readers:
            t.join()
        proc.wait()
        return "".join(log)

    def capture(self, command: str, cwd: Optional[str] = None) -> CommandResult:
        try:
            proc = subprocess.run(
                self.shell_prefix + [command],
                cwd=cwd or os.getcwd(),
                env=self._env(),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise SpawnError(str(e)) from e
        return CommandResult(stdout=proc.stdout or "", stderr=proc.stderr or "", exit_code=proc.returncode)
