"""Run external programs with a timeout, capturing output instead of raising."""

import logging
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Same convention as coreutils `timeout`
TIMEOUT_EXIT_CODE = 124
COMMAND_NOT_FOUND_EXIT_CODE = 127


@dataclass
class CommandResult:
    """Outcome of one child process."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def run_command(
    program: str,
    args: list[str],
    timeout: float | None = None,
) -> CommandResult:
    """Run ``program`` with ``args`` and capture stdout/stderr.

    Never raises for a non-zero exit. A timeout kills the child and reports
    TIMEOUT_EXIT_CODE; a missing executable reports COMMAND_NOT_FOUND_EXIT_CODE.

    Args:
        program: Executable name or path
        args: Arguments, in order
        timeout: Seconds before the child is killed (None = no limit)

    Returns:
        CommandResult with exit code and captured text
    """
    cmd = [program, *args]
    logger.debug("Running: %s", " ".join(cmd))

    try:
        proc = subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError:
        logger.error("%s executable not found", program)
        return CommandResult(
            exit_code=COMMAND_NOT_FOUND_EXIT_CODE,
            stdout="",
            stderr=f"{program} not found in PATH",
        )
    except PermissionError as e:
        logger.error("%s is not executable: %s", program, e)
        return CommandResult(exit_code=COMMAND_NOT_FOUND_EXIT_CODE, stdout="", stderr=str(e))

    with proc:
        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            proc.kill()
            stdout, stderr = proc.communicate()
            logger.error("%s timed out after %ss", program, timeout)
            stderr = (stderr or "") + f"\nCommand timed out after {timeout}s"
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=stdout or "",
                stderr=stderr,
                timed_out=True,
            )
        except BaseException:
            # Caller abandoned the call (e.g. KeyboardInterrupt); don't leak the child
            proc.kill()
            raise

    return CommandResult(exit_code=proc.returncode, stdout=stdout or "", stderr=stderr or "")
