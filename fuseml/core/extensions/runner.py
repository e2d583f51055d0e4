"""Execution of the external tools used by install steps (helm, kubectl, scripts)"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from fuseml.core.extensions.exceptions import InstallationError, InstallErrorCode

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 1800  # helm --wait may take a while


class CommandRunner:
    """Runs external commands and captures their output"""

    def __init__(self, debug: bool = False, timeout: int = DEFAULT_COMMAND_TIMEOUT):
        """
        Initialize runner

        Args:
            debug: Log the output of every command
            timeout: Default timeout in seconds
        """
        self.debug = debug
        self.timeout = timeout

    def run(
        self,
        args: List[str],
        cwd: Optional[Path] = None,
        timeout: Optional[int] = None,
        input_text: Optional[str] = None
    ) -> Tuple[int, str, str]:
        """
        Execute a command

        Args:
            args: Program and arguments
            cwd: Working directory (defaults to the current one)
            timeout: Timeout in seconds (defaults to the runner timeout)
            input_text: Text passed on stdin

        Returns:
            Tuple of (return_code, stdout, stderr)

        Raises:
            InstallationError: If the program cannot be started or times out
        """
        timeout = timeout or self.timeout
        logger.debug(f"Running: {' '.join(args)} (cwd={cwd or '.'})")

        try:
            process = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                input=input_text,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired as e:
            raise InstallationError(
                f"Command timed out after {timeout} seconds: {' '.join(args)}",
                error_code=InstallErrorCode.TIMEOUT,
                hint="Increase the timeout or check the state of the cluster"
            ) from e
        except OSError as e:
            raise InstallationError(
                f"Failed to execute {args[0]}: {e}",
                error_code=InstallErrorCode.COMMAND_FAILED,
                hint=f"Ensure {args[0]} is installed and in PATH"
            ) from e

        if self.debug:
            logger.debug(f"{args[0]} exited with {process.returncode}\n{process.stdout}{process.stderr}")
        elif process.returncode != 0:
            logger.debug(f"{args[0]} failed with code {process.returncode}: {process.stderr.strip()}")

        return process.returncode, process.stdout, process.stderr


def combined_output(stdout: str, stderr: str) -> str:
    """Join stdout and stderr for error messages"""
    return "\n".join(part.strip() for part in (stdout, stderr) if part and part.strip())
