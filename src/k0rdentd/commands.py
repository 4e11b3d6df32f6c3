"""Execution of external commands (k0s, skopeo, cosign, systemctl)."""

import shutil
import subprocess

from icecream import ic

from k0rdentd.exceptions import BinaryNotFoundError, CommandError

_NOT_EXECUTABLE = 126


def require(binary: str) -> str:
    """Return the full path of a binary on PATH.

    Raises:
        BinaryNotFoundError: If the binary is not on PATH.

    """
    path = shutil.which(binary)
    if path is None:
        raise BinaryNotFoundError(f"{binary} not found; please install it and ensure it's on PATH")
    return path


def run(args: list[str], description: str, *, stdin: str | None = None) -> str:
    """Run a command and return its standard output.

    Args:
        args: The command line.
        description: What the command does, used in error messages.
        stdin: Optional text passed on standard input.

    Returns:
        The captured standard output.

    Raises:
        BinaryNotFoundError: If the executable does not exist.
        CommandError: If the command cannot be executed or exits with a non-zero status.

    """
    ic(args)
    try:
        result = subprocess.run(args, input=stdin, capture_output=True, text=True, check=True)
    except FileNotFoundError as e:
        raise BinaryNotFoundError(f"{args[0]} not found; please install it and ensure it's on PATH") from e
    except OSError as e:
        # 126 is the shell's status for a command that cannot be executed
        raise CommandError(
            f"Failed to {description}", command=args, returncode=_NOT_EXECUTABLE, stderr=e.strerror or str(e)
        ) from e
    except subprocess.CalledProcessError as e:
        raise CommandError(
            f"Failed to {description}",
            command=args,
            returncode=e.returncode,
            stderr=(e.stderr or e.stdout or "").strip(),
        ) from e
    return result.stdout
