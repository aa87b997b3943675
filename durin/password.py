"""Password source used when the caller does not pass a password."""
import getpass

from .exceptions import KeyDerivationError


def read_password(prompt: str = "Password: ") -> str:
    """Read the unlock password without echo.

    Raises:
        KeyDerivationError: If no input is available (EOF, closed stdin,
            interrupted prompt).
    """
    try:
        return getpass.getpass(prompt)
    except (EOFError, KeyboardInterrupt, OSError) as err:
        raise KeyDerivationError(f"failed to read password: {err!r}") from err
