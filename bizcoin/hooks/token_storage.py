"""Token storage stubs — in-memory and single-file implementations of TokenStorage.

InMemoryTokenStorage is the default for tests and throwaway scripts.
FileTokenStorage survives restarts: the token lives in one file, written
on set and deleted on remove.

TEAM: For production, subclass TokenStorage from bizcoin.hooks.interfaces
with your OS keyring or secret store.

Tier 2 service module: imports from bizcoin.hooks.interfaces (Tier 1).

Usage:
    from bizcoin.hooks.token_storage import FileTokenStorage

    storage = FileTokenStorage("~/.bizcoin_token")
    storage.set_token("abc")
    storage.get_token()  # "abc"
"""

from pathlib import Path

from bizcoin.hooks.interfaces import TokenStorage


class InMemoryTokenStorage(TokenStorage):
    """STUB — keeps the token in a variable, lost on restart."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def get_token(self) -> str | None:
        return self._token

    def set_token(self, token: str) -> None:
        self._token = token

    def remove_token(self) -> None:
        self._token = None


class FileTokenStorage(TokenStorage):
    """STUB — stores the token as the sole content of a file.

    An empty or missing file reads as "no token". Parent directories are
    created on set.
    """

    def __init__(self, path: str | Path) -> None:
        """Initialises with the token file location.

        Args:
            path: File to hold the token. "~" is expanded.
        """
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def get_token(self) -> str | None:
        if not self._path.is_file():
            return None
        token = self._path.read_text(encoding="utf-8").strip()
        return token or None

    def set_token(self, token: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(token, encoding="utf-8")

    def remove_token(self) -> None:
        self._path.unlink(missing_ok=True)
