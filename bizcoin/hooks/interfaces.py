"""Hook interfaces — abstract base classes for swappable client services.

The cache layer reads the auth token on every request but never manages
its lifecycle; whoever signs the user in writes it through this interface.

Tier 1 leaf module: imports only from abc (stdlib).

TEAM: To plug in a platform keyring or a browser-backed store, subclass
TokenStorage and implement every abstract method. Python will raise
TypeError at instantiation if any method is missing.

Usage:
    from bizcoin.hooks.interfaces import TokenStorage
"""

from abc import ABC, abstractmethod


class TokenStorage(ABC):
    """Durable get/set/remove of a single auth token string.

    TEAM: Replace the stubs (InMemoryTokenStorage, FileTokenStorage) with
    your platform's credential store. The RemoteStoreClient only calls
    get_token(); sign-in and sign-out flows call the other two.
    """

    @abstractmethod
    def get_token(self) -> str | None:
        """Returns the stored token, or None if nobody is signed in."""
        ...

    @abstractmethod
    def set_token(self, token: str) -> None:
        """Stores a token, replacing any previous one.

        Args:
            token: The bearer token issued by the Remote Store.
        """
        ...

    @abstractmethod
    def remove_token(self) -> None:
        """Forgets the stored token. No-op if none is stored (idempotent)."""
        ...
