"""Fixtures for contract tests — one parameterized fixture per hook interface.

Each fixture yields a fresh implementation instance, once per param. Today
there are two stubs ("memory", "file"). When the team adds a real
implementation (keyring, secret store), they add a param value and an elif
branch.

TEAM: To test your implementation against the contracts:
    1. Add your param string (e.g., "keyring") to the params list.
    2. Add an elif branch that yields your implementation instance.
    3. Run: python -m pytest bizcoin/tests/contracts/ -v
    All tests should pass. If any fail, your implementation doesn't satisfy
    the contract — read the failing test's docstring for what's expected.
"""

import pytest

from bizcoin.hooks.token_storage import FileTokenStorage, InMemoryTokenStorage


# ---------------------------------------------------------------------------
# Interface fixtures (parameterized for future implementations)
# ---------------------------------------------------------------------------


@pytest.fixture(params=["memory", "file"])
def token_storage(request, tmp_path):
    """Yields a TokenStorage implementation with nothing stored.

    TEAM: Add your credential store here:
        @pytest.fixture(params=["memory", "file", "keyring"])
        def token_storage(request, tmp_path):
            ...
            elif request.param == "keyring":
                yield YourKeyringStorage(service="bizcoin-test")
    """
    if request.param == "memory":
        yield InMemoryTokenStorage()
    elif request.param == "file":
        yield FileTokenStorage(tmp_path / "auth" / "token")
