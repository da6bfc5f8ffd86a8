"""
CSRF tokens kept in the shared key-value store.

A token is bound to a user, lives for `CSRF_TOKEN_VALIDITY` seconds and is
sent back by the client in the `X-CSRF-Token` header of mutating requests.
"""

from secrets import compare_digest, token_hex

from app.src.constants import CSRF_TOKEN_VALIDITY
from app.src.redis import KeyValueStore, kvStore

PROTECTED_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class CSRFTokens:
    def __init__(self, store: KeyValueStore, validity: int = CSRF_TOKEN_VALIDITY):
        self.store = store
        self.validity = validity

    @staticmethod
    def key(user_id: int) -> str:
        return f"csrf:{user_id}"

    def issue(self, user_id: int) -> str:
        """Create a new 64 hex character token, replacing the previous one."""
        token = token_hex(32)
        self.store.set(self.key(user_id), token, self.validity)
        return token

    def verify(self, user_id: int | str | None, token: str | None) -> bool:
        if not user_id or not token:
            return False
        expected = self.store.get(self.key(user_id))
        if expected is None:
            return False
        return compare_digest(expected, token)

    def revoke(self, user_id: int) -> None:
        self.store.delete(self.key(user_id))


def isExempt(method: str, path: str) -> bool:
    """Safe methods and the login endpoint do not need a CSRF token."""
    if method.upper() not in PROTECTED_METHODS:
        return True
    return path.rstrip("/").endswith("/auth/token") and method.upper() == "POST"


csrfTokens = CSRFTokens(kvStore)
