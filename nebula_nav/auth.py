import logging
from typing import Callable, Optional

from .errors import CredentialError
from .storage import LocalStore

logger = logging.getLogger(__name__)


class CredentialGate:
    """Single shared password guarding the admin endpoints.

    This is an equality check against a plaintext value, not security.
    """

    def __init__(self, store: LocalStore, on_change: Optional[Callable[[], None]] = None):
        self.store = store
        self.on_change = on_change

    def is_first_run(self) -> bool:
        return not self.store.has_password_set()

    def check(self, candidate: str) -> bool:
        return self.store.check_password(candidate)

    def login(self, candidate: str) -> bool:
        # first run: whatever is entered becomes the password
        if self.is_first_run():
            if not candidate:
                return False
            self.store.set_password(candidate)
            logger.info("admin password set")
            return True
        return self.check(candidate)

    def change_password(self, current: str, new: str) -> None:
        if not self.check(current):
            raise CredentialError("Current password is incorrect")
        if not new:
            raise CredentialError("New password must not be empty")
        self.store.set_password(new)
        logger.info("admin password changed")
        if self.on_change:
            self.on_change()
