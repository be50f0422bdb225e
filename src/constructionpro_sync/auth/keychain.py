"""API token storage in the system keyring.

Tokens are kept per API server: the keyring account is the normalized base
URL, so a token issued by a staging server is never sent to production.
"""

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Optional

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

__all__ = ["KeychainManager", "StoredCredentials", "account_for"]

logger = logging.getLogger(__name__)

SERVICE_NAME = "ConstructionPro Sync"


def account_for(api_url: str) -> str:
    """Keyring account name for an API base URL."""
    return api_url.strip().rstrip("/").lower()


@dataclass
class StoredCredentials:
    api_token: str
    user_email: str
    saved_at: int = field(default_factory=lambda: int(time.time()))

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, data: str) -> "StoredCredentials":
        parsed = json.loads(data)
        return cls(
            api_token=parsed["api_token"],
            user_email=parsed["user_email"],
            saved_at=parsed.get("saved_at", 0),
        )


class KeychainManager:
    """Reads and writes the token for one API server.

    Keyring failures are logged and treated as "signed out", so the outbox
    keeps accepting work while the keyring is locked or unavailable.
    """

    def __init__(self, api_url: str, service_name: str = SERVICE_NAME):
        self.service_name = service_name
        self.account = account_for(api_url)

    def save(self, credentials: StoredCredentials) -> bool:
        """Save credentials for this server, replacing any earlier ones.

        Returns:
            True if the keyring accepted them
        """
        try:
            keyring.set_password(self.service_name, self.account, credentials.to_json())
        except KeyringError as e:
            logger.error(f"Could not save token for {self.account}: {e}")
            return False
        logger.info(f"Saved token for {credentials.user_email} on {self.account}")
        return True

    def load(self) -> Optional[StoredCredentials]:
        try:
            data = keyring.get_password(self.service_name, self.account)
        except KeyringError as e:
            logger.error(f"Could not read token for {self.account}: {e}")
            return None
        if not data:
            return None
        try:
            return StoredCredentials.from_json(data)
        except (ValueError, KeyError) as e:
            logger.error(f"Ignoring malformed keyring entry for {self.account}: {e}")
            return None

    def forget(self) -> bool:
        """Remove this server's token. A missing entry counts as removed."""
        try:
            keyring.delete_password(self.service_name, self.account)
        except PasswordDeleteError:
            return True
        except KeyringError as e:
            logger.error(f"Could not remove token for {self.account}: {e}")
            return False
        logger.info(f"Removed token for {self.account}")
        return True

    def get_token(self, expected_email: Optional[str] = None) -> Optional[str]:
        """Token for this server, if one is stored.

        Args:
            expected_email: When set, a token saved for a different account
                is not returned
        """
        credentials = self.load()
        if credentials is None:
            return None
        if expected_email and credentials.user_email.lower() != expected_email.lower():
            logger.warning(
                f"Stored token belongs to {credentials.user_email}, "
                f"not the configured {expected_email}"
            )
            return None
        return credentials.api_token
