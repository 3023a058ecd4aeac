"""Session secret provisioning.

The secret signs session cookies. It is generated once, persisted under
the engine config directory and reused verbatim on every later start,
so sessions survive restarts.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
from pathlib import Path

from fabengine.engine.errors import PersistenceError

logger = logging.getLogger(__name__)

SECRET_BYTES = 256
SECRET_LENGTH = SECRET_BYTES * 2  # hex encoded

# Regex for detecting secrets in logs (for scrubbing)
SECRET_PATTERN = re.compile(r"[0-9a-fA-F]{%d}" % SECRET_LENGTH)


def generate_secret() -> str:
    """Generate a new secret: 256 random bytes, hex encoded."""
    return secrets.token_hex(SECRET_BYTES)


def mask_secret(secret: str) -> str:
    """Mask a secret for logging (first and last five characters)."""
    if len(secret) < 16:
        return "****"
    return f"{secret[:5]}...{secret[-5:]}"


def scrub_secrets(text: str) -> str:
    """Replace any full-length secret in text with a mask."""
    return SECRET_PATTERN.sub("****SECRET****", text)


class SecretProvisioner:
    """Reads or creates the persisted session secret."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def read(self) -> str | None:
        """Return the persisted secret if it is well formed.

        Only the length is checked. Unreadable files count as absent.
        """
        try:
            data = self.path.read_text()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"No readable secret at {self.path}: {e}")
            return None
        if len(data) != SECRET_LENGTH:
            logger.warning(
                f"Secret at {self.path} has length {len(data)}, "
                f"expected {SECRET_LENGTH}"
            )
            return None
        return data

    def provision(self) -> str:
        """Return the secret to use for this boot.

        Raises:
            PersistenceError: If a new secret cannot be written
        """
        existing = self.read()
        if existing is not None:
            logger.info("Secret key already exists, using that.")
            return existing

        logger.info("Generating a new secret key.")
        secret = generate_secret()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as handle:
                handle.write(secret)
            # A file left over from an earlier secret keeps its old mode
            self.path.chmod(0o600)
        except OSError as e:
            raise PersistenceError(f"Could not write secret to {self.path}: {e}") from e
        return secret

    def delete(self) -> bool:
        """Delete the persisted secret. Returns True if a file was removed."""
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Secret file deleted: {self.path}")
            return True
        return False
