"""Credential file storage.

Credentials live in a line-oriented ``KEY=value`` file (a ``.env`` file)
shared with other tools. Keys starting with ``GRANOLA_`` belong to this
tool and are always rewritten together. Every other line, comments
included, is carried over byte for byte on each save.
"""

import io
import logging
import os
import stat
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import dotenv_values
from dotenv.parser import parse_stream

from .errors import CredentialStoreError
from .tokens import TokenSet

logger = logging.getLogger(__name__)

OWNED_PREFIX = "GRANOLA_"

ACCESS_TOKEN_KEY = "GRANOLA_ACCESS_TOKEN"
REFRESH_TOKEN_KEY = "GRANOLA_REFRESH_TOKEN"
EXPIRES_AT_KEY = "GRANOLA_TOKEN_EXPIRES_AT"
CLIENT_ID_KEY = "GRANOLA_CLIENT_ID"
TOKEN_ENDPOINT_KEY = "GRANOLA_TOKEN_ENDPOINT"


def is_owned_key(key: str) -> bool:
    """Check if a credential-file key belongs to this tool."""
    return key.startswith(OWNED_PREFIX)


@dataclass
class CredentialRecord:
    """Contents of the credential file.

    Attributes:
        access_token: Current access token ("" when none stored)
        refresh_token: Refresh token ("" when the server issued none)
        expires_at: Access token expiry as epoch seconds (0 when unknown)
        client_id: Registered client id
        token_endpoint: Token endpoint used for refresh
        extra: Every key not owned by this tool, in file order
    """

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    client_id: str = ""
    token_endpoint: str = ""
    extra: dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.access_token or self.refresh_token or self.client_id)

    def seconds_remaining(self, now: float | None = None) -> int:
        """Seconds until the access token expires (negative once expired)."""
        current = int(now if now is not None else time.time())
        return self.expires_at - current

    def can_refresh(self) -> bool:
        """Check if the record holds everything a refresh grant needs."""
        return bool(self.refresh_token and self.token_endpoint and self.client_id)

    def owned_values(self) -> dict[str, str]:
        """Serialize the owned fields to credential-file keys."""
        return {
            ACCESS_TOKEN_KEY: self.access_token,
            REFRESH_TOKEN_KEY: self.refresh_token,
            EXPIRES_AT_KEY: str(self.expires_at),
            CLIENT_ID_KEY: self.client_id,
            TOKEN_ENDPOINT_KEY: self.token_endpoint,
        }

    @classmethod
    def from_values(cls, values: dict[str, str]) -> "CredentialRecord":
        """Build a record from parsed credential-file keys."""
        raw_expires_at = values.get(EXPIRES_AT_KEY, "") or "0"
        try:
            expires_at = int(raw_expires_at)
        except ValueError:
            logger.warning(f"Ignoring invalid {EXPIRES_AT_KEY} value {raw_expires_at!r}")
            expires_at = 0

        return cls(
            access_token=values.get(ACCESS_TOKEN_KEY, ""),
            refresh_token=values.get(REFRESH_TOKEN_KEY, ""),
            expires_at=expires_at,
            client_id=values.get(CLIENT_ID_KEY, ""),
            token_endpoint=values.get(TOKEN_ENDPOINT_KEY, ""),
            extra={k: v for k, v in values.items() if not is_owned_key(k)},
        )


def parse_credentials(text: str) -> dict[str, str]:
    """Parse credential-file text into a key/value mapping.

    Blank lines, comments and lines without ``=`` are skipped. ``${VAR}``
    references are kept literally.
    """
    values = dotenv_values(stream=io.StringIO(text), interpolate=False)
    return {key: value for key, value in values.items() if value is not None}


def _format_value(value: str) -> str:
    """Quote a value when writing it bare would change how it parses back."""
    if not any(c.isspace() or c in "#'\"\\" for c in value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


def merge_credentials(existing: str, owned: dict[str, str]) -> str:
    """Rewrite credential-file text with freshly written owned keys.

    Every binding with an owned key is dropped. All other lines (comments,
    ``export`` prefixes, original quoting and unparseable lines) are kept
    byte for byte and in order, and ``owned`` is appended.
    """
    preserved = "".join(
        binding.original.string
        for binding in parse_stream(io.StringIO(existing))
        if binding.key is None or not is_owned_key(binding.key)
    )
    if preserved and not preserved.endswith(("\n", "\r")):
        preserved += "\n"
    return preserved + format_credentials(owned)


def format_credentials(values: dict[str, str]) -> str:
    """Render a mapping as ``KEY=value`` lines."""
    return "".join(f"{key}={_format_value(value)}\n" for key, value in values.items())


class CredentialStore:
    """Reads and writes the credential file.

    The store assumes a single writer; concurrent runs against the same
    file are not coordinated.
    """

    def __init__(self, path: Path):
        self.path = path

    def _read_text(self) -> str:
        if not self.path.exists():
            return ""
        try:
            return self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise CredentialStoreError(f"Could not read {self.path}: {e}") from e

    def load(self) -> CredentialRecord:
        """Load stored credentials; an absent file yields an empty record."""
        return CredentialRecord.from_values(parse_credentials(self._read_text()))

    def save(
        self,
        token_set: TokenSet,
        client_id: str,
        token_endpoint: str,
        now: float | None = None,
        previous_refresh_token: str = "",
    ) -> CredentialRecord:
        """Persist a token set, preserving unrelated keys.

        Args:
            token_set: Tokens from a successful exchange or refresh
            client_id: Registered client id
            token_endpoint: Token endpoint to use for later refreshes
            now: Current epoch seconds (defaults to time.time())
            previous_refresh_token: Kept when the server issued no new refresh token

        Returns:
            The record as written
        """
        current = int(now if now is not None else time.time())
        existing = self._read_text()

        record = CredentialRecord(
            access_token=token_set.access_token,
            refresh_token=token_set.refresh_token or previous_refresh_token,
            expires_at=current + token_set.expires_in,
            client_id=client_id,
            token_endpoint=token_endpoint,
            extra={k: v for k, v in parse_credentials(existing).items() if not is_owned_key(k)},
        )

        self._write(merge_credentials(existing, record.owned_values()))

        logger.debug(f"Stored credentials in {self.path}")
        return record

    def _write(self, content: str) -> None:
        """Replace the whole file via a temporary file in the same directory."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                try:
                    tmp_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0600
                except OSError as e:
                    logger.warning(f"Could not set file permissions: {e}")
                os.replace(tmp_path, self.path)
            except BaseException:
                tmp_path.unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CredentialStoreError(f"Could not write {self.path}: {e}") from e
