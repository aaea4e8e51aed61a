"""PKCE (Proof Key for Code Exchange) implementation per RFC 7636.

The verifier and state are drawn from the `secrets` module and encoded with
the URL-safe base64 alphabet, so they can be placed in query strings and form
bodies without further escaping.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass


# Random bytes drawn before encoding
DEFAULT_VERIFIER_BYTES = 32
MIN_VERIFIER_BYTES = 32
DEFAULT_STATE_BYTES = 16
MIN_STATE_BYTES = 16

# RFC 7636 Section 4.1 upper bound on the encoded verifier
MAX_VERIFIER_LENGTH = 128


@dataclass
class PKCEPair:
    """PKCE code verifier and challenge pair.

    The verifier is sent in the token request; the challenge, a SHA-256
    digest of the verifier, is sent in the authorization request.
    """

    verifier: str
    challenge: str
    method: str = "S256"


def _base64url(data: bytes) -> str:
    """Base64URL-encode bytes without padding."""
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> str:
    """Generate a cryptographically random code verifier.

    Args:
        num_bytes: Number of random bytes to encode (at least 32)

    Returns:
        Base64URL-encoded verifier, 43 characters for the default size

    Raises:
        ValueError: If num_bytes is too small or the encoded verifier would
            exceed 128 characters
    """
    if num_bytes < MIN_VERIFIER_BYTES:
        raise ValueError(
            f"Code verifier needs at least {MIN_VERIFIER_BYTES} random bytes, got {num_bytes}"
        )

    verifier = _base64url(secrets.token_bytes(num_bytes))
    if len(verifier) > MAX_VERIFIER_LENGTH:
        raise ValueError(
            f"Code verifier must be at most {MAX_VERIFIER_LENGTH} characters, "
            f"{num_bytes} bytes encode to {len(verifier)}"
        )
    return verifier


def generate_code_challenge(verifier: str) -> str:
    """Generate the S256 code challenge for a verifier.

    code_challenge = BASE64URL(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return _base64url(digest)


def generate_pkce_pair(num_bytes: int = DEFAULT_VERIFIER_BYTES) -> PKCEPair:
    """Generate a fresh verifier and its S256 challenge."""
    verifier = generate_code_verifier(num_bytes)
    return PKCEPair(verifier=verifier, challenge=generate_code_challenge(verifier))


def generate_state(num_bytes: int = DEFAULT_STATE_BYTES) -> str:
    """Generate a random state parameter for CSRF protection.

    Args:
        num_bytes: Number of random bytes to encode (at least 16)

    Returns:
        Base64URL-encoded random token
    """
    if num_bytes < MIN_STATE_BYTES:
        raise ValueError(
            f"State needs at least {MIN_STATE_BYTES} random bytes, got {num_bytes}"
        )
    return _base64url(secrets.token_bytes(num_bytes))
