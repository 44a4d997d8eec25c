"""Webhook Signature Verification.

Authenticates inbound webhook payloads signed with a shared secret and
rejects stale signatures to bound the replay window.

Wire format of the signature header:

    t=<unix-seconds>,<algorithm>=<hex-digest>

where ``digest = hash(algorithm, "<t>.<payload>" + secret)``.

Security Features:
- Constant-time digest comparison
- Timestamp validation (replay attack prevention)
- SHA-256 and SHA-512 digests
- Fail-closed on missing secret

Usage:
    from hookguard.webhooks import SignatureVerifier

    verifier = SignatureVerifier(secret="whsec_...")

    result = verifier.verify(request_body, request.headers["X-Signature"])
    if not result:
        return 401
"""

from __future__ import annotations

import hashlib
import hmac
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

import structlog

from hookguard.errors import (
    MalformedSignatureError,
    SignatureError,
    SignatureMismatchError,
    StaleSignatureError,
)
from hookguard.observability.metrics import SIGNATURE_FAILURES

logger = structlog.get_logger()

DEFAULT_TOLERANCE_SECONDS = 300

# unix seconds stay below 12 digits for the next few thousand years
MAX_TIMESTAMP_DIGITS = 12

_HEX_DIGEST = re.compile(r"(?:[0-9a-fA-F]{2})+")


class SignatureAlgorithm(str, Enum):
    """Supported digest algorithms."""

    SHA256 = "sha256"
    SHA512 = "sha512"


class VerificationStatus(Enum):
    """Status of webhook signature verification."""

    VALID = "valid"
    MALFORMED_SIGNATURE = "malformed_signature"
    STALE_SIGNATURE = "stale_signature"
    SIGNATURE_MISMATCH = "signature_mismatch"


@dataclass(frozen=True)
class SignatureHeader:
    """Parsed ``t=...,<algo>=...`` signature header."""

    timestamp: int
    algorithm: SignatureAlgorithm
    digest: str


@dataclass
class VerificationResult:
    """Result of webhook signature verification."""

    valid: bool
    """Whether the signature is valid."""

    status: VerificationStatus
    """Detailed verification status."""

    timestamp: int | None = None
    """Signature timestamp if it could be parsed."""

    error: str | None = None
    """Error message if verification failed."""

    def __bool__(self) -> bool:
        """Allow using result in boolean context."""
        return self.valid


def _to_bytes(payload: bytes | str) -> bytes:
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return payload


def parse_signature_header(
    header_value: str | None,
    algorithm: SignatureAlgorithm | str = SignatureAlgorithm.SHA256,
) -> SignatureHeader | None:
    """Parse a signature header.

    Exactly one ``t`` entry and one entry keyed by ``algorithm`` must be
    present. Entries for other keys are ignored so that providers can send
    several schemes side by side.

    Args:
        header_value: The raw header value.
        algorithm: The algorithm whose digest should be extracted.

    Returns:
        The parsed header, or None if it is structurally invalid.
    """
    if not header_value:
        return None

    algorithm = SignatureAlgorithm(algorithm)
    timestamps: list[str] = []
    digests: list[str] = []

    for item in header_value.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "t":
            timestamps.append(value)
        elif key == algorithm.value:
            digests.append(value)

    if len(timestamps) != 1 or len(digests) != 1:
        return None

    raw_timestamp, digest = timestamps[0], digests[0]
    if not (raw_timestamp.isascii() and raw_timestamp.isdigit()):
        return None
    if len(raw_timestamp) > MAX_TIMESTAMP_DIGITS:
        return None
    if not _HEX_DIGEST.fullmatch(digest):
        return None

    return SignatureHeader(
        timestamp=int(raw_timestamp),
        algorithm=algorithm,
        digest=digest.lower(),
    )


def compute_digest(
    payload: bytes | str,
    secret: str,
    algorithm: SignatureAlgorithm | str,
    timestamp: int,
) -> str:
    """Compute the hex digest of ``"<timestamp>.<payload>" + secret``."""
    algorithm = SignatureAlgorithm(algorithm)
    signed_payload = f"{timestamp}.".encode() + _to_bytes(payload) + secret.encode("utf-8")
    return hashlib.new(algorithm.value, signed_payload).hexdigest()


def generate_signature(
    payload: bytes | str,
    secret: str,
    algorithm: SignatureAlgorithm | str = SignatureAlgorithm.SHA256,
    timestamp: int | None = None,
) -> str:
    """Generate a signature header for a payload.

    Args:
        payload: The raw payload to sign.
        secret: The shared secret.
        algorithm: Digest algorithm.
        timestamp: Unix timestamp; defaults to the current time.

    Returns:
        Header value of the form ``t=<ts>,<algo>=<digest>``.
    """
    algorithm = SignatureAlgorithm(algorithm)
    ts = int(time.time()) if timestamp is None else timestamp
    digest = compute_digest(payload, secret, algorithm, ts)
    return f"t={ts},{algorithm.value}={digest}"


def verify_signature(
    payload: bytes | str,
    header_value: str | None,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    algorithm: SignatureAlgorithm | str = SignatureAlgorithm.SHA256,
    now: float | None = None,
) -> VerificationResult:
    """Verify a webhook signature header against a payload.

    Args:
        payload: The raw request body.
        header_value: The signature header value.
        secret: The shared secret.
        tolerance: Maximum allowed distance between the signature timestamp
            and the current time, in seconds.
        algorithm: Digest algorithm the header must carry.
        now: Current unix time; defaults to ``time.time()``.

    Returns:
        VerificationResult with status and details.
    """
    parsed = parse_signature_header(header_value, algorithm)
    if parsed is None:
        return VerificationResult(
            valid=False,
            status=VerificationStatus.MALFORMED_SIGNATURE,
            error="Invalid signature format",
        )

    current_time = int(time.time() if now is None else now)
    if abs(current_time - parsed.timestamp) > tolerance:
        return VerificationResult(
            valid=False,
            status=VerificationStatus.STALE_SIGNATURE,
            timestamp=parsed.timestamp,
            error=f"Timestamp {parsed.timestamp} is outside tolerance window",
        )

    expected = compute_digest(payload, secret, parsed.algorithm, parsed.timestamp)

    # Both sides are decoded to raw bytes; compare_digest does not
    # short-circuit on content, and a length difference only reveals length.
    if hmac.compare_digest(bytes.fromhex(parsed.digest), bytes.fromhex(expected)):
        return VerificationResult(
            valid=True,
            status=VerificationStatus.VALID,
            timestamp=parsed.timestamp,
        )

    return VerificationResult(
        valid=False,
        status=VerificationStatus.SIGNATURE_MISMATCH,
        timestamp=parsed.timestamp,
        error="Signature mismatch",
    )


_ERRORS_BY_STATUS: dict[VerificationStatus, type[SignatureError]] = {
    VerificationStatus.MALFORMED_SIGNATURE: MalformedSignatureError,
    VerificationStatus.STALE_SIGNATURE: StaleSignatureError,
    VerificationStatus.SIGNATURE_MISMATCH: SignatureMismatchError,
}


class SignatureVerifier:
    """Verifier bound to one shared secret and algorithm."""

    def __init__(
        self,
        secret: str,
        tolerance: int = DEFAULT_TOLERANCE_SECONDS,
        algorithm: SignatureAlgorithm | str = SignatureAlgorithm.SHA256,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the verifier.

        Args:
            secret: The shared secret provisioned out-of-band.
            tolerance: Timestamp tolerance in seconds (default 5 min).
            algorithm: Digest algorithm (default: sha256).
            clock: Source of the current unix time.
        """
        if not secret:
            raise ValueError("Webhook secret must not be empty")
        if tolerance < 0:
            raise ValueError("tolerance must be >= 0")
        self._secret = secret
        self.tolerance = tolerance
        self.algorithm = SignatureAlgorithm(algorithm)
        self._clock = clock

    def __repr__(self) -> str:
        return f"SignatureVerifier(algorithm={self.algorithm.value!r}, tolerance={self.tolerance})"

    def generate(self, payload: bytes | str, timestamp: int | None = None) -> str:
        """Generate a signature header for ``payload``."""
        ts = int(self._clock()) if timestamp is None else timestamp
        return generate_signature(payload, self._secret, self.algorithm, ts)

    def verify(self, payload: bytes | str, header_value: str | None) -> VerificationResult:
        """Verify ``header_value`` against ``payload``. Never raises for bad input."""
        result = verify_signature(
            payload,
            header_value,
            self._secret,
            tolerance=self.tolerance,
            algorithm=self.algorithm,
            now=self._clock(),
        )
        if not result.valid:
            SIGNATURE_FAILURES.labels(reason=result.status.value).inc()
            logger.warning(
                "Webhook signature rejected",
                reason=result.status.value,
                timestamp=result.timestamp,
            )
        return result

    def verify_or_raise(self, payload: bytes | str, header_value: str | None) -> int:
        """Verify and return the signature timestamp.

        Raises:
            MalformedSignatureError: Header is missing required fields.
            StaleSignatureError: Timestamp outside the tolerance window.
            SignatureMismatchError: Digest does not match.
        """
        result = self.verify(payload, header_value)
        if result.valid:
            return result.timestamp  # type: ignore[return-value]
        error_cls = _ERRORS_BY_STATUS[result.status]
        raise error_cls(result.error or result.status.value, result.status, result.timestamp)
