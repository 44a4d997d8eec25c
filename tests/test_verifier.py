"""Tests for webhook signature verification."""

from __future__ import annotations

import hmac
from unittest.mock import patch

import pytest
from prometheus_client import REGISTRY

from hookguard.errors import (
    MalformedSignatureError,
    SignatureError,
    SignatureMismatchError,
    StaleSignatureError,
)
from hookguard.webhooks.verifier import (
    SignatureAlgorithm,
    SignatureHeader,
    SignatureVerifier,
    VerificationStatus,
    compute_digest,
    generate_signature,
    parse_signature_header,
    verify_signature,
)

SECRET = "whsec_test_secret_value"
PAYLOAD = b'{"id":"evt_123","type":"payment_intent.succeeded"}'
NOW = 1_700_000_000


def _flip_digest_byte(header: str, index: int) -> str:
    """Return ``header`` with byte ``index`` of its digest inverted."""
    ts_part, algo_part = header.split(",")
    algo, digest = algo_part.split("=")
    raw = bytearray(bytes.fromhex(digest))
    raw[index] ^= 0xFF
    return f"{ts_part},{algo}={raw.hex()}"


def _failure_count(reason: str) -> float:
    value = REGISTRY.get_sample_value(
        "hookguard_signature_failures_total", {"reason": reason}
    )
    return value or 0.0


class TestParseSignatureHeader:
    """Tests for parse_signature_header."""

    def test_valid_header(self):
        """Test parsing a well-formed header."""
        parsed = parse_signature_header("t=1700000000,sha256=ABCDEF01")
        assert parsed == SignatureHeader(
            timestamp=1700000000,
            algorithm=SignatureAlgorithm.SHA256,
            digest="abcdef01",
        )

    def test_whitespace_and_unknown_keys_ignored(self):
        """Test that extra schemes in the header are skipped."""
        parsed = parse_signature_header(" t=5 , v1=zzz , sha256=00ff ")
        assert parsed is not None
        assert parsed.timestamp == 5
        assert parsed.digest == "00ff"

    @pytest.mark.parametrize(
        "header",
        [
            None,
            "",
            "sha256=00ff",
            "t=1700000000",
            "t=1700000000,sha512=00ff",
            "t=abc,sha256=00ff",
            "t=-5,sha256=00ff",
            "t=1700000000,sha256=not-hex",
            "t=1700000000,sha256=abc",
            "t=1700000000,sha256=",
            "t=1,t=2,sha256=00ff",
            "t=1,sha256=00ff,sha256=00ff",
            "garbage",
            "t=" + "9" * 5000 + ",sha256=00ff",
            "t=1234567890123,sha256=00ff",
            "t=1700000000,sha256=ab cd",
            "t=1700000000,sha256=0x00ff",
        ],
    )
    def test_malformed_headers(self, header):
        """Test structurally invalid headers are rejected."""
        assert parse_signature_header(header) is None

    def test_algorithm_selects_digest(self):
        """Test the configured algorithm picks its own digest entry."""
        parsed = parse_signature_header("t=1,sha256=00,sha512=ff", "sha512")
        assert parsed is not None
        assert parsed.algorithm is SignatureAlgorithm.SHA512
        assert parsed.digest == "ff"


class TestGenerateSignature:
    """Tests for generate_signature and compute_digest."""

    def test_header_format(self):
        """Test the generated header wire format."""
        header = generate_signature(PAYLOAD, SECRET, "sha256", NOW)
        expected = compute_digest(PAYLOAD, SECRET, "sha256", NOW)
        assert header == f"t={NOW},sha256={expected}"

    def test_digest_covers_timestamp_payload_and_secret(self):
        """Test the digest is sha256 of '<ts>.<payload>' + secret."""
        import hashlib

        expected = hashlib.sha256(f"{NOW}.".encode() + PAYLOAD + SECRET.encode()).hexdigest()
        assert compute_digest(PAYLOAD, SECRET, SignatureAlgorithm.SHA256, NOW) == expected

    def test_sha512_digest_length(self):
        """Test sha512 produces a 128 hex character digest."""
        header = generate_signature(PAYLOAD, SECRET, "sha512", NOW)
        assert header.startswith(f"t={NOW},sha512=")
        assert len(header.split("sha512=")[1]) == 128

    def test_str_and_bytes_payload_equivalent(self):
        """Test str payloads are signed as their UTF-8 bytes."""
        text = PAYLOAD.decode()
        assert generate_signature(text, SECRET, timestamp=NOW) == generate_signature(
            PAYLOAD, SECRET, timestamp=NOW
        )

    def test_defaults_to_current_time(self):
        """Test timestamp defaults to time.time()."""
        with patch("hookguard.webhooks.verifier.time.time", return_value=NOW + 0.9):
            header = generate_signature(PAYLOAD, SECRET)
        assert header.startswith(f"t={NOW},")


class TestVerifySignature:
    """Tests for verify_signature."""

    @pytest.mark.parametrize("algorithm", ["sha256", "sha512"])
    def test_round_trip(self, algorithm):
        """Test a freshly generated header verifies."""
        header = generate_signature(PAYLOAD, SECRET, algorithm, NOW)
        result = verify_signature(PAYLOAD, header, SECRET, algorithm=algorithm, now=NOW)

        assert result.valid is True
        assert bool(result) is True
        assert result.status == VerificationStatus.VALID
        assert result.timestamp == NOW
        assert result.error is None

    def test_uppercase_digest_accepted(self):
        """Test hex case does not matter."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        ts_part, digest_part = header.split(",")
        upper = f"{ts_part},sha256={digest_part.split('=')[1].upper()}"
        assert verify_signature(PAYLOAD, upper, SECRET, now=NOW).valid is True

    def test_every_single_byte_flip_is_mismatch(self):
        """Test flipping any digest byte invalidates the signature."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        for index in range(32):
            result = verify_signature(PAYLOAD, _flip_digest_byte(header, index), SECRET, now=NOW)
            assert result.valid is False
            assert result.status == VerificationStatus.SIGNATURE_MISMATCH

    def test_uses_constant_time_compare(self):
        """Test digests are compared with hmac.compare_digest on raw bytes."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        with patch(
            "hookguard.webhooks.verifier.hmac.compare_digest",
            wraps=hmac.compare_digest,
        ) as compare:
            verify_signature(PAYLOAD, header, SECRET, now=NOW)

        compare.assert_called_once()
        left, right = compare.call_args.args
        assert isinstance(left, bytes) and isinstance(right, bytes)

    def test_first_and_last_byte_mismatch_take_same_path(self):
        """Test early and late digest differences both reach the full-length compare."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        for index in (0, 31):
            with patch(
                "hookguard.webhooks.verifier.hmac.compare_digest",
                wraps=hmac.compare_digest,
            ) as compare:
                result = verify_signature(
                    PAYLOAD, _flip_digest_byte(header, index), SECRET, now=NOW
                )

            assert result.status == VerificationStatus.SIGNATURE_MISMATCH
            compare.assert_called_once()
            left, right = compare.call_args.args
            assert len(left) == len(right) == 32

    def test_truncated_digest_is_mismatch(self):
        """Test a digest of the wrong length is a mismatch, not a crash."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        truncated = header[:-2]
        result = verify_signature(PAYLOAD, truncated, SECRET, now=NOW)
        assert result.status == VerificationStatus.SIGNATURE_MISMATCH

    def test_tampered_payload(self):
        """Test a modified body fails verification."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW)
        result = verify_signature(PAYLOAD + b" ", header, SECRET, now=NOW)
        assert result.status == VerificationStatus.SIGNATURE_MISMATCH
        assert result.timestamp == NOW

    def test_wrong_secret(self):
        """Test a different secret fails verification."""
        header = generate_signature(PAYLOAD, "other-secret", timestamp=NOW)
        result = verify_signature(PAYLOAD, header, SECRET, now=NOW)
        assert result.status == VerificationStatus.SIGNATURE_MISMATCH

    def test_tolerance_boundary(self):
        """Test the replay window edges."""
        tolerance = 300
        just_outside = generate_signature(PAYLOAD, SECRET, timestamp=NOW - tolerance - 1)
        just_inside = generate_signature(PAYLOAD, SECRET, timestamp=NOW - tolerance + 1)
        at_edge = generate_signature(PAYLOAD, SECRET, timestamp=NOW - tolerance)

        stale = verify_signature(PAYLOAD, just_outside, SECRET, tolerance=tolerance, now=NOW)
        assert stale.status == VerificationStatus.STALE_SIGNATURE
        assert stale.timestamp == NOW - tolerance - 1

        assert verify_signature(PAYLOAD, just_inside, SECRET, tolerance=tolerance, now=NOW).valid
        assert verify_signature(PAYLOAD, at_edge, SECRET, tolerance=tolerance, now=NOW).valid

    def test_future_timestamp_outside_tolerance(self):
        """Test clock skew in the other direction is bounded too."""
        header = generate_signature(PAYLOAD, SECRET, timestamp=NOW + 301)
        result = verify_signature(PAYLOAD, header, SECRET, now=NOW)
        assert result.status == VerificationStatus.STALE_SIGNATURE

    def test_stale_checked_before_digest(self):
        """Test staleness is reported even when the digest is also wrong."""
        result = verify_signature(PAYLOAD, f"t={NOW - 1000},sha256=00ff", SECRET, now=NOW)
        assert result.status == VerificationStatus.STALE_SIGNATURE

    def test_algorithm_mismatch_is_malformed(self):
        """Test a sha512 header does not satisfy a sha256 verifier."""
        header = generate_signature(PAYLOAD, SECRET, "sha512", NOW)
        result = verify_signature(PAYLOAD, header, SECRET, algorithm="sha256", now=NOW)
        assert result.status == VerificationStatus.MALFORMED_SIGNATURE
        assert result.error == "Invalid signature format"

    def test_missing_header(self):
        """Test a missing header is malformed."""
        result = verify_signature(PAYLOAD, None, SECRET, now=NOW)
        assert result.valid is False
        assert result.status == VerificationStatus.MALFORMED_SIGNATURE


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSignatureVerifier:
    """Tests for SignatureVerifier."""

    def test_empty_secret_rejected(self):
        """Test verifier refuses to run without a secret."""
        with pytest.raises(ValueError):
            SignatureVerifier(secret="")

    def test_negative_tolerance_rejected(self):
        """Test tolerance must not be negative."""
        with pytest.raises(ValueError):
            SignatureVerifier(secret=SECRET, tolerance=-1)

    def test_repr_hides_secret(self):
        """Test the secret does not leak through repr."""
        assert SECRET not in repr(SignatureVerifier(secret=SECRET))

    def test_generate_and_verify_with_clock(self):
        """Test generate/verify use the injected clock."""
        clock = FakeClock(NOW)
        verifier = SignatureVerifier(secret=SECRET, clock=clock)

        header = verifier.generate(PAYLOAD)
        assert header.startswith(f"t={NOW},sha256=")
        assert verifier.verify(PAYLOAD, header).valid

        clock.now = NOW + 301
        assert verifier.verify(PAYLOAD, header).status == VerificationStatus.STALE_SIGNATURE

    def test_verify_or_raise_returns_timestamp(self):
        """Test successful verification returns the signed timestamp."""
        verifier = SignatureVerifier(secret=SECRET, clock=FakeClock(NOW))
        assert verifier.verify_or_raise(PAYLOAD, verifier.generate(PAYLOAD, NOW - 10)) == NOW - 10

    @pytest.mark.parametrize(
        ("header", "error_cls", "status"),
        [
            ("t=1", MalformedSignatureError, VerificationStatus.MALFORMED_SIGNATURE),
            (f"t={NOW - 600},sha256=00", StaleSignatureError, VerificationStatus.STALE_SIGNATURE),
            (f"t={NOW},sha256=00", SignatureMismatchError, VerificationStatus.SIGNATURE_MISMATCH),
        ],
    )
    def test_verify_or_raise_errors(self, header, error_cls, status):
        """Test each failure maps to its own exception type."""
        verifier = SignatureVerifier(secret=SECRET, clock=FakeClock(NOW))

        with pytest.raises(error_cls) as exc_info:
            verifier.verify_or_raise(PAYLOAD, header)

        assert isinstance(exc_info.value, SignatureError)
        assert exc_info.value.kind == status

    def test_malformed_maps_to_400_others_to_401(self):
        """Test HTTP status hints on signature errors."""
        assert MalformedSignatureError.status_code == 400
        assert StaleSignatureError.status_code == 401
        assert SignatureMismatchError.status_code == 401

    def test_failures_are_counted(self):
        """Test rejections increment the Prometheus counter by reason."""
        verifier = SignatureVerifier(secret=SECRET, clock=FakeClock(NOW))
        before = _failure_count("signature_mismatch")

        verifier.verify(PAYLOAD, f"t={NOW},sha256=00")

        assert _failure_count("signature_mismatch") == before + 1

    def test_oversized_timestamp_is_malformed(self):
        """Test a timestamp too long to convert is reported, not raised."""
        verifier = SignatureVerifier(secret=SECRET, clock=FakeClock(NOW))

        result = verifier.verify(b"{}", "t=" + "9" * 5000 + ",sha256=00ff")

        assert result.valid is False
        assert result.status == VerificationStatus.MALFORMED_SIGNATURE
        with pytest.raises(MalformedSignatureError):
            verifier.verify_or_raise(b"{}", "t=" + "9" * 5000 + ",sha256=00ff")
