from app.services.billing.signature import compute_signature, parse_signature_header, verify

SECRET = "whsec_unit"  # noqa: S105 - test fixture value
BODY = b'{"id":"evt_1","type":"customer.subscription.updated"}'
NOW = 1_700_000_000


def _header(*signatures: str, timestamp: int = NOW) -> str:
    parts = [f"t={timestamp}"] + [f"v1={sig}" for sig in signatures]
    return ",".join(parts)


def test_parse_signature_header_collects_every_v1():
    timestamp, signatures = parse_signature_header("t=123, v1=aaa, v0=zzz, v1=bbb")
    assert timestamp == "123"
    assert signatures == ["aaa", "bbb"]


def test_verify_accepts_matching_signature():
    signature = compute_signature(BODY, str(NOW), SECRET)
    assert verify(BODY, _header(signature), SECRET, now=NOW)


def test_verify_accepts_any_matching_v1_during_secret_rotation():
    good = compute_signature(BODY, str(NOW), SECRET)
    stale = compute_signature(BODY, str(NOW), "whsec_old")
    assert verify(BODY, _header(stale, good), SECRET, now=NOW)


def test_verify_rejects_modified_body():
    signature = compute_signature(BODY, str(NOW), SECRET)
    assert not verify(BODY + b" ", _header(signature), SECRET, now=NOW)


def test_verify_rejects_wrong_secret():
    signature = compute_signature(BODY, str(NOW), "whsec_other")
    assert not verify(BODY, _header(signature), SECRET, now=NOW)


def test_verify_fails_closed_on_missing_parts():
    signature = compute_signature(BODY, str(NOW), SECRET)
    assert not verify(BODY, None, SECRET)
    assert not verify(BODY, "", SECRET)
    assert not verify(BODY, f"v1={signature}", SECRET)
    assert not verify(BODY, f"t={NOW}", SECRET)
    assert not verify(BODY, _header(signature), "")


def test_verify_rejects_non_ascii_candidate_without_raising():
    assert not verify(BODY, _header("é" * 64), SECRET, now=NOW)


def test_verify_enforces_tolerance_window():
    old = NOW - 600
    signature = compute_signature(BODY, str(old), SECRET)
    header = _header(signature, timestamp=old)
    assert not verify(BODY, header, SECRET, tolerance=300, now=NOW)
    assert verify(BODY, header, SECRET, tolerance=None, now=NOW)
    assert verify(BODY, header, SECRET, tolerance=900, now=NOW)


def test_verify_rejects_non_numeric_timestamp_when_tolerance_applies():
    signature = compute_signature(BODY, "abc", SECRET)
    assert not verify(BODY, f"t=abc,v1={signature}", SECRET, tolerance=300, now=NOW)
