import pytest

from keypool.models import (
    Credential,
    CredentialHandle,
    FailureKind,
    Lease,
    QuotaLimits,
)


def test_credential_defaults():
    credential = Credential(id="key_1", key="test-key-123")

    assert credential.id == "key_1"
    assert credential.key == "test-key-123"
    assert credential.last_used is None
    assert credential.last_error is None
    assert credential.consecutive_failures == 0


def test_credential_key_prefix():
    key1 = Credential(id="key_1", key="AIzaSyABC")
    assert key1.key_prefix() == "AIzaSyABC"

    key2 = Credential(id="key_2", key="AIzaSyABCDEF123456789")
    assert key2.key_prefix() == "AIzaSyAB...789"


def test_credential_fingerprint_is_stable_and_opaque():
    a = Credential(id="key_1", key="AIzaSyABCDEF123456789")
    b = Credential(id="key_9", key="AIzaSyABCDEF123456789")
    c = Credential(id="key_1", key="AIzaSyOTHER")

    assert a.fingerprint == b.fingerprint
    assert a.fingerprint != c.fingerprint
    assert len(a.fingerprint) == 16
    assert "AIza" not in a.fingerprint


def test_quota_limits_must_be_positive():
    assert QuotaLimits(rpm=1, rpd=1).rpm == 1

    with pytest.raises(ValueError):
        QuotaLimits(rpm=0, rpd=10)
    with pytest.raises(ValueError):
        QuotaLimits(rpm=5, rpd=-1)


def test_failure_kind_values():
    assert FailureKind("quota_exceeded") is FailureKind.QUOTA_EXCEEDED
    assert FailureKind("other") is FailureKind.OTHER


def test_handle_repr_hides_api_key():
    handle = CredentialHandle(
        key_id="key_1", api_key="secret-value", tier="fast", lease_id="abc"
    )

    assert "secret-value" not in repr(handle)
    assert "key_1" in repr(handle)


def test_lease_expired():
    lease = Lease(lease_id="abc", key_id="key_1", tier="fast", created_at=100.0)

    assert not lease.expired(129.0, 30)
    assert lease.expired(130.0, 30)
