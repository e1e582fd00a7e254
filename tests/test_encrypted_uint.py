import pytest

from client_helper import ZERO_HANDLE


def decrypt(coprocessor, keypair, handle):
    return keypair.decrypt(int(coprocessor.get_ciphertext(handle=handle), 16))


def test_seed_publishes_network_key(coprocessor, keypair):
    assert int(coprocessor.get_public_key(), 16) == keypair.n


def test_encrypt_clear_round_trips(coprocessor, keypair):
    handle = coprocessor.encrypt_clear(value=42)

    assert handle.startswith("0x") and len(handle) == 66
    assert decrypt(coprocessor, keypair, handle) == 42
    assert coprocessor.is_allowed(handle=handle, account="operator")


def test_handles_are_unique_and_randomized(coprocessor):
    first = coprocessor.encrypt_clear(value=7)
    second = coprocessor.encrypt_clear(value=7)

    assert first != second
    assert coprocessor.get_ciphertext(handle=first) != coprocessor.get_ciphertext(handle=second)


def test_add_and_sub(coprocessor, keypair):
    a = coprocessor.encrypt_clear(value=1_000)
    b = coprocessor.encrypt_clear(value=250)

    assert decrypt(coprocessor, keypair, coprocessor.add(a=a, b=b)) == 1_250
    assert decrypt(coprocessor, keypair, coprocessor.sub(a=a, b=b)) == 750


def test_sub_wraps_modulo_n(coprocessor, keypair):
    a = coprocessor.encrypt_clear(value=3)
    b = coprocessor.encrypt_clear(value=5)
    assert decrypt(coprocessor, keypair, coprocessor.sub(a=a, b=b)) == keypair.n - 2


def test_zero_handle_acts_as_zero(coprocessor, keypair):
    assert coprocessor.get_ciphertext(handle=ZERO_HANDLE) == hex(1)
    assert decrypt(coprocessor, keypair, ZERO_HANDLE) == 0
    assert coprocessor.is_allowed(handle=ZERO_HANDLE, account="anyone")

    a = coprocessor.encrypt_clear(value=9)
    assert decrypt(coprocessor, keypair, coprocessor.add(a=ZERO_HANDLE, b=a)) == 9


def test_encrypt_clear_rejects_out_of_range(coprocessor, keypair):
    with pytest.raises(AssertionError, match="InvalidAmount"):
        coprocessor.encrypt_clear(value=-1)
    with pytest.raises(AssertionError, match="InvalidAmount"):
        coprocessor.encrypt_clear(value=keypair.n)


def test_acl_blocks_other_callers(coprocessor):
    handle = coprocessor.encrypt_clear(value=5)

    assert not coprocessor.is_allowed(handle=handle, account="mallory")
    with pytest.raises(AssertionError, match="Unauthorized"):
        coprocessor.add(a=handle, b=handle, signer="mallory")
    with pytest.raises(AssertionError, match="Unauthorized"):
        coprocessor.allow(handle=handle, account="mallory", signer="mallory")


def test_allow_grants_use(coprocessor, keypair):
    handle = coprocessor.encrypt_clear(value=5)
    coprocessor.allow(handle=handle, account="alice")

    assert coprocessor.is_allowed(handle=handle, account="alice")
    doubled = coprocessor.add(a=handle, b=handle, signer="alice")
    assert decrypt(coprocessor, keypair, doubled) == 10
    assert coprocessor.is_allowed(handle=doubled, account="alice")
    assert not coprocessor.is_allowed(handle=doubled, account="operator")


def test_unknown_handle_is_rejected(coprocessor):
    with pytest.raises(AssertionError, match="Unknown handle"):
        coprocessor.get_ciphertext(handle="0x" + "ab" * 32)
