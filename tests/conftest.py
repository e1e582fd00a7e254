import hashlib
from pathlib import Path

import contracting
import pytest
from contracting.client import ContractingClient
from contracting.compilation import whitelists

from relay import DecryptionRelay, PaillierKeypair, public_key_of

PROJECT_ROOT = Path(__file__).resolve().parents[1]
TOKENS_PATH = PROJECT_ROOT / "con_confidential_tokens.py"
COPROCESSOR_PATH = PROJECT_ROOT / "con_encrypted_uint.py"
CURRENCY_PATH = PROJECT_ROOT / "con_currency.py"
REENTRANT_CURRENCY_PATH = Path(__file__).resolve().parent / "contracts" / "con_reentrant_currency.py"
SUBMISSION_PATH = (
    Path(contracting.__file__).resolve().parent / "contracts" / "submission.s.py"
)

TOKENS_NAME = "con_confidential_tokens"
COPROCESSOR_NAME = "con_encrypted_uint"
CURRENCY_NAME = "con_currency"


@pytest.fixture(scope="session", autouse=True)
def enable_sha3_and_whitelist():
    whitelists.ALLOWED_BUILTINS.update({"hashlib", "decimal"})

    if not hasattr(hashlib, "sha3"):
        def _sha3(data):
            if isinstance(data, str):
                data = data.encode("utf-8")
            return hashlib.sha3_256(data).hexdigest()

        setattr(hashlib, "sha3", _sha3)


@pytest.fixture(scope="session")
def keypair():
    # Small modulus keeps on-chain modular exponentiation quick in tests
    return PaillierKeypair.generate(bits=1024)


@pytest.fixture
def client():
    client = ContractingClient(signer="operator", metering=False)
    client.flush()
    client.set_submission_contract(str(SUBMISSION_PATH))
    return client


@pytest.fixture
def currency(client):
    client.submit(CURRENCY_PATH.read_text(), name=CURRENCY_NAME, owner=None)
    return client.get_contract(CURRENCY_NAME)


@pytest.fixture
def coprocessor(client, keypair):
    client.submit(
        COPROCESSOR_PATH.read_text(),
        name=COPROCESSOR_NAME,
        owner=None,
        constructor_args={"public_key": keypair.public_key_hex()},
    )
    return client.get_contract(COPROCESSOR_NAME)


@pytest.fixture
def contract(client, currency, coprocessor):
    client.submit(
        TOKENS_PATH.read_text(),
        name=TOKENS_NAME,
        owner=None,
        constructor_args={"payment_token": CURRENCY_NAME, "coprocessor": COPROCESSOR_NAME},
    )
    return client.get_contract(TOKENS_NAME)


@pytest.fixture
def relay(keypair, coprocessor):
    return DecryptionRelay(keypair, coprocessor)


def make_account(seed_byte: int):
    private_hex = bytes([seed_byte]).hex() * 32
    return {"private_key": private_hex, "address": public_key_of(private_hex)}


@pytest.fixture
def buyer():
    return make_account(0x11)


@pytest.fixture
def other_buyer():
    return make_account(0x22)
