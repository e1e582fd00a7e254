"""
Off-chain decryption relay for encrypted balance handles.

The relay holds the Paillier secret key matching the public key the
coprocessor contract was seeded with. It releases a clear value only when
  - the request carries a valid Ed25519 signature from the account (a Xian
    address is the hex Ed25519 public key),
  - the signed validity window covers the current time,
  - the authorization names the contract that owns the handle,
  - the coprocessor ACL allows both the account and that contract.
"""
import json
import logging
import math
import secrets
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from client_helper import ZERO_HANDLE

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86_400
DEFAULT_MAX_DURATION_DAYS = 365


class AuthorizationError(Exception):
    """The relay refused to decrypt."""

# ---- Paillier keypair --------------------------------------------------------

@dataclass(frozen=True)
class PaillierKeypair:
    p: int
    q: int

    @classmethod
    def generate(cls, bits: int = 2048) -> 'PaillierKeypair':
        # RSA moduli are products of two equal-size primes, as Paillier needs
        numbers = rsa.generate_private_key(public_exponent=65537, key_size=bits).private_numbers()
        return cls(p=numbers.p, q=numbers.q)

    @property
    def n(self) -> int:
        return self.p * self.q

    @property
    def n_squared(self) -> int:
        return self.n * self.n

    @property
    def lam(self) -> int:
        return math.lcm(self.p - 1, self.q - 1)

    @property
    def mu(self) -> int:
        return pow(self.lam, -1, self.n)

    def public_key_hex(self) -> str:
        return hex(self.n)

    def encrypt(self, value: int, r: Optional[int] = None) -> int:
        n = self.n
        if not 0 <= value < n:
            raise ValueError('value out of plaintext range')
        if r is None:
            r = secrets.randbelow(n - 2) + 2
        return ((1 + value * n) * pow(r, n, self.n_squared)) % self.n_squared

    def decrypt(self, ciphertext: int) -> int:
        n = self.n
        u = pow(ciphertext, self.lam, self.n_squared)
        return ((u - 1) // n) * self.mu % n

    def to_json(self) -> str:
        return json.dumps({'p': hex(self.p), 'q': hex(self.q)})

    @classmethod
    def from_json(cls, raw: str) -> 'PaillierKeypair':
        data = json.loads(raw)
        return cls(p=int(data['p'], 16), q=int(data['q'], 16))

# ---- Signed user authorization ----------------------------------------------

def authorization_message(user: str, contract_addresses: List[str], start_timestamp: int, duration_days: int) -> bytes:
    obj = {
        'user': user,
        'contract_addresses': sorted(contract_addresses),
        'start_timestamp': int(start_timestamp),
        'duration_days': int(duration_days),
    }
    return json.dumps(obj, sort_keys=True, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


@dataclass
class DecryptAuthorization:
    user: str
    contract_addresses: List[str]
    start_timestamp: int
    duration_days: int
    signature: str = ''

    def message(self) -> bytes:
        return authorization_message(self.user, self.contract_addresses, self.start_timestamp, self.duration_days)

    def verify(self) -> bool:
        try:
            key = Ed25519PublicKey.from_public_bytes(bytes.fromhex(self.user))
            key.verify(bytes.fromhex(self.signature), self.message())
            return True
        except (InvalidSignature, ValueError):
            return False

    def expires_at(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY


def public_key_of(private_key_hex: str) -> str:
    """Xian address (hex Ed25519 public key) for a hex private key seed."""
    key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
    raw = key.public_key().public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    return raw.hex()


def sign_authorization(private_key_hex: str,
                       contract_addresses: List[str],
                       start_timestamp: Optional[int] = None,
                       duration_days: int = 10) -> DecryptAuthorization:
    """
    Sign a user-decryption authorization for the given contracts.
    The start defaults to now; the window lasts duration_days.
    """
    if start_timestamp is None:
        start_timestamp = int(time.time())

    key = Ed25519PrivateKey.from_private_bytes(bytes.fromhex(private_key_hex))
    auth = DecryptAuthorization(
        user=public_key_of(private_key_hex),
        contract_addresses=list(contract_addresses),
        start_timestamp=int(start_timestamp),
        duration_days=int(duration_days),
    )
    auth.signature = key.sign(auth.message()).hex()
    return auth

# ---- Relay ------------------------------------------------------------------

class DecryptionRelay:
    """
    Decrypts handles held by a coprocessor contract for authorized accounts.

    `coprocessor` is anything exposing the contract's read functions
    (`get_ciphertext(handle=...)`, `is_allowed(handle=..., account=...)`),
    e.g. ContractingClient.get_contract('con_encrypted_uint').
    """

    def __init__(self,
                 keypair: PaillierKeypair,
                 coprocessor,
                 max_duration_days: int = DEFAULT_MAX_DURATION_DAYS,
                 clock: Callable[[], float] = time.time):
        self.keypair = keypair
        self.coprocessor = coprocessor
        self.max_duration_days = max_duration_days
        self.clock = clock

        on_chain = int(coprocessor.get_public_key(), 16)
        if on_chain != keypair.n:
            raise ValueError('relay key does not match the coprocessor public key')

    def check(self, handle: str, contract_address: str, authorization: DecryptAuthorization):
        if not authorization.verify():
            raise AuthorizationError('bad signature')

        if not 1 <= authorization.duration_days <= self.max_duration_days:
            raise AuthorizationError(f'duration must be between 1 and {self.max_duration_days} days')

        now = self.clock()
        if now < authorization.start_timestamp:
            raise AuthorizationError('authorization not yet valid')
        if now > authorization.expires_at():
            raise AuthorizationError('authorization expired')

        if contract_address not in authorization.contract_addresses:
            raise AuthorizationError(f'authorization does not cover {contract_address}')

        if handle == ZERO_HANDLE:
            return

        if not self.coprocessor.is_allowed(handle=handle, account=authorization.user):
            raise AuthorizationError('account is not allowed on handle')
        if not self.coprocessor.is_allowed(handle=handle, account=contract_address):
            raise AuthorizationError('contract is not allowed on handle')

    def user_decrypt(self, handle: str, contract_address: str, authorization: DecryptAuthorization) -> int:
        try:
            self.check(handle, contract_address, authorization)
        except AuthorizationError as e:
            logger.warning('decrypt denied for %s on %s: %s', authorization.user, handle, e)
            raise

        if handle == ZERO_HANDLE:
            return 0

        ciphertext = int(self.coprocessor.get_ciphertext(handle=handle), 16)
        value = self.keypair.decrypt(ciphertext)
        logger.info('decrypted %s for %s', handle, authorization.user)
        return value
