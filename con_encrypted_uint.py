"""
ENCRYPTED UINT COPROCESSOR

Additively homomorphic (Paillier) ciphertext store.
Callers only ever see opaque handles:
  - Enc(a) * Enc(b) mod n^2 == Enc(a + b)
  - Enc(a) * Enc(b)^-1 mod n^2 == Enc(a - b)

Clear values are recovered off-chain by the decryption relay, which holds
the secret key and honours the access-control list kept here.
"""

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

ZERO_HANDLE = '0x' + '0' * 64
ZERO_CIPHERTEXT = 1  # Enc(0) with r = 1

def mod_exp(base: int, exponent: int, modulus: int):
    if exponent == 0:
        return 1
    result = 1
    base = base % modulus
    while exponent > 0:
        if exponent % 2 == 1:
            result = (result * base) % modulus
        exponent = exponent >> 1
        base = (base * base) % modulus
    return result

def mod_inverse(x: int, modulus: int):
    # Extended Euclid; n^2 is not prime so Fermat does not apply
    old_r = x % modulus
    r = modulus
    old_s = 1
    s = 0
    while r != 0:
        q = old_r // r
        next_r = old_r - q * r
        old_r = r
        r = next_r
        next_s = old_s - q * s
        old_s = s
        s = next_s
    assert old_r == 1, 'Ciphertext not invertible'
    return old_s % modulus

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# handle -> hex ciphertext
ciphertexts = Hash()

# (handle, account) -> bool
acl = Hash(default_value=False)

# 'n', 'n_squared', 'operator'
network_key = Hash()

next_handle = Variable()

HandleCreatedEvent = LogEvent('HandleCreated', {
    'handle': {'type': str, 'idx': True},
    'owner': {'type': str, 'idx': True}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(public_key: str):
    n = int(public_key, 16)
    assert n > 3, 'Public key too small'

    network_key['n'] = hex(n)
    network_key['n_squared'] = hex(n * n)
    network_key['operator'] = ctx.caller

    next_handle.set(1)

# -----------------------------------------------------------------------------
# Internals
# -----------------------------------------------------------------------------

def plaintext_modulus():
    return int(network_key['n'], 16)

def ciphertext_modulus():
    return int(network_key['n_squared'], 16)

def ciphertext_of(handle: str):
    if handle == ZERO_HANDLE:
        return ZERO_CIPHERTEXT
    stored = ciphertexts[handle]
    assert stored is not None, 'Unknown handle'
    return int(stored, 16)

def can_use(handle: str, account: str):
    return handle == ZERO_HANDLE or acl[handle, account]

def require_access(handle: str):
    assert can_use(handle, ctx.caller), 'Unauthorized: caller may not use handle ' + handle

def store(ciphertext: int):
    counter = next_handle.get()
    next_handle.set(counter + 1)

    handle = '0x' + hashlib.sha3('EUINT|' + ctx.this + '|' + str(counter))
    ciphertexts[handle] = hex(ciphertext)
    acl[handle, ctx.caller] = True

    HandleCreatedEvent({'handle': handle, 'owner': ctx.caller})
    return handle

# -----------------------------------------------------------------------------
# Homomorphic operations
# -----------------------------------------------------------------------------

@export
def encrypt_clear(value: int):
    n = plaintext_modulus()
    n2 = ciphertext_modulus()
    assert 0 <= value < n, 'InvalidAmount: value out of plaintext range'

    r = int(hashlib.sha3('EUINT:r|' + ctx.this + '|' + str(next_handle.get())), 16) % n
    if r < 2:
        r = 2
    ciphertext = ((1 + value * n) * mod_exp(r, n, n2)) % n2
    return store(ciphertext)

@export
def add(a: str, b: str):
    require_access(a)
    require_access(b)
    n2 = ciphertext_modulus()
    return store((ciphertext_of(a) * ciphertext_of(b)) % n2)

@export
def sub(a: str, b: str):
    # Wraps modulo n on underflow; callers keep a public bound
    require_access(a)
    require_access(b)
    n2 = ciphertext_modulus()
    return store((ciphertext_of(a) * mod_inverse(ciphertext_of(b), n2)) % n2)

# -----------------------------------------------------------------------------
# Access control & views
# -----------------------------------------------------------------------------

@export
def allow(handle: str, account: str):
    require_access(handle)
    assert account != '', 'Unauthorized: empty account'
    acl[handle, account] = True

@export
def is_allowed(handle: str, account: str):
    return can_use(handle, account)

@export
def get_ciphertext(handle: str):
    return hex(ciphertext_of(handle))

@export
def get_public_key():
    return network_key['n']
