"""
CONFIDENTIAL TOKEN SALE

A registry of confidential token ledgers. Each ledger:
  - mints its whole supply as an encrypted balance held by the ledger itself
  - sells base units for the payment token at a fixed price per whole token
  - keeps a public remaining-for-sale counter next to the encrypted balances

Encrypted balances are opaque handles owned by the coprocessor contract.
Failure messages start with their kind, e.g. 'InsufficientPayment: ...'.
"""

I = importlib

# -----------------------------------------------------------------------------
# Parameters & Helpers
# -----------------------------------------------------------------------------

DECIMALS = 6
BASE_UNITS = 10 ** DECIMALS  # 1 token == 1_000_000 base units
MAX_UINT64 = 2 ** 64 - 1
MAX_PRICE = 2 ** 256 - 1

ZERO_HANDLE = '0x' + '0' * 64

token_interface = [
    I.Func('transfer_from', args=('amount', 'to', 'main_account')),
    I.Func('transfer', args=('amount', 'to')),
    I.Func('balance_of', args=('address',)),
]

def compute_quote(amount: int, price: int):
    if amount == 0 or price == 0:
        return 0
    numerator = amount * price
    required = numerator // BASE_UNITS
    if numerator % BASE_UNITS != 0:
        required += 1
    return required

def assert_uint64(value: int, label: str):
    assert value > 0, 'InvalidAmount: ' + label + ' must be positive'
    assert value <= MAX_UINT64, 'InvalidAmount: ' + label + ' exceeds uint64'

# -----------------------------------------------------------------------------
# State
# -----------------------------------------------------------------------------

# contract config: operator, payment_token, coprocessor
metadata = Hash()

# registry: index -> token id, (creator, index) -> token id
token_count = Variable()
tokens = Hash()
creator_token_count = Hash(default_value=0)
creator_tokens = Hash()

# token id -> {'name', 'symbol', 'creator', 'owner', 'total_supply', 'remaining', 'price'}
ledgers = Hash()

# (token, account) -> encrypted balance handle
balances = Hash(default_value=ZERO_HANDLE)

# token -> payment collected and not yet withdrawn
proceeds = Hash(default_value=0)

# token -> busy flag around external value transfers
locked = Hash(default_value=False)

# Events
TokenCreatedEvent = LogEvent('TokenCreated', {
    'creator': {'type': str, 'idx': True},
    'token': {'type': str, 'idx': True},
    'name': {'type': str},
    'symbol': {'type': str},
    'total_supply': {'type': int},
    'price_per_token': {'type': int}
})

TokenPurchasedEvent = LogEvent('TokenPurchased', {
    'buyer': {'type': str, 'idx': True},
    'token': {'type': str, 'idx': True},
    'amount': {'type': int},
    'required': {'type': int},
    'paid': {'type': int}
})

PriceUpdatedEvent = LogEvent('PriceUpdated', {
    'token': {'type': str, 'idx': True},
    'old': {'type': int},
    'new': {'type': int}
})

WithdrawnEvent = LogEvent('Withdrawn', {
    'token': {'type': str, 'idx': True},
    'to': {'type': str, 'idx': True},
    'amount': {'type': int}
})

OwnershipTransferredEvent = LogEvent('OwnershipTransferred', {
    'token': {'type': str, 'idx': True},
    'previous': {'type': str, 'idx': True},
    'new': {'type': str}
})

# -----------------------------------------------------------------------------
# Construction
# -----------------------------------------------------------------------------

@construct
def seed(payment_token: str = 'con_currency', coprocessor: str = 'con_encrypted_uint'):
    metadata['operator'] = ctx.caller
    metadata['payment_token'] = payment_token
    metadata['coprocessor'] = coprocessor

    token_count.set(0)

# -----------------------------------------------------------------------------
# Views
# -----------------------------------------------------------------------------

@export
def get_metadata():
    return {
        'operator': metadata['operator'],
        'payment_token': metadata['payment_token'],
        'coprocessor': metadata['coprocessor']
    }

@export
def change_metadata(key: str, value: Any):
    # payment_token and coprocessor back every ledger's funds and balances
    assert ctx.caller == metadata['operator'], 'Unauthorized: only operator can set metadata'
    assert key == 'operator', 'Unauthorized: ' + key + ' is fixed at construction'
    assert isinstance(value, str) and value != '', 'InvalidOwner: operator cannot be removed'
    metadata[key] = value

# -----------------------------------------------------------------------------
# Internals
# -----------------------------------------------------------------------------

def load_ledger(token: str):
    ledger = ledgers[token]
    assert ledger is not None, 'UnknownToken: ' + token
    return ledger

def assert_owner(ledger: dict):
    assert ctx.caller == ledger['owner'], 'Unauthorized: caller is not the token owner'

def assert_idle(token: str):
    assert not locked[token], 'Reentrancy: token ledger is busy'

def payment_contract():
    token_contract = I.import_module(metadata['payment_token'])
    assert I.enforce_interface(token_contract, token_interface), 'payment token not XSC001-compliant'
    return token_contract

def held_by(token_contract: Any, address: str):
    held = token_contract.balance_of(address=address)
    if held is None:
        return 0
    return held

def collect_payment(amount: int):
    token_contract = payment_contract()
    assert held_by(token_contract, ctx.caller) >= amount, 'TransferFailure: payer balance too low'

    before = held_by(token_contract, ctx.this)
    token_contract.transfer_from(amount=amount, to=ctx.this, main_account=ctx.caller)
    after = held_by(token_contract, ctx.this)
    assert after - before == amount, 'TransferFailure: payment not received in full'

def send_value(to: str, amount: int):
    token_contract = payment_contract()
    before = held_by(token_contract, to)
    token_contract.transfer(amount=amount, to=to)
    after = held_by(token_contract, to)
    assert after - before == amount, 'TransferFailure: value transfer to ' + to + ' did not arrive'

def transfer_encrypted(token: str, sender: str, receiver: str, amount: int):
    fhe = I.import_module(metadata['coprocessor'])

    amount_handle = fhe.encrypt_clear(value=amount)
    balances[token, sender] = fhe.sub(a=balances[token, sender], b=amount_handle)

    receiver_handle = fhe.add(a=balances[token, receiver], b=amount_handle)
    balances[token, receiver] = receiver_handle

    fhe.allow(handle=receiver_handle, account=receiver)
    fhe.allow(handle=amount_handle, account=receiver)
    return amount_handle

# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------

@export
def create_token(name: str, symbol: str, total_supply: int, price_per_token: int):
    assert_uint64(total_supply, 'total supply')
    assert 0 <= price_per_token <= MAX_PRICE, 'InvalidAmount: price out of range'

    creator = ctx.caller
    index = token_count.get()
    token = 'ctok_' + hashlib.sha3(ctx.this + '|' + creator + '|' + str(index))[:40]
    assert ledgers[token] is None, 'Token id collision'

    ledgers[token] = {
        'name': name,
        'symbol': symbol,
        'creator': creator,
        'owner': creator,
        'total_supply': total_supply,
        'remaining': total_supply,
        'price': price_per_token
    }

    # The ledger itself holds the inventory it sells
    fhe = I.import_module(metadata['coprocessor'])
    balances[token, token] = fhe.encrypt_clear(value=total_supply)

    tokens[index] = token
    token_count.set(index + 1)

    created = creator_token_count[creator]
    creator_tokens[creator, created] = token
    creator_token_count[creator] = created + 1

    TokenCreatedEvent({
        'creator': creator,
        'token': token,
        'name': name,
        'symbol': symbol,
        'total_supply': total_supply,
        'price_per_token': price_per_token
    })
    return token

@export
def get_all_tokens():
    result = []
    for i in range(token_count.get()):
        result.append(tokens[i])
    return result

@export
def all_tokens_length():
    return token_count.get()

@export
def get_tokens_by_creator(creator: str):
    result = []
    for i in range(creator_token_count[creator]):
        result.append(creator_tokens[creator, i])
    return result

# -----------------------------------------------------------------------------
# Sale ledger: views
# -----------------------------------------------------------------------------

@export
def get_token(token: str):
    ledger = load_ledger(token)
    return {
        'token': token,
        'name': ledger['name'],
        'symbol': ledger['symbol'],
        'decimals': DECIMALS,
        'creator': ledger['creator'],
        'owner': ledger['owner'],
        'total_supply': ledger['total_supply'],
        'remaining_for_sale': ledger['remaining'],
        'price_per_token': ledger['price'],
        'proceeds': proceeds[token]
    }

@export
def quote_buy(token: str, amount: int):
    ledger = load_ledger(token)
    assert 0 <= amount <= MAX_UINT64, 'InvalidAmount: amount out of range'
    return compute_quote(amount, ledger['price'])

@export
def confidential_balance_of(token: str, account: str):
    load_ledger(token)
    return balances[token, account]

@export
def proceeds_of(token: str):
    load_ledger(token)
    return proceeds[token]

# -----------------------------------------------------------------------------
# Sale ledger: purchase
# -----------------------------------------------------------------------------

@export
def buy(token: str, amount: int, paid: int):
    assert_idle(token)
    ledger = load_ledger(token)

    assert paid >= 0, 'InvalidAmount: payment cannot be negative'
    assert_uint64(amount, 'amount')
    assert amount <= ledger['remaining'], \
        f"InsufficientInventory: requested {amount}, remaining {ledger['remaining']}"

    required = compute_quote(amount, ledger['price'])
    assert paid >= required, f'InsufficientPayment: required {required}, paid {paid}'

    locked[token] = True

    # --- EFFECTS ---
    ledger['remaining'] -= amount
    ledgers[token] = ledger
    proceeds[token] = proceeds[token] + required

    transferred = transfer_encrypted(token, token, ctx.caller, amount)

    # --- INTERACTIONS ---
    if paid > 0:
        collect_payment(paid)
    if paid > required:
        send_value(ctx.caller, paid - required)

    TokenPurchasedEvent({
        'buyer': ctx.caller,
        'token': token,
        'amount': amount,
        'required': required,
        'paid': paid
    })

    locked[token] = False
    return transferred

# -----------------------------------------------------------------------------
# Sale ledger: owner controls
# -----------------------------------------------------------------------------

@export
def set_price(token: str, new_price: int):
    assert_idle(token)
    ledger = load_ledger(token)
    assert_owner(ledger)
    assert 0 <= new_price <= MAX_PRICE, 'InvalidAmount: price out of range'

    old_price = ledger['price']
    ledger['price'] = new_price
    ledgers[token] = ledger

    PriceUpdatedEvent({'token': token, 'old': old_price, 'new': new_price})

@export
def withdraw(token: str, to: str, amount: int):
    assert_idle(token)
    ledger = load_ledger(token)
    assert_owner(ledger)

    assert to is not None and to != '', 'InvalidWithdraw: recipient is required'
    assert amount > 0, 'InvalidWithdraw: amount must be positive'
    available = proceeds[token]
    assert amount <= available, f'InvalidWithdraw: requested {amount}, available {available}'

    locked[token] = True

    proceeds[token] = available - amount
    send_value(to, amount)

    WithdrawnEvent({'token': token, 'to': to, 'amount': amount})

    locked[token] = False

@export
def transfer_ownership(token: str, new_owner: str):
    assert_idle(token)
    ledger = load_ledger(token)
    assert_owner(ledger)
    assert new_owner is not None and new_owner != '', 'InvalidOwner: owner cannot be removed'

    previous = ledger['owner']
    ledger['owner'] = new_owner
    ledgers[token] = ledger

    OwnershipTransferredEvent({'token': token, 'previous': previous, 'new': new_owner})

# -----------------------------------------------------------------------------
# Invariants / Utilities
# -----------------------------------------------------------------------------

@export
def verify_proceeds_invariant():
    # Sum of per-ledger proceeds should equal what the contract holds
    collected = 0
    count = token_count.get()
    for i in range(count):
        collected += proceeds[tokens[i]]
    held = held_by(payment_contract(), ctx.this)
    return {
        'ok': collected == held,
        'collected': collected,
        'held': held,
        'tokens': count
    }
