"""
LOCAL PAYMENT CURRENCY (XSC001)

Integer-denominated payment token. The sale contract pays and refunds in it;
Xian's native currency is decimal-denominated and cannot stand in for wei.
Amounts are in the smallest unit (wei, 10^18 per whole coin).
"""

# address -> int, (owner, spender) -> int
balances = Hash(default_value=0)
metadata = Hash()

TransferEvent = LogEvent('Transfer', {
    'from': {'type': str, 'idx': True},
    'to': {'type': str, 'idx': True},
    'amount': {'type': int}
})

@construct
def seed(initial_supply: int = 10 ** 27):
    metadata['name'] = 'Local Wei'
    metadata['symbol'] = 'WEI'
    metadata['operator'] = ctx.caller
    balances[ctx.caller] = initial_supply

@export
def mint(to: str, amount: int):
    assert ctx.caller == metadata['operator'], 'Only operator can mint'
    assert amount > 0, 'Cannot mint non-positive amounts'
    balances[to] += amount

@export
def transfer(amount: int, to: str):
    assert amount > 0, 'Cannot send non-positive amounts'
    sender = ctx.caller
    assert balances[sender] >= amount, 'Not enough coins to send'

    balances[sender] -= amount
    balances[to] += amount
    TransferEvent({'from': sender, 'to': to, 'amount': amount})

@export
def approve(amount: int, to: str):
    assert amount >= 0, 'Cannot approve negative amounts'
    balances[ctx.caller, to] = amount
    return balances[ctx.caller, to]

@export
def transfer_from(amount: int, to: str, main_account: str):
    assert amount > 0, 'Cannot send non-positive amounts'
    sender = ctx.caller

    assert balances[main_account, sender] >= amount, \
        f'Not enough coins approved to send! You have {balances[main_account, sender]} and are trying to spend {amount}'
    assert balances[main_account] >= amount, 'Not enough coins to send'

    balances[main_account, sender] -= amount
    balances[main_account] -= amount
    balances[to] += amount
    TransferEvent({'from': main_account, 'to': to, 'amount': amount})

@export
def balance_of(address: str):
    return balances[address]

@export
def allowance(owner: str, spender: str):
    return balances[owner, spender]
