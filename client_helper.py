import re
from decimal import Decimal, InvalidOperation, localcontext

# ---- Chain-constant parameters (mirror contract) ----

DECIMALS = 6
BASE_UNITS = 10 ** DECIMALS

ETHER_DECIMALS = 18
WEI_PER_ETHER = 10 ** ETHER_DECIMALS

MAX_UINT64 = 2 ** 64 - 1
MAX_PRICE = 2 ** 256 - 1

ZERO_HANDLE = '0x' + '0' * 64

# ---- Typed failures ----------------------------------------------------------

class ConfidentialTokenError(Exception):
    """Base class for failures reported by the token sale contract."""

    kind = 'ConfidentialTokenError'

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message


class InvalidAmount(ConfidentialTokenError):
    kind = 'InvalidAmount'


class InsufficientInventory(ConfidentialTokenError):
    kind = 'InsufficientInventory'

    def __init__(self, message: str = '', requested: int = None, remaining: int = None):
        super().__init__(message)
        self.requested = requested
        self.remaining = remaining


class InsufficientPayment(ConfidentialTokenError):
    kind = 'InsufficientPayment'

    def __init__(self, message: str = '', required: int = None, paid: int = None):
        super().__init__(message)
        self.required = required
        self.paid = paid

    @property
    def shortfall(self):
        if self.required is None or self.paid is None:
            return None
        return self.required - self.paid


class TransferFailure(ConfidentialTokenError):
    kind = 'TransferFailure'


class InvalidWithdraw(ConfidentialTokenError):
    kind = 'InvalidWithdraw'


class Unauthorized(ConfidentialTokenError):
    kind = 'Unauthorized'


class InvalidOwner(ConfidentialTokenError):
    kind = 'InvalidOwner'


class Reentrancy(ConfidentialTokenError):
    kind = 'Reentrancy'


class UnknownToken(ConfidentialTokenError):
    kind = 'UnknownToken'


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        InvalidAmount,
        InsufficientInventory,
        InsufficientPayment,
        TransferFailure,
        InvalidWithdraw,
        Unauthorized,
        InvalidOwner,
        Reentrancy,
        UnknownToken,
    )
}

_KIND_RE = re.compile(r'\b(?P<kind>' + '|'.join(ERROR_KINDS) + r'):\s*(?P<detail>.*)', re.DOTALL)
_INVENTORY_RE = re.compile(r'requested (?P<requested>\d+), remaining (?P<remaining>\d+)')
_PAYMENT_RE = re.compile(r'required (?P<required>\d+), paid (?P<paid>-?\d+)')


def classify_error(exc: BaseException) -> ConfidentialTokenError:
    """
    Map a failed contract call back to a typed failure.

    Contract assertions carry their kind as a message prefix
    ('InsufficientPayment: required 5, paid 4'). Messages without a known
    prefix come back as the ConfidentialTokenError base class.
    """
    if isinstance(exc, ConfidentialTokenError):
        return exc

    message = str(exc.args[0]) if exc.args else str(exc)
    match = _KIND_RE.search(message)
    if match is None:
        return ConfidentialTokenError(message)

    kind = match.group('kind')
    cls = ERROR_KINDS[kind]
    detail = match.group('detail')

    if cls is InsufficientPayment:
        numbers = _PAYMENT_RE.search(detail)
        if numbers:
            return InsufficientPayment(detail, required=int(numbers.group('required')), paid=int(numbers.group('paid')))
    if cls is InsufficientInventory:
        numbers = _INVENTORY_RE.search(detail)
        if numbers:
            return InsufficientInventory(detail, requested=int(numbers.group('requested')), remaining=int(numbers.group('remaining')))
    return cls(detail)

# ---- Units ------------------------------------------------------------------

def _parse_decimal(value, decimals: int) -> int:
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidAmount(f'not a number: {value!r}') from e
    if not parsed.is_finite():
        raise InvalidAmount(f'not a finite number: {value!r}')

    # Default context keeps 28 digits; wide enough here that scaling never rounds
    with localcontext() as context:
        context.prec = len(parsed.as_tuple().digits) + decimals + 2
        scaled = parsed.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(f'{value!r} has more than {decimals} decimal places')
        return int(scaled)


def _format_decimal(value: int, decimals: int) -> str:
    sign = '-' if value < 0 else ''
    whole, frac = divmod(abs(int(value)), 10 ** decimals)
    if frac == 0:
        return f'{sign}{whole}'
    return f'{sign}{whole}.' + str(frac).rjust(decimals, '0').rstrip('0')


def parse_units(value) -> int:
    """'1.5' tokens -> 1_500_000 base units."""
    return _parse_decimal(value, DECIMALS)


def format_units(base_units: int) -> str:
    return _format_decimal(base_units, DECIMALS)


def parse_ether(value) -> int:
    """'0.001' -> 10**15 wei."""
    return _parse_decimal(value, ETHER_DECIMALS)


def format_ether(wei: int) -> str:
    return _format_decimal(wei, ETHER_DECIMALS)

# ---- Validation & pricing -----------------------------------------------------

def validate_amount(value, label: str = 'amount') -> int:
    """Reject anything outside [1, 2^64-1] before it reaches the ledger."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount(f'{label} must be an integer number of base units')
    if value < 1:
        raise InvalidAmount(f'{label} must be positive')
    if value > MAX_UINT64:
        raise InvalidAmount(f'{label} exceeds uint64')
    return value


def validate_price(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAmount('price must be an integer number of wei')
    if not 0 <= value <= MAX_PRICE:
        raise InvalidAmount('price out of range')
    return value


def quote_buy(amount: int, price_per_token: int) -> int:
    # Mirrors on-chain compute_quote: ceil(amount * price / BASE_UNITS)
    if amount == 0 or price_per_token == 0:
        return 0
    required, remainder = divmod(amount * price_per_token, BASE_UNITS)
    if remainder:
        required += 1
    return required

# ---- High-level builders -----------------------------------------------------

def build_create_token(name: str, symbol: str, total_supply: int, price_per_token_wei: int):
    """
    Returns kwargs for contract.create_token(). Name and symbol are display
    strings and pass through unchecked.
    """
    return {
        'name': name,
        'symbol': symbol,
        'total_supply': validate_amount(total_supply, 'total supply'),
        'price_per_token': validate_price(price_per_token_wei),
    }


def build_buy(token: str, amount: int, price_per_token: int, paid: int = None):
    """
    Returns kwargs for contract.buy() plus the allowance the buyer must grant
    the sale contract on the payment token first.

    With `paid` omitted the buyer pays exactly the quote; anything above the
    quote is refunded on-chain.
    """
    validate_amount(amount)
    required = quote_buy(amount, price_per_token)
    if paid is None:
        paid = required
    if paid < required:
        raise InsufficientPayment(f'required {required}, paid {paid}', required=required, paid=paid)
    return {
        'call': {'token': token, 'amount': amount, 'paid': paid},
        'approve': paid,
        'required': required,
    }


def build_withdraw(token: str, to: str, amount_wei: int, available: int = None):
    """
    Returns kwargs for contract.withdraw(). Owner-only on-chain.
    """
    if not to:
        raise InvalidWithdraw('recipient is required')
    if isinstance(amount_wei, bool) or not isinstance(amount_wei, int) or amount_wei <= 0:
        raise InvalidWithdraw('amount must be positive')
    if available is not None and amount_wei > available:
        raise InvalidWithdraw(f'requested {amount_wei}, available {available}')
    return {'token': token, 'to': to, 'amount': amount_wei}

# ---- Convenience: wallet-side holding tracker (optional) --------------------

class HoldingTracker:
    """
    Optional local helper to remember which handles a wallet received.
    Only the clear amounts this wallet bought are kept; decrypting the
    current balance still goes through the relay.
    """
    def __init__(self, token: str):
        self.token = token
        self.purchases = []

    def record_purchase(self, handle: str, amount: int, required: int):
        self.purchases.append({'handle': handle, 'amount': amount, 'required': required})
        return self.expected_balance

    @property
    def expected_balance(self) -> int:
        return sum(p['amount'] for p in self.purchases)

    @property
    def total_spent(self) -> int:
        return sum(p['required'] for p in self.purchases)
