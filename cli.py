"""
Operator tasks for the confidential token sale contracts.

    python -m cli keygen --out relay_key.json
    python -m cli deploy --relay-key relay_key.json --with-currency
    python -m cli create --name MyToken --symbol MTK --supply 10000000 --price 0.001
    python -m cli buy --token ctok_... --amount 2000000
    python -m cli decrypt-balance --token ctok_... --user-key <hex seed>

Every flag has an environment fallback (CTOK_*), see Settings.
"""
import argparse
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import contracting
from contracting.client import ContractingClient

import client_helper
from relay import DecryptionRelay, PaillierKeypair, AuthorizationError, public_key_of, sign_authorization

logger = logging.getLogger('cli')

PROJECT_ROOT = Path(__file__).resolve().parent
SUBMISSION_PATH = Path(contracting.__file__).resolve().parent / 'contracts' / 'submission.s.py'

CONTRACT_SOURCES = {
    'tokens': PROJECT_ROOT / 'con_confidential_tokens.py',
    'coprocessor': PROJECT_ROOT / 'con_encrypted_uint.py',
    'currency': PROJECT_ROOT / 'con_currency.py',
}


@dataclass
class Settings:
    signer: str = 'sys'
    contract: str = 'con_confidential_tokens'
    coprocessor: str = 'con_encrypted_uint'
    payment_token: str = 'con_currency'
    relay_key: Optional[str] = None
    log_level: str = 'WARNING'

    @classmethod
    def from_env(cls) -> 'Settings':
        defaults = cls()
        return cls(
            signer=os.getenv('CTOK_SIGNER', defaults.signer),
            contract=os.getenv('CTOK_CONTRACT', defaults.contract),
            coprocessor=os.getenv('CTOK_COPROCESSOR', defaults.coprocessor),
            payment_token=os.getenv('CTOK_PAYMENT_TOKEN', defaults.payment_token),
            relay_key=os.getenv('CTOK_RELAY_KEY', defaults.relay_key),
            log_level=os.getenv('CTOK_LOG_LEVEL', defaults.log_level),
        )


def configure_logging(level_name: str) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')


def load_keypair(path: Optional[str]) -> PaillierKeypair:
    if not path:
        raise SystemExit('a relay key is required (--relay-key or CTOK_RELAY_KEY)')
    return PaillierKeypair.from_json(Path(path).read_text())


def commit(client: ContractingClient) -> None:
    client.raw_driver.commit()

# ---- Commands ---------------------------------------------------------------

def cmd_keygen(client, args) -> int:
    keypair = PaillierKeypair.generate(bits=args.bits)
    Path(args.out).write_text(keypair.to_json())
    logger.info('wrote relay key to %s', args.out)
    print(f'public key: {keypair.public_key_hex()}')
    return 0


def cmd_deploy(client, args) -> int:
    keypair = load_keypair(args.relay_key)
    client.set_submission_contract(str(SUBMISSION_PATH))

    if args.with_currency:
        client.submit(CONTRACT_SOURCES['currency'].read_text(), name=args.payment_token)
        logger.info('deployed payment token %s', args.payment_token)

    client.submit(
        CONTRACT_SOURCES['coprocessor'].read_text(),
        name=args.coprocessor,
        constructor_args={'public_key': keypair.public_key_hex()},
    )
    client.submit(
        CONTRACT_SOURCES['tokens'].read_text(),
        name=args.contract,
        constructor_args={'payment_token': args.payment_token, 'coprocessor': args.coprocessor},
    )
    commit(client)
    print(f'ConfidentialTokens address is {args.contract}')
    return 0


def cmd_address(client, args) -> int:
    contract = client.get_contract(args.contract)
    meta = contract.get_metadata()
    print(f'ConfidentialTokens address is {args.contract}')
    print(f"payment token: {meta['payment_token']}  coprocessor: {meta['coprocessor']}")
    return 0


def cmd_list(client, args) -> int:
    contract = client.get_contract(args.contract)
    if args.creator:
        tokens = contract.get_tokens_by_creator(creator=args.creator)
    else:
        tokens = contract.get_all_tokens()

    if not tokens:
        print('No tokens created yet.')
        return 0
    for i, token in enumerate(tokens):
        print(f'{i}: {token}')
    return 0


def cmd_create(client, args) -> int:
    contract = client.get_contract(args.contract)
    kwargs = client_helper.build_create_token(
        name=args.name,
        symbol=args.symbol,
        total_supply=args.supply,
        price_per_token_wei=client_helper.parse_ether(args.price),
    )
    token = contract.create_token(**kwargs, signer=args.signer)
    commit(client)
    logger.info('created %s (%s) for %s', token, args.symbol, args.signer)
    print(f'token={token}')
    return 0


def cmd_info(client, args) -> int:
    contract = client.get_contract(args.contract)
    info = contract.get_token(token=args.token)
    print(f"{info['name']} ({info['symbol']}) {info['token']}")
    print(f"owner             : {info['owner']}")
    print(f"total supply      : {client_helper.format_units(info['total_supply'])}")
    print(f"remaining for sale: {client_helper.format_units(info['remaining_for_sale'])}")
    print(f"price per token   : {client_helper.format_ether(info['price_per_token'])}")
    print(f"proceeds          : {client_helper.format_ether(info['proceeds'])}")
    return 0


def cmd_quote(client, args) -> int:
    contract = client.get_contract(args.contract)
    amount = client_helper.validate_amount(args.amount)
    required = contract.quote_buy(token=args.token, amount=amount)
    print(f'requiredWei={required} ({client_helper.format_ether(required)})')
    return 0


def cmd_buy(client, args) -> int:
    contract = client.get_contract(args.contract)
    meta = contract.get_metadata()
    info = contract.get_token(token=args.token)

    paid = client_helper.parse_ether(args.pay) if args.pay is not None else None
    plan = client_helper.build_buy(args.token, args.amount, info['price_per_token'], paid=paid)

    currency = client.get_contract(meta['payment_token'])
    if plan['approve'] > 0:
        currency.approve(amount=plan['approve'], to=args.contract, signer=args.signer)

    try:
        handle = contract.buy(**plan['call'], signer=args.signer)
    except AssertionError:
        if plan['approve'] > 0:
            # The approval went out as its own transaction; take it back
            currency.approve(amount=0, to=args.contract, signer=args.signer)
            commit(client)
            logger.info('revoked allowance of %s for %s', args.signer, args.contract)
        raise
    commit(client)
    logger.info('bought %s of %s for %s', plan['call']['amount'], args.token, args.signer)
    print(f"transferred={handle} requiredWei={plan['required']}")
    return 0


def cmd_set_price(client, args) -> int:
    contract = client.get_contract(args.contract)
    price = client_helper.validate_price(client_helper.parse_ether(args.price))
    contract.set_price(token=args.token, new_price=price, signer=args.signer)
    commit(client)
    print(f'price={price}')
    return 0


def cmd_withdraw(client, args) -> int:
    contract = client.get_contract(args.contract)
    available = contract.proceeds_of(token=args.token)
    kwargs = client_helper.build_withdraw(args.token, args.to or args.signer, client_helper.parse_ether(args.amount), available)
    contract.withdraw(**kwargs, signer=args.signer)
    commit(client)
    print(f"withdrew {kwargs['amount']} to {kwargs['to']}")
    return 0


def cmd_decrypt_balance(client, args) -> int:
    contract = client.get_contract(args.contract)
    user = args.user or public_key_of(args.user_key)
    handle = contract.confidential_balance_of(token=args.token, account=user)

    print(f'encrypted balance: {handle}')
    if handle == client_helper.ZERO_HANDLE:
        print('clear balance    : 0')
        return 0

    relay = DecryptionRelay(load_keypair(args.relay_key), client.get_contract(args.coprocessor))
    authorization = sign_authorization(args.user_key, [args.contract], duration_days=args.days)
    value = relay.user_decrypt(handle, args.contract, authorization)
    print(f'clear balance    : {value}')
    return 0

# ---- Parser -----------------------------------------------------------------

def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='ctok', description='Confidential token sale operator tasks')
    parser.add_argument('--signer', default=settings.signer)
    parser.add_argument('--contract', default=settings.contract)
    parser.add_argument('--coprocessor', default=settings.coprocessor)
    parser.add_argument('--payment-token', dest='payment_token', default=settings.payment_token)
    parser.add_argument('--relay-key', dest='relay_key', default=settings.relay_key)
    parser.add_argument('--log-level', dest='log_level', default=settings.log_level)
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('keygen', help='Generate the relay Paillier keypair')
    p.add_argument('--out', required=True)
    p.add_argument('--bits', type=int, default=2048)
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser('deploy', help='Deploy coprocessor and token sale contracts')
    p.add_argument('--with-currency', dest='with_currency', action='store_true')
    p.set_defaults(func=cmd_deploy)

    p = sub.add_parser('address', help='Print the token sale contract address')
    p.set_defaults(func=cmd_address)

    p = sub.add_parser('list', help='List all tokens, or those of one creator')
    p.add_argument('--creator')
    p.set_defaults(func=cmd_list)

    p = sub.add_parser('create', help='Create a new confidential token')
    p.add_argument('--name', required=True)
    p.add_argument('--symbol', required=True)
    p.add_argument('--supply', type=int, default=100_000_000_000, help='Total supply in base units')
    p.add_argument('--price', default='0.0001', help='Price per whole token in ether')
    p.set_defaults(func=cmd_create)

    p = sub.add_parser('info', help='Show token metadata, price and supply')
    p.add_argument('--token', required=True)
    p.set_defaults(func=cmd_info)

    p = sub.add_parser('quote', help='Quote the payment for an amount of base units')
    p.add_argument('--token', required=True)
    p.add_argument('--amount', type=int, required=True)
    p.set_defaults(func=cmd_quote)

    p = sub.add_parser('buy', help='Approve the payment, then buy base units of a token '
                                   '(the approval is revoked if the purchase fails)')
    p.add_argument('--token', required=True)
    p.add_argument('--amount', type=int, required=True)
    p.add_argument('--pay', help='Attach this much ether instead of the exact quote')
    p.set_defaults(func=cmd_buy)

    p = sub.add_parser('set-price', help='Owner: change the price per whole token (ether)')
    p.add_argument('--token', required=True)
    p.add_argument('--price', required=True)
    p.set_defaults(func=cmd_set_price)

    p = sub.add_parser('withdraw', help='Owner: withdraw collected payment (ether)')
    p.add_argument('--token', required=True)
    p.add_argument('--amount', required=True)
    p.add_argument('--to')
    p.set_defaults(func=cmd_withdraw)

    p = sub.add_parser('decrypt-balance', help="Decrypt a user's confidential balance")
    p.add_argument('--token', required=True)
    p.add_argument('--user-key', dest='user_key', required=True, help='Hex Ed25519 private key seed')
    p.add_argument('--user', help='Account to read (defaults to the key owner)')
    p.add_argument('--days', type=int, default=1)
    p.set_defaults(func=cmd_decrypt_balance)

    return parser


def main(argv: Optional[List[str]] = None, client: Optional[ContractingClient] = None) -> int:
    settings = Settings.from_env()
    args = build_parser(settings).parse_args(argv)
    configure_logging(args.log_level)

    if client is None and args.command != 'keygen':
        client = ContractingClient(signer=args.signer, metering=False)

    try:
        return args.func(client, args)
    except (AssertionError, client_helper.ConfidentialTokenError) as e:
        error = client_helper.classify_error(e)
        logger.debug('command %s failed', args.command, exc_info=True)
        print(f'error: {error.kind}: {error.message}', file=sys.stderr)
        return 1
    except AuthorizationError as e:
        print(f'error: decryption refused: {e}', file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
