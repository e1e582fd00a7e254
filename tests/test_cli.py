import json

import pytest

import cli
from conftest import TOKENS_NAME


def run(client, capsys, *argv):
    code = cli.main(list(argv), client=client)
    captured = capsys.readouterr()
    return code, captured.out, captured.err


@pytest.fixture
def token(client, contract, capsys):
    code, out, _ = run(
        client, capsys,
        "--signer", "creator",
        "create", "--name", "MyToken", "--symbol", "MTK", "--supply", "10000000", "--price", "0.001",
    )
    assert code == 0
    return out.strip().split("token=")[1]


@pytest.fixture
def relay_key(tmp_path, keypair):
    path = tmp_path / "relay_key.json"
    path.write_text(keypair.to_json())
    return str(path)


def test_keygen_writes_key(tmp_path, capsys):
    out_path = tmp_path / "key.json"
    code, out, _ = run(None, capsys, "keygen", "--out", str(out_path), "--bits", "1024")

    assert code == 0
    data = json.loads(out_path.read_text())
    assert set(data) == {"p", "q"}
    assert out.startswith("public key: 0x")


def test_list_without_tokens(client, contract, capsys):
    code, out, _ = run(client, capsys, "list")
    assert code == 0
    assert "No tokens created yet." in out


def test_create_then_list(client, capsys, token):
    _, out, _ = run(client, capsys, "list")
    assert out.strip() == f"0: {token}"

    _, out, _ = run(client, capsys, "list", "--creator", "creator")
    assert token in out

    _, out, _ = run(client, capsys, "list", "--creator", "someone")
    assert "No tokens created yet." in out


def test_address(client, contract, capsys):
    code, out, _ = run(client, capsys, "address")
    assert code == 0
    assert f"ConfidentialTokens address is {TOKENS_NAME}" in out
    assert "payment token: con_currency" in out


def test_info_and_quote(client, capsys, token):
    _, out, _ = run(client, capsys, "info", "--token", token)
    assert "MyToken (MTK)" in out
    assert "remaining for sale: 10" in out
    assert "price per token   : 0.001" in out

    _, out, _ = run(client, capsys, "quote", "--token", token, "--amount", "2000000")
    assert out.strip() == "requiredWei=2000000000000000 (0.002)"


def test_buy_decrypt_and_withdraw(client, capsys, currency, token, buyer, relay_key):
    currency.transfer(amount=10 ** 18, to=buyer["address"])

    code, out, _ = run(client, capsys, "--signer", buyer["address"], "buy", "--token", token, "--amount", "2000000")
    assert code == 0
    assert "requiredWei=2000000000000000" in out
    assert currency.balance_of(address=TOKENS_NAME) == 2 * 10 ** 15

    code, out, _ = run(
        client, capsys,
        "--relay-key", relay_key,
        "decrypt-balance", "--token", token, "--user-key", buyer["private_key"],
    )
    assert code == 0
    assert "clear balance    : 2000000" in out

    code, out, _ = run(
        client, capsys,
        "--signer", "creator",
        "withdraw", "--token", token, "--amount", "0.002", "--to", "treasury",
    )
    assert code == 0
    assert out.strip() == "withdrew 2000000000000000 to treasury"
    assert currency.balance_of(address="treasury") == 2 * 10 ** 15


def test_buy_with_overpayment_is_refunded(client, capsys, currency, token, buyer):
    currency.transfer(amount=10 ** 18, to=buyer["address"])

    code, _, _ = run(
        client, capsys,
        "--signer", buyer["address"], "buy", "--token", token, "--amount", "1000000", "--pay", "0.5",
    )
    assert code == 0
    assert currency.balance_of(address=buyer["address"]) == 10 ** 18 - 10 ** 15


def test_decrypt_balance_of_non_holder(client, capsys, token, other_buyer):
    code, out, _ = run(client, capsys, "decrypt-balance", "--token", token, "--user-key", other_buyer["private_key"])
    assert code == 0
    assert "clear balance    : 0" in out


def test_set_price(client, capsys, contract, token):
    code, out, _ = run(client, capsys, "--signer", "creator", "set-price", "--token", token, "--price", "0.002")
    assert code == 0
    assert out.strip() == "price=2000000000000000"
    assert contract.get_token(token=token)["price_per_token"] == 2 * 10 ** 15


def test_set_price_by_stranger_fails(client, capsys, token):
    code, _, err = run(client, capsys, "--signer", "mallory", "set-price", "--token", token, "--price", "0.002")
    assert code == 1
    assert "error: Unauthorized: caller is not the token owner" in err


def test_buy_beyond_supply_fails(client, capsys, currency, token, buyer):
    currency.transfer(amount=10 ** 18, to=buyer["address"])
    code, _, err = run(
        client, capsys,
        "--signer", buyer["address"], "buy", "--token", token, "--amount", "10000001", "--pay", "0.5",
    )
    assert code == 1
    assert "error: InsufficientInventory: requested 10000001, remaining 10000000" in err


def test_underpayment_is_caught_before_submitting(client, capsys, token, buyer):
    code, _, err = run(
        client, capsys,
        "--signer", buyer["address"], "buy", "--token", token, "--amount", "2000000", "--pay", "0.001",
    )
    assert code == 1
    assert "error: InsufficientPayment: required 2000000000000000, paid 1000000000000000" in err


def test_unknown_token(client, contract, capsys):
    code, _, err = run(client, capsys, "quote", "--token", "ctok_missing", "--amount", "1")
    assert code == 1
    assert "error: UnknownToken: ctok_missing" in err


def test_failed_buy_revokes_the_allowance(client, capsys, currency, token, buyer):
    currency.transfer(amount=10 ** 18, to=buyer["address"])
    code, _, _ = run(
        client, capsys,
        "--signer", buyer["address"], "buy", "--token", token, "--amount", "10000001", "--pay", "0.5",
    )
    assert code == 1
    assert currency.allowance(owner=buyer["address"], spender=TOKENS_NAME) == 0
    assert currency.balance_of(address=buyer["address"]) == 10 ** 18


def test_settings_default_to_integer_payment_token(monkeypatch):
    monkeypatch.delenv("CTOK_PAYMENT_TOKEN", raising=False)
    settings = cli.Settings.from_env()
    assert settings.payment_token == "con_currency"
    assert cli.build_parser(settings).parse_args(["address"]).payment_token == "con_currency"

    monkeypatch.setenv("CTOK_PAYMENT_TOKEN", "con_usdc")
    assert cli.Settings.from_env().payment_token == "con_usdc"
