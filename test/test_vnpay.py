"""VNPay canonical query strings, signatures and transaction references."""
import hashlib
import hmac
from datetime import datetime, timezone
from decimal import Decimal
from urllib.parse import parse_qsl, urlsplit

import pytest

from restopos import vnpay

SECRET = "SECRETKEY123"


def test_canonical_query_sorts_and_encodes():
    params = {
        "vnp_TxnRef": "42123456",
        "vnp_Amount": 14040000,
        "vnp_OrderInfo": "Thanh toan don hang 42",
        "vnp_ReturnUrl": "http://localhost:3000/payment-result?x=1&y=2",
    }
    assert vnpay.canonical_query(params) == (
        "vnp_Amount=14040000"
        "&vnp_OrderInfo=Thanh+toan+don+hang+42"
        "&vnp_ReturnUrl=http%3A%2F%2Flocalhost%3A3000%2Fpayment-result%3Fx%3D1%26y%3D2"
        "&vnp_TxnRef=42123456"
    )


def test_canonical_query_keeps_unreserved_marks():
    assert vnpay.canonical_query({"a": "it's (ok)! ~*_.-"}) == "a=it's+(ok)!+~*_.-"
    assert vnpay.canonical_query({"a": "\u0110\u01a1n h\u00e0ng"}) == "a=%C4%90%C6%A1n+h%C3%A0ng"


def test_sign_is_hmac_sha512_of_canonical_query():
    params = {"vnp_B": "2", "vnp_A": "x y"}
    expected = hmac.new(SECRET.encode(), b"vnp_A=x+y&vnp_B=2", hashlib.sha512).hexdigest()
    assert vnpay.sign(params, SECRET) == expected
    assert len(expected) == 128


def test_verify_ignores_hash_fields():
    params = {"vnp_Amount": "100", "vnp_TxnRef": "1000001"}
    signed = dict(params, vnp_SecureHash=vnpay.sign(params, SECRET), vnp_SecureHashType="HmacSHA512")
    assert vnpay.verify_signature(signed, SECRET)
    assert not vnpay.verify_signature(signed, "another-secret")
    assert not vnpay.verify_signature(params, SECRET)


def test_payment_url_round_trips_through_verification():
    url = vnpay.build_payment_url(
        api_url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
        tmn_code="TESTCODE",
        hash_secret=SECRET,
        return_url="http://localhost:3000/payment-result",
        txn_ref="42123456",
        amount=Decimal("140400"),
        order_info="Thanh toan don hang 42",
        ip_addr="10.0.0.7",
        create_date="20260101083000",
        bank_code="NCB",
    )
    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"

    params = dict(parse_qsl(parts.query))
    assert params["vnp_Amount"] == "14040000"
    assert params["vnp_Version"] == "2.1.0"
    assert params["vnp_Command"] == "pay"
    assert params["vnp_CurrCode"] == "VND"
    assert params["vnp_Locale"] == "vn"
    assert params["vnp_BankCode"] == "NCB"
    assert params["vnp_OrderInfo"] == "Thanh toan don hang 42"
    assert vnpay.verify_signature(params, SECRET)


def test_any_tampered_field_fails_verification():
    params = {
        "vnp_Amount": "14040000",
        "vnp_BankCode": "NCB",
        "vnp_ResponseCode": "00",
        "vnp_TransactionStatus": "00",
        "vnp_TxnRef": "42123456",
    }
    params["vnp_SecureHash"] = vnpay.sign(params, SECRET)
    for key in [k for k in params if k != "vnp_SecureHash"]:
        tampered = dict(params, **{key: params[key] + "1"})
        assert not vnpay.verify_signature(tampered, SECRET), key

    # Uppercase hex is not the same signature
    assert not vnpay.verify_signature(dict(params, vnp_SecureHash=params["vnp_SecureHash"].upper()), SECRET)


def test_txn_ref_round_trip():
    ref = vnpay.make_txn_ref(42, 1767225600123)
    assert ref == "42600123"
    assert vnpay.parse_txn_ref(ref) == 42


@pytest.mark.parametrize("ref", [None, "", "123456", "abc123456", "0000123456", "12-345678"])
def test_malformed_txn_ref(ref):
    assert vnpay.parse_txn_ref(ref) is None


def test_minor_units():
    assert vnpay.to_minor_units(Decimal("140400")) == 14040000
    assert vnpay.to_minor_units(Decimal("10.005")) == 1001


def test_date_is_merchant_local_time():
    moment = datetime(2026, 1, 1, 1, 30, tzinfo=timezone.utc)
    assert vnpay.format_vnpay_date(moment, "Asia/Ho_Chi_Minh") == "20260101083000"


def test_response_messages():
    assert vnpay.response_message("24") == "Customer cancelled the transaction"
    assert vnpay.response_message("42") == "Unknown error (code: 42)"
