"""
VNPay helpers: canonical query strings, HMAC-SHA512 signatures, payment URLs.

Flow:
1. Client asks for a payment URL; the server builds and signs the params.
2. Client is redirected to VNPay and pays there.
3. VNPay calls the IPN endpoint server-to-server (authoritative) and
   redirects the browser to the return URL (advisory only).
4. Both callbacks are verified by recomputing the signature.
"""
import hashlib
import hmac
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from urllib.parse import quote, quote_plus
from zoneinfo import ZoneInfo

VNP_VERSION = "2.1.0"
HASH_FIELDS = ("vnp_SecureHash", "vnp_SecureHashType")
TXN_SUFFIX_DIGITS = 6

# Characters encodeURIComponent leaves alone
_UNRESERVED = "-_.!~*'()"

RESPONSE_MESSAGES = {
    "00": "Transaction successful",
    "07": "Amount debited; transaction flagged as suspicious (possible fraud)",
    "09": "Card/account is not registered for internet banking",
    "10": "Card/account verification failed more than 3 times",
    "11": "Payment window expired",
    "12": "Card/account is locked",
    "13": "Wrong transaction OTP",
    "24": "Customer cancelled the transaction",
    "51": "Insufficient balance",
    "65": "Daily transaction limit exceeded",
    "75": "Paying bank is under maintenance",
    "79": "Wrong payment password too many times",
    "99": "Unknown error",
}


def response_message(code: str | None) -> str:
    return RESPONSE_MESSAGES.get(code or "", f"Unknown error (code: {code})")


def _encode_key(key: str) -> str:
    return quote(key, safe=_UNRESERVED)


def _encode_value(value) -> str:
    # encodeURIComponent, with spaces as '+'
    return quote_plus(str(value), safe=_UNRESERVED)


def canonical_query(params: dict) -> str:
    """Sort by encoded key, encode values, join as k=v&k=v."""
    encoded = {_encode_key(key): _encode_value(value) for key, value in params.items()}
    return "&".join(f"{key}={encoded[key]}" for key in sorted(encoded))


def sign(params: dict, secret: str) -> str:
    """Lowercase hex HMAC-SHA512 of the canonical query string."""
    data = canonical_query(params).encode("utf-8")
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha512).hexdigest()


def verify_signature(params: dict, secret: str) -> bool:
    """Recompute the signature over every field except the hash fields."""
    received = params.get("vnp_SecureHash")
    if not received:
        return False
    unsigned = {k: v for k, v in params.items() if k not in HASH_FIELDS}
    return hmac.compare_digest(sign(unsigned, secret), str(received))


def format_vnpay_date(moment: datetime, timezone_name: str) -> str:
    """yyyyMMddHHmmss in the merchant's local time."""
    return moment.astimezone(ZoneInfo(timezone_name)).strftime("%Y%m%d%H%M%S")


def to_minor_units(amount: Decimal) -> int:
    """VNPay amounts are integers: amount x 100."""
    return int((Decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def make_txn_ref(order_number: int, epoch_ms: int) -> str:
    """Order number plus the last 6 digits of the epoch millis; unique per attempt."""
    return f"{order_number}{str(epoch_ms)[-TXN_SUFFIX_DIGITS:]}"


def parse_txn_ref(txn_ref: str | None) -> int | None:
    """Recover the order number, or None when the reference is malformed."""
    if not txn_ref or not txn_ref.isdigit() or len(txn_ref) <= TXN_SUFFIX_DIGITS:
        return None
    order_number = int(txn_ref[:-TXN_SUFFIX_DIGITS])
    return order_number or None


def build_payment_url(
    *,
    api_url: str,
    tmn_code: str,
    hash_secret: str,
    return_url: str,
    txn_ref: str,
    amount: Decimal,
    order_info: str,
    ip_addr: str,
    create_date: str,
    locale: str = "vn",
    bank_code: str | None = None,
) -> str:
    params = {
        "vnp_Version": VNP_VERSION,
        "vnp_Command": "pay",
        "vnp_TmnCode": tmn_code,
        "vnp_Locale": locale or "vn",
        "vnp_CurrCode": "VND",
        "vnp_TxnRef": txn_ref,
        "vnp_OrderInfo": order_info,
        "vnp_OrderType": "other",
        "vnp_Amount": to_minor_units(amount),
        "vnp_ReturnUrl": return_url,
        "vnp_IpAddr": ip_addr,
        "vnp_CreateDate": create_date,
    }
    if bank_code:
        params["vnp_BankCode"] = bank_code

    query = canonical_query(params)
    secure_hash = sign(params, hash_secret)
    return f"{api_url}?{query}&vnp_SecureHash={secure_hash}"
