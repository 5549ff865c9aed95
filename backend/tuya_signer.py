"""
Tuya OpenAPI request signing
Canonical path, content hash and HMAC-SHA256 signature for every cloud call
"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import parse_qsl, quote, unquote, urlencode

SIGN_METHOD = "HMAC-SHA256"


@dataclass(frozen=True)
class SignedRequest:
    """Auth material for exactly one outbound call. Never reuse."""

    t: str
    path: str
    client_id: str
    sign: str
    sign_method: str = SIGN_METHOD
    access_token: Optional[str] = None

    def headers(self) -> Dict[str, str]:
        headers = {
            "t": self.t,
            "sign_method": self.sign_method,
            "client_id": self.client_id,
            "sign": self.sign,
        }
        if self.access_token is not None:
            headers["access_token"] = self.access_token
        return headers


def timestamp_ms() -> str:
    return str(int(time.time() * 1000))


def serialize_body(body: Any) -> str:
    """Compact JSON, the same bytes that get hashed and sent. None means no body."""
    if body is None:
        return ""
    return json.dumps(body, separators=(",", ":"))


def canonical_path(path: str, query: Optional[Mapping[str, Any]] = None) -> str:
    """Sort the merged query and return it percent-decoded after the uri"""
    uri, _, query_string = path.partition("?")

    merged = dict(parse_qsl(query_string, keep_blank_values=True))
    for key, value in (query or {}).items():
        merged[str(key)] = "" if value is None else str(value)

    if not merged:
        return uri

    ordered = [(key, merged[key]) for key in sorted(merged, key=lambda k: k.encode("utf-8"))]
    canonical_query = unquote(urlencode(ordered, quote_via=quote))
    return f"{uri}?{canonical_query}"


def content_hash(body: str) -> str:
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def string_to_sign(method: str, body: str, path: str) -> str:
    # The third line is the signed-headers line; this relay never signs headers.
    return "\n".join([method.upper(), content_hash(body), "", path])


def encrypt_str(message: str, secret: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256
    ).hexdigest().upper()


def sign_request(
    access_key: str,
    secret_key: str,
    method: str,
    path: str,
    query: Optional[Mapping[str, Any]] = None,
    body: str = "",
    access_token: Optional[str] = None,
    t: Optional[str] = None,
) -> SignedRequest:
    """
    Sign one request.

    With access_token=None the token-acquisition payload is used
    (access key + t + string to sign); otherwise the token is placed between
    the access key and the timestamp. `body` must already be serialized.
    """
    t = t or timestamp_ms()
    url = canonical_path(path, query)
    to_sign = string_to_sign(method, body, url)

    if access_token is None:
        payload = access_key + t + to_sign
    else:
        payload = access_key + access_token + t + to_sign

    return SignedRequest(
        t=t,
        path=url,
        client_id=access_key,
        sign=encrypt_str(payload, secret_key),
        access_token=access_token,
    )
