"""
OAuth 1.0a HMAC-SHA1 signing for LTI 1.1.

Implements the subset of RFC 5849 that LTI 1.1 uses: HMAC-SHA1 only and an
always-empty token secret. Every parameter of the request (form body, query
string and ``oauth_*`` values) takes part in the signature. Everything here
is pure: no I/O, no clock access except in :func:`generate_oauth_params`.
"""

import base64
import hashlib
import hmac
import secrets
import time
import urllib.parse
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

Params = Union[Mapping[str, str], Iterable[Tuple[str, str]]]

DEFAULT_PORTS = {"http": 80, "https": 443}


def percent_encode(value: str) -> str:
    """RFC 3986 percent-encoding (only unreserved characters stay literal)."""
    return urllib.parse.quote(str(value), safe="~")


def _pairs(params: Params) -> List[Tuple[str, str]]:
    if isinstance(params, Mapping):
        items = params.items()
    else:
        items = params
    return [(str(k), "" if v is None else str(v)) for k, v in items]


def normalize_url(url: str) -> str:
    """Base string URI: scheme and host lower-cased, default port, query and
    fragment removed.

    Raises:
        ValueError: if the URL has no scheme/host or an invalid port
    """
    parts = urllib.parse.urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if not scheme or not host:
        raise ValueError(f"Not an absolute URL: {url!r}")
    port = parts.port
    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{host}:{port}"
    path = parts.path or "/"
    return f"{scheme}://{netloc}{path}"


def build_base_string(method: str, url: str, params: Params) -> str:
    """Signature base string ``METHOD&url&params``.

    ``oauth_signature`` is excluded; the remaining pairs are sorted by encoded
    key, then encoded value, so the input order never matters.
    """
    encoded = sorted(
        (percent_encode(k), percent_encode(v))
        for k, v in _pairs(params)
        if k != "oauth_signature"
    )
    param_string = "&".join(f"{k}={v}" for k, v in encoded)
    return "&".join([
        method.upper(),
        percent_encode(normalize_url(url)),
        percent_encode(param_string),
    ])


def sign(base_string: str, consumer_secret: str) -> str:
    signing_key = f"{percent_encode(consumer_secret)}&"
    digest = hmac.new(
        signing_key.encode("utf-8"),
        base_string.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_request(
    method: str, url: str, params: Params, consumer_secret: str
) -> str:
    return sign(build_base_string(method, url, params), consumer_secret)


def verify(
    params: Params,
    consumer_secret: str,
    url: str,
    method: str = "POST",
) -> bool:
    """Check ``oauth_signature`` against the recomputed one.

    Fails closed: a missing signature, a malformed URL or any encoding problem
    yields ``False`` rather than an exception.
    """
    try:
        pairs = _pairs(params)
        provided = [v for k, v in pairs if k == "oauth_signature"]
        if len(provided) != 1 or not provided[0]:
            return False
        expected = sign_request(method, url, pairs, consumer_secret)
        return hmac.compare_digest(
            provided[0].encode("utf-8"), expected.encode("utf-8")
        )
    except (ValueError, TypeError, UnicodeError):
        return False


def body_hash(body: Union[str, bytes]) -> str:
    """``oauth_body_hash`` value: base64 SHA-1 of the raw body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return base64.b64encode(hashlib.sha1(body).digest()).decode("ascii")


def generate_oauth_params(
    consumer_key: str,
    timestamp: Optional[int] = None,
    nonce: Optional[str] = None,
) -> Dict[str, str]:
    """Protocol parameters for an outbound signed request."""
    return {
        "oauth_consumer_key": consumer_key,
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(int(time.time()) if timestamp is None else timestamp),
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_version": "1.0",
    }


def authorization_header(params: Mapping[str, str]) -> str:
    """``Authorization: OAuth ...`` value built from the ``oauth_*`` params."""
    pairs = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"'
        for k, v in params.items()
        if k.startswith("oauth_")
    )
    return f"OAuth {pairs}"
