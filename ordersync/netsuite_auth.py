"""NetSuite token-based authentication.

NetSuite's REST web services authenticate every request with an OAuth 1.0a
signature built from the integration's consumer key/secret and an access
token. There is no token exchange: each request is signed independently.
"""

import base64
import hashlib
import hmac
import secrets
import time
from typing import Dict, Generator, Optional
from urllib.parse import quote

import httpx

SIGNATURE_DIGESTS = {
    "HMAC-SHA256": hashlib.sha256,
    "HMAC-SHA1": hashlib.sha1,
}


def _encode(value) -> str:
    """RFC 3986 percent-encoding as OAuth 1.0a requires."""
    return quote(str(value), safe="~")


class NetSuiteOAuth1(httpx.Auth):
    """httpx auth flow that signs requests for NetSuite TBA."""

    def __init__(
        self,
        account_id: str,
        consumer_key: str,
        consumer_secret: str,
        token_id: str,
        token_secret: str,
        signature_method: str = "HMAC-SHA256",
    ):
        """Initialize signer.

        Args:
            account_id: NetSuite account ID, sent as the OAuth realm
            consumer_key: Integration record consumer key
            consumer_secret: Integration record consumer secret
            token_id: Access token ID
            token_secret: Access token secret
            signature_method: HMAC-SHA256 or HMAC-SHA1
        """
        if signature_method not in SIGNATURE_DIGESTS:
            raise ValueError(f"Unsupported signature method: {signature_method}")
        self.realm = account_id.upper().replace("-", "_")
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.token_id = token_id
        self.token_secret = token_secret
        self.signature_method = signature_method

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = self.build_header(request.method, request.url)
        yield request

    def build_header(
        self,
        method: str,
        url: httpx.URL,
        timestamp: Optional[int] = None,
        nonce: Optional[str] = None,
    ) -> str:
        """Build the Authorization header for one request.

        Args:
            method: HTTP method
            url: Full request URL including query parameters
            timestamp: Override for the OAuth timestamp (tests)
            nonce: Override for the OAuth nonce (tests)

        Returns:
            Header value starting with 'OAuth realm='
        """
        oauth_params = {
            "oauth_consumer_key": self.consumer_key,
            "oauth_token": self.token_id,
            "oauth_signature_method": self.signature_method,
            "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
            "oauth_nonce": nonce or secrets.token_hex(16),
            "oauth_version": "1.0",
        }
        oauth_params["oauth_signature"] = self.sign(method, url, oauth_params)

        fields = ", ".join(f'{key}="{_encode(value)}"' for key, value in oauth_params.items())
        return f'OAuth realm="{self.realm}", {fields}'

    def sign(self, method: str, url: httpx.URL, oauth_params: Dict[str, str]) -> str:
        """Compute the base64 HMAC signature for a request."""
        url = httpx.URL(url)
        path = url.raw_path.split(b"?", 1)[0].decode("ascii")
        base_url = f"{url.scheme.lower()}://{url.netloc.decode('ascii').lower()}{path}"

        # Query parameters are signed together with the oauth_* values
        pairs = [(_encode(k), _encode(v)) for k, v in url.params.multi_items()]
        pairs.extend((_encode(k), _encode(v)) for k, v in oauth_params.items())
        param_string = "&".join(f"{k}={v}" for k, v in sorted(pairs))

        base_string = "&".join([method.upper(), _encode(base_url), _encode(param_string)])
        signing_key = f"{_encode(self.consumer_secret)}&{_encode(self.token_secret)}"

        digest = hmac.new(
            signing_key.encode("utf-8"),
            base_string.encode("utf-8"),
            SIGNATURE_DIGESTS[self.signature_method],
        ).digest()
        return base64.b64encode(digest).decode("ascii")
