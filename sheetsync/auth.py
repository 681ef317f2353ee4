"""Service-account token exchange (JWT bearer grant).

The broker signs a fresh RS256 assertion per call with ``google-auth`` and
trades it for an access token with a single ``requests`` POST. Nothing is
cached between calls: a second ``acquire`` re-signs with a new timestamp.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional

import requests
from google.auth import crypt, jwt

from sheetsync.errors import BadCredential, PreconditionError, SignFailure, TokenMissing, TransportFailure

ASSERTION_LIFETIME = 3600
GRANT_TYPE = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_URI = "https://oauth2.googleapis.com/token"
_URI_PREFIXES = ("https://", "http://", "urn:")


@dataclass(frozen=True)
class ServiceIdentity:
    principal_id: str
    signing_key: str = field(repr=False)


@dataclass(frozen=True)
class Assertion:
    issuer: str
    scope: str
    audience: str
    issued_at: int
    expires_at: int

    def claims(self) -> Dict[str, Any]:
        return {"iss": self.issuer, "scope": self.scope, "aud": self.audience,
                "iat": self.issued_at, "exp": self.expires_at}


@dataclass(frozen=True)
class AccessToken:
    token: str = field(repr=False)
    obtained_at: float
    expires_in: int = ASSERTION_LIFETIME

    @property
    def expires_at(self) -> float:
        return self.obtained_at + self.expires_in

    def is_expired(self, now: float, skew: int = 60) -> bool:
        """True once ``now`` is within ``skew`` seconds of the expiry."""
        return now >= self.expires_at - skew


def check_uri(name: str, value: str) -> None:
    if not value or not value.startswith(_URI_PREFIXES) or value in _URI_PREFIXES:
        raise PreconditionError(f"{name} must be a non-empty URI, got {value!r}")


def build_assertion(identity: ServiceIdentity, scope: str, audience: str, now: int) -> Assertion:
    """Build the claim set for one token request; pure, no I/O."""
    if not identity.principal_id:
        raise PreconditionError("service principal id is empty")
    check_uri("scope", scope)
    check_uri("audience", audience)
    if isinstance(now, bool) or not isinstance(now, int) or now < 0:
        raise PreconditionError(f"now must be epoch seconds, got {now!r}")
    return Assertion(issuer=identity.principal_id, scope=scope, audience=audience,
                     issued_at=now, expires_at=now + ASSERTION_LIFETIME)


def load_signer(identity: ServiceIdentity) -> crypt.Signer:
    if not identity.signing_key or "PRIVATE KEY" not in identity.signing_key:
        raise BadCredential("private key missing or not PEM", operation="token")
    try:
        return crypt.RSASigner.from_string(identity.signing_key)
    except Exception as exc:  # the crypto backend raises ValueError/TypeError/its own errors
        raise BadCredential(f"private key rejected: {exc.__class__.__name__}", operation="token") from exc


def sign_assertion(signer: crypt.Signer, assertion: Assertion) -> str:
    try:
        signed = jwt.encode(signer, assertion.claims())
    except Exception as exc:
        raise SignFailure(f"could not sign assertion: {exc}", operation="token") from exc
    return signed.decode("utf-8") if isinstance(signed, bytes) else signed


class TokenBroker:
    """Exchange a signed assertion for an access token, one round trip per call."""

    def __init__(
        self,
        identity: ServiceIdentity,
        token_uri: str = TOKEN_URI,
        clock: Callable[[], float] = time.time,
        http_post: Callable[..., requests.Response] = requests.post,
        timeout: int = 30,
    ) -> None:
        self._identity = identity
        self.token_uri = token_uri
        self._clock = clock
        self._post = http_post
        self._timeout = timeout

    def acquire(self, scope: str, audience: Optional[str] = None) -> AccessToken:
        signer = load_signer(self._identity)
        now = int(self._clock())
        assertion = build_assertion(self._identity, scope, audience or self.token_uri, now)
        signed = sign_assertion(signer, assertion)
        try:
            r = self._post(
                self.token_uri,
                data={"grant_type": GRANT_TYPE, "assertion": signed},
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"token endpoint unreachable: {exc}", operation="token") from exc
        if not 200 <= r.status_code < 300:
            raise TransportFailure(f"HTTP {r.status_code} {_grant_error(r)}", operation="token",
                                   status=r.status_code)
        body = _token_body(r)
        return AccessToken(token=body["access_token"], obtained_at=float(now), expires_in=_expires_in(body))


def _grant_error(r: requests.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        return r.text[:160]
    if isinstance(body, dict):
        return " ".join(str(body[k]) for k in ("error", "error_description") if body.get(k))
    return r.text[:160]


def _token_body(r: requests.Response) -> Dict[str, Any]:
    try:
        body = r.json()
    except ValueError as exc:
        raise TokenMissing("token response is not JSON", operation="token", status=r.status_code) from exc
    token = body.get("access_token") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        raise TokenMissing("token response has no access_token", operation="token", status=r.status_code)
    return body


def _expires_in(body: Dict[str, Any]) -> int:
    val = body.get("expires_in")
    if isinstance(val, int) and not isinstance(val, bool) and val > 0:
        return val
    return ASSERTION_LIFETIME


__all__: Iterable[str] = (
    "ASSERTION_LIFETIME",
    "GRANT_TYPE",
    "TOKEN_URI",
    "ServiceIdentity",
    "Assertion",
    "AccessToken",
    "check_uri",
    "build_assertion",
    "load_signer",
    "sign_assertion",
    "TokenBroker",
)
