from __future__ import annotations

import json
from typing import Any, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from googleapiclient.http import HttpMockSequence

from sheetsync.auth import ServiceIdentity

PRINCIPAL = "svc-returns@example-project.iam.gserviceaccount.com"


@pytest.fixture(scope="session")
def rsa_keypair():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()
    return private_pem, public_pem


@pytest.fixture
def identity(rsa_keypair) -> ServiceIdentity:
    return ServiceIdentity(PRINCIPAL, rsa_keypair[0])


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else json.dumps(body)

    def json(self) -> Any:
        if self._body is None:
            return json.loads(self.text)
        return self._body


class RecordingHttp(HttpMockSequence):
    """HttpMockSequence that keeps (uri, method, body) of every request, and its headers."""

    def __init__(self, iterable) -> None:
        super().__init__(iterable)
        self.calls: List[tuple] = []
        self.headers: List[dict] = []

    def request(self, uri, method="GET", body=None, headers=None, **kwargs):
        self.calls.append((uri, method, body))
        self.headers.append(dict(headers or {}))
        return super().request(uri, method=method, body=body, headers=headers, **kwargs)


def ok(body: Any) -> tuple:
    return ({"status": "200"}, json.dumps(body))


def error(status: int, message: str, code_status: str = "") -> tuple:
    err = {"code": status, "message": message}
    if code_status:
        err["status"] = code_status
    return ({"status": str(status)}, json.dumps({"error": err}))
