"""
Unit tests for the capability map (middleware/authorization.py) and JWT
handling (services/auth_service.py).
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from jose import JWTError

from po_lifecycle.middleware.auth import get_current_user
from po_lifecycle.middleware.authorization import (
    Capability,
    capabilities_for,
    require_capability,
)
from po_lifecycle.services import auth_service


@pytest.fixture
def rsa_keys(monkeypatch):
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
    monkeypatch.setitem(auth_service._keys, "private", private_pem)
    monkeypatch.setitem(auth_service._keys, "public", public_pem)


# ---------------------------------------------------------------------------
# capabilities_for
# ---------------------------------------------------------------------------


def test_admin_has_every_capability():
    caps = capabilities_for("admin")
    assert Capability.GRN_POST in caps
    assert Capability.PAYMENT_UPDATE in caps
    assert Capability.APPROVAL_RESOLVE in caps


@pytest.mark.parametrize(
    "role, capability, allowed",
    [
        ("procurement", Capability.PO_SUBMIT, True),
        ("procurement", Capability.APPROVAL_RESOLVE, False),
        ("manager", Capability.APPROVAL_RESOLVE, True),
        ("manager", Capability.PO_CREATE, False),
        ("warehouse", Capability.GRN_POST, True),
        ("warehouse", Capability.PO_DISPATCH, False),
        ("finance", Capability.PAYMENT_UPDATE, True),
        ("vendor", Capability.PO_READ, False),
    ],
)
def test_role_capabilities(role, capability, allowed):
    assert (capability in capabilities_for(role)) is allowed


def test_unknown_role_has_no_capabilities():
    assert capabilities_for("intern") == frozenset()


@pytest.mark.asyncio
async def test_require_capability_rejects_with_403():
    check = require_capability(Capability.GRN_POST)

    with pytest.raises(HTTPException) as exc_info:
        await check(current_user={"user_id": "u1", "role": "procurement"})

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail["error"]["code"] == "INSUFFICIENT_PERMISSIONS"


@pytest.mark.asyncio
async def test_require_capability_allows_granted_role():
    check = require_capability(Capability.GRN_POST)
    assert await check(current_user={"user_id": "u1", "role": "warehouse"}) is None


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------


def test_access_token_round_trip(rsa_keys):
    token = auth_service.create_access_token("user-1", "manager", "m@example.com")

    claims = auth_service.verify_access_token(token)

    assert claims["sub"] == "user-1"
    assert claims["role"] == "manager"
    assert claims["type"] == "access"


def test_tampered_token_is_rejected(rsa_keys):
    token = auth_service.create_access_token("user-1", "manager", "m@example.com")

    with pytest.raises(JWTError):
        auth_service.verify_access_token(token[:-4] + "abcd")


@pytest.mark.asyncio
async def test_get_current_user_returns_claims(rsa_keys):
    token = auth_service.create_access_token("user-1", "warehouse", "w@example.com")

    user = await get_current_user(
        HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)
    )

    assert user == {"user_id": "user-1", "role": "warehouse", "email": "w@example.com"}


@pytest.mark.asyncio
async def test_get_current_user_rejects_garbage(rsa_keys):
    with pytest.raises(HTTPException) as exc_info:
        await get_current_user(
            HTTPAuthorizationCredentials(scheme="Bearer", credentials="not.a.jwt")
        )

    assert exc_info.value.status_code == 401
