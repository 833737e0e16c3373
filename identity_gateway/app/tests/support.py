"""
Shared test helpers: RSA keys, ID token minting and a fake Entra ID / Graph
served through ``httpx.MockTransport``.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from identity_gateway.app.config import AuthConfig, create_auth_config


TENANT_ID = "test-tenant"
CLIENT_ID = "test-client-id"
CLIENT_SECRET = "test-client-secret"
REDIRECT_URI = "https://app.example.com/auth/callback"
SESSION_SECRET = "test-session-secret-0123456789abcdef"
SERVICE_PRINCIPAL_ID = "sp-object-id"
ISSUER = f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
TEST_KID = "test-key-id-2024"


def generate_test_keys():
    """Generate RSA key pair for testing"""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return private_pem.decode(), private_key.public_key()


# Generate test keys once for reuse
TEST_PRIVATE_KEY, TEST_PUBLIC_KEY = generate_test_keys()
OTHER_PRIVATE_KEY, _ = generate_test_keys()


def make_config(**overrides) -> AuthConfig:
    values = dict(
        tenant_id=TENANT_ID,
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        jwt_secret=SESSION_SECRET,
    )
    values.update(overrides)
    return create_auth_config(**values)


def create_mock_id_token(
    nonce: Optional[str] = "test-nonce",
    kid: str = TEST_KID,
    private_key: str = TEST_PRIVATE_KEY,
    exp_delta_minutes: int = 60,
    **claims: Any,
) -> str:
    """
    Create an ID token signed with the test private key.

    Keyword claims override the defaults; a claim set to None is removed.
    """
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "iss": ISSUER,
        "sub": "u1",
        "aud": CLIENT_ID,
        "exp": now + timedelta(minutes=exp_delta_minutes),
        "iat": now - timedelta(minutes=1),
        "nonce": nonce,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}

    return jwt.encode(payload, private_key, algorithm="RS256", headers={"kid": kid})


def create_mock_jwks(kid: str = TEST_KID) -> Dict[str, Any]:
    """JWKS document holding the test public key."""
    key = RSAAlgorithm.to_jwk(TEST_PUBLIC_KEY, as_dict=True)
    key.update({"kid": kid, "use": "sig", "alg": "RS256"})
    return {"keys": [key]}


class FakeIdentityServer:
    """
    Fake token, JWKS and Graph endpoints.

    Each attribute holds the ``httpx.Response`` (or a callable producing one)
    returned for that endpoint; ``requests`` records everything received.
    """

    def __init__(self, id_token: Optional[str] = None):
        self.requests: List[httpx.Request] = []
        self.token_response = httpx.Response(
            200,
            json={
                "token_type": "Bearer",
                "access_token": "graph-access-token",
                "id_token": id_token or create_mock_id_token(),
                "expires_in": 3599,
            },
        )
        self.jwks_response = httpx.Response(200, json=create_mock_jwks())
        self.app_roles_response = httpx.Response(200, json={"value": []})
        self.groups_response = httpx.Response(200, json={"value": []})

    def set_id_token(self, id_token: str) -> None:
        body = json.loads(self.token_response.content)
        body["id_token"] = id_token
        self.token_response = httpx.Response(200, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/oauth2/v2.0/token"):
            response = self.token_response
        elif path.endswith("/discovery/v2.0/keys"):
            response = self.jwks_response
        elif path.endswith("/me/appRoleAssignments"):
            response = self.app_roles_response
        elif "/me/transitiveMemberOf/" in path:
            response = self.groups_response
        else:
            return httpx.Response(404, json={"error": "not_found"})
        if isinstance(response, Exception):
            raise response
        # Fresh copy so one canned response can serve repeated requests.
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def calls_to(self, fragment: str) -> List[httpx.Request]:
        return [r for r in self.requests if fragment in r.url.path]
