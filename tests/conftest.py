"""
Shared test fixtures and helpers for the cert-deployer test suite.

Provides RSA key pairs generated with cryptography and a helper that
signs notification claims the way the certificate manager does (RS256
compact JWS), so every test verifies real signatures.
"""

from __future__ import annotations

from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey

from cert_deployer.domain.models import (
    CERT_RENEWED,
    Credential,
    InstanceRef,
    PublicKey,
    WorkflowConfig,
)

INSTANCE_CRN = (
    "crn:v1:bluemix:public:cloudcerts:us-south:a/1234567890abcdef:"
    "11111111-2222-3333-4444-555555555555::"
)
CERT_CRN = f"{INSTANCE_CRN[:-2]}certificate:0123456789abcdef0123456789abcdef"
CLUSTER_ID = "c0ffee1234"
SECRET_NAME = "ingress-tls"
API_KEY = "test-api-key"
SLACK_WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXXX"
SLACK_CHANNEL = "#deployments"


def generate_private_key() -> RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def public_pem(private_key: RSAPrivateKey) -> str:
    """PEM (SubjectPublicKeyInfo) encoding of the key's public half."""
    return private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def sign_claims(private_key: RSAPrivateKey, claims: dict[str, Any], algorithm: str = "RS256") -> str:
    """Sign claims into a compact JWS, as a notification payload."""
    return jwt.encode(claims, private_key, algorithm=algorithm)


def renewal_claims(cert_crn: str = CERT_CRN, **extra: Any) -> dict[str, Any]:
    """Claims of a cert_renewed notification for one certificate."""
    return {
        "instance_crn": INSTANCE_CRN,
        "event_type": CERT_RENEWED,
        "certificates": [
            {"cert_crn": cert_crn, "name": "api.example.com", "domains": ["api.example.com"]},
        ],
        **extra,
    }


@pytest.fixture(scope="session")
def signing_key() -> RSAPrivateKey:
    """The instance's notification signing key."""
    return generate_private_key()


@pytest.fixture(scope="session")
def other_signing_key() -> RSAPrivateKey:
    """A key that does NOT belong to the instance."""
    return generate_private_key()


@pytest.fixture(scope="session")
def public_key(signing_key: RSAPrivateKey) -> PublicKey:
    return PublicKey(pem=public_pem(signing_key))


@pytest.fixture()
def instance() -> InstanceRef:
    return InstanceRef(INSTANCE_CRN)


@pytest.fixture()
def workflow_config(instance: InstanceRef) -> WorkflowConfig:
    return WorkflowConfig(
        instance=instance,
        credential=Credential(api_key=API_KEY),
        cluster_id=CLUSTER_ID,
        secret_name=SECRET_NAME,
        slack_webhook=SLACK_WEBHOOK,
        slack_channel=SLACK_CHANNEL,
    )


@pytest.fixture()
def invocation_params(signing_key: RSAPrivateKey) -> dict[str, Any]:
    """Raw invocation parameters carrying a valid signed renewal notification."""
    return {
        "instanceCrn": INSTANCE_CRN,
        "data": sign_claims(signing_key, renewal_claims()),
        "apiKey": API_KEY,
        "clusterId": CLUSTER_ID,
        "secretName": SECRET_NAME,
        "slackWebHook": SLACK_WEBHOOK,
        "slackChannel": SLACK_CHANNEL,
    }
