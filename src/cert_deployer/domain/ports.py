"""
Ports — Protocol-based interfaces for the workflow's collaborators.

These define WHAT the workflow needs without specifying HOW it's done:

  Workflow ← Ports (protocols) ← Adapters (implementations)

Each port is a Protocol (structural typing) so adapters satisfy the
contract simply by implementing the methods, and tests can substitute
plain mocks. Network-bound ports are async; signature verification is
pure CPU work and stays synchronous.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from railway.result import Result

from cert_deployer.domain.models import (
    Credential,
    DeploymentOutcome,
    EventRecord,
    InstanceRef,
    Notification,
    NotificationPayload,
    PublicKey,
    SecretUpdateRequest,
    SessionTokens,
)


@runtime_checkable
class PublicKeyResolver(Protocol):
    """
    Port: fetch the current notification signing key of an instance.

    Called once per invocation; implementations must not cache keys,
    since the certificate manager rotates them.
    """

    async def fetch_public_key(self, instance: InstanceRef) -> Result[PublicKey]: ...


@runtime_checkable
class SignatureVerifier(Protocol):
    """Port: verify a notification payload and decode it into an EventRecord."""

    def verify(self, payload: NotificationPayload, key: PublicKey) -> Result[EventRecord]: ...


@runtime_checkable
class CredentialExchanger(Protocol):
    """Port: exchange a long-lived API key for a (access, refresh) token pair."""

    async def exchange(self, credential: Credential) -> Result[SessionTokens]: ...


@runtime_checkable
class DeploymentTrigger(Protocol):
    """
    Port: ask the cluster control plane to update the ingress secret.

    Success means the update was ACCEPTED; it is applied asynchronously.
    """

    async def update_secret(
        self, tokens: SessionTokens, request: SecretUpdateRequest
    ) -> Result[DeploymentOutcome]: ...


@runtime_checkable
class DeploymentVerifier(Protocol):
    """Port: read the ingress secret state once and confirm it is APPLIED."""

    async def verify_secret(
        self, tokens: SessionTokens, request: SecretUpdateRequest
    ) -> Result[DeploymentOutcome]: ...


@runtime_checkable
class Notifier(Protocol):
    """Port: deliver one notification to the operators' channel."""

    async def notify(self, notification: Notification) -> Result[Notification]: ...
