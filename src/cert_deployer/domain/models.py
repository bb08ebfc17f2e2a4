"""
Domain models — immutable value objects for one certificate deployment.

These are pure value objects with no behavior beyond self-validation.
Secrets (API key, session tokens, the signed payload, the webhook URL) are
excluded from repr so they never end up in logs or tracebacks.

All models are frozen dataclasses; nothing here is cached or shared
between invocations.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from urllib.parse import quote

CERT_RENEWED = "cert_renewed"


@dataclass(frozen=True, slots=True)
class InstanceRef:
    """
    CRN of a certificate manager service instance.

    Format: crn:v1:<cname>:<ctype>:<service>:<region>:<scope>:<instance>::
    The region (segment 5) selects the regional API endpoint.
    """

    crn: str

    def __post_init__(self) -> None:
        segments = self.crn.split(":")
        if len(segments) < 6 or segments[0] != "crn" or not segments[5]:
            raise ValueError(f"not a valid instance CRN: {self.crn!r}")

    @property
    def region(self) -> str:
        return self.crn.split(":")[5]

    @property
    def encoded(self) -> str:
        """The CRN percent-encoded for use as a single URL path segment."""
        return quote(self.crn, safe="")


@dataclass(frozen=True, slots=True)
class PublicKey:
    """PEM-encoded notification signing key, fetched fresh per invocation."""

    pem: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class NotificationPayload:
    """The signed, encoded notification as received (a compact JWS)."""

    token: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class CertificateRef:
    """One certificate entry of a lifecycle notification."""

    cert_crn: str
    name: str | None = None
    domains: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class EventRecord:
    """
    Decoded certificate lifecycle event.

    Only a cert_renewed event carries a decoded certificate, its
    `certificates[0]`; the entries after it are counted, never decoded.
    Other event types are recorded by type alone.
    """

    event_type: str
    certificate: CertificateRef | None = None
    ignored_certificates: int = 0
    instance_crn: str | None = None

    @property
    def is_renewal(self) -> bool:
        return self.event_type == CERT_RENEWED


@dataclass(frozen=True, slots=True)
class Credential:
    """Long-lived API key. Never logged, never persisted."""

    api_key: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class SessionTokens:
    """
    Short-lived IAM token pair, scoped to one invocation.

    The ALB API requires both:
      - Authorization: Bearer {access_token}
      - X-Auth-Refresh-Token: Bearer {refresh_token}
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)


@dataclass(frozen=True, slots=True)
class SecretUpdateRequest:
    """Target state of the cluster's ingress secret."""

    cert_crn: str
    cluster_id: str
    secret_name: str


class DeploymentOutcome(StrEnum):
    """Status of an ingress secret update as observed by this workflow."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    APPLIED = "applied"
    NOT_YET_APPLIED = "not-yet-applied"
    VERIFY_FAILED = "verify-failed"
    VERIFICATION_SKIPPED = "verification-skipped"


class WorkflowState(StrEnum):
    """States of the deployment workflow; FAILED is absorbing."""

    START = "start"
    KEY_FETCHED = "key-fetched"
    PAYLOAD_VERIFIED = "payload-verified"
    NOT_RENEWAL = "not-renewal"
    CREDENTIALS_EXCHANGED = "credentials-exchanged"
    DEPLOYED = "deployed"
    VERIFIED = "verified"
    FAILED = "failed"


class NotificationLevel(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True, slots=True)
class Notification:
    """A human-readable message about a terminal deployment outcome."""

    level: NotificationLevel
    text: str


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """
    Everything one invocation needs to know about its target.

    Built once by the composition root from the invocation parameters and
    handed to the workflow; leaf components never read the environment.
    """

    instance: InstanceRef
    credential: Credential
    cluster_id: str
    secret_name: str
    slack_webhook: str = field(repr=False)
    slack_channel: str


@dataclass(frozen=True, slots=True)
class WorkflowReport:
    """
    The successful end of one invocation.

    `notification_error` is set when the deployment succeeded but the
    success notification could not be delivered.
    """

    state: WorkflowState
    event: EventRecord | None = None
    outcome: DeploymentOutcome | None = None
    notification_error: str | None = None
