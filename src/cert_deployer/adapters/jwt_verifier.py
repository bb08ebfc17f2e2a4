"""
Notification signature verifier — JWS verification + claim decoding.

Adapter layer — implements the SignatureVerifier port using:
  - PyJWT: signature and registered-claim (exp, nbf, iat) verification
  - cryptography (PyCA, via PyJWT's RSA/EC support): PEM key loading

Pipeline:
  signed payload (compact JWS)
    → jwt.decode(token, pem, algorithms=[...])   # any failure → InvalidSignatureError
    → claim shape validation                     # unknown shape → MalformedEventError
    → EventRecord (domain model)

Key design decision: the accepted algorithms are fixed by configuration and
never taken from the token header, so a token cannot downgrade itself to
"none" or to an HMAC keyed with the public key.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import jwt
import structlog
from railway.result import Result

from cert_deployer.domain.errors import InvalidSignatureError, MalformedEventError
from cert_deployer.domain.models import (
    CERT_RENEWED,
    CertificateRef,
    EventRecord,
    NotificationPayload,
    PublicKey,
)

log = structlog.get_logger()

DEFAULT_ALGORITHMS: tuple[str, ...] = ("RS256",)


class JwtSignatureVerifier:
    """
    Verify certificate manager notifications with the instance public key.

    Implements the SignatureVerifier port. Stateless: the key is passed in
    on every call and never retained.
    """

    def __init__(self, algorithms: Sequence[str] = DEFAULT_ALGORITHMS) -> None:
        self._algorithms = list(algorithms)

    def verify(self, payload: NotificationPayload, key: PublicKey) -> Result[EventRecord]:
        """
        Verify the payload signature and decode its claims.

        Returns Result[EventRecord] on success,
        Result.failure(InvalidSignatureError) when verification fails,
        Result.failure(MalformedEventError) when the claims are not an event.
        """
        try:
            claims = jwt.decode(payload.token, key.pem, algorithms=self._algorithms)
        except jwt.InvalidKeyError as e:
            log.warning("notification.public_key_unusable", reason=type(e).__name__)
            return InvalidSignatureError(
                "The notification payload could not be verified with the instance public key."
            ).to_result()
        except jwt.PyJWTError as e:
            log.warning("notification.signature_invalid", reason=type(e).__name__)
            return InvalidSignatureError(
                f"The notification payload failed signature verification: {type(e).__name__}."
            ).to_result()

        try:
            event = _decode_event(claims)
        except MalformedEventError as e:
            return e.to_result()
        log.info(
            "notification.verified",
            event_type=event.event_type,
            certificate=event.certificate.cert_crn if event.certificate else None,
        )
        return Result.success(event)


def _decode_event(claims: dict[str, Any]) -> EventRecord:
    """
    Build an EventRecord from verified claims, failing closed on unknown shapes.

    Certificates are read for cert_renewed events only, and only the first
    entry is decoded; anything else in the array is left untouched.
    """
    event_type = claims.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventError("The notification payload has no event_type.")

    instance_crn = claims.get("instance_crn")
    if not isinstance(instance_crn, str):
        instance_crn = None
    if event_type != CERT_RENEWED:
        return EventRecord(event_type=event_type, instance_crn=instance_crn)

    raw_certificates = claims.get("certificates", [])
    if not isinstance(raw_certificates, list):
        raise MalformedEventError("The notification payload certificates must be a list.")

    return EventRecord(
        event_type=event_type,
        certificate=_decode_certificate(raw_certificates[0]) if raw_certificates else None,
        ignored_certificates=max(len(raw_certificates) - 1, 0),
        instance_crn=instance_crn,
    )


def _decode_certificate(entry: Any) -> CertificateRef:
    if not isinstance(entry, dict):
        raise MalformedEventError("The notification payload has a malformed certificate entry.")
    cert_crn = entry.get("cert_crn")
    if not isinstance(cert_crn, str) or not cert_crn:
        raise MalformedEventError("The notification payload has a certificate entry without cert_crn.")
    name = entry.get("name")
    domains = entry.get("domains", [])
    return CertificateRef(
        cert_crn=cert_crn,
        name=name if isinstance(name, str) else None,
        domains=tuple(d for d in domains if isinstance(d, str)) if isinstance(domains, list) else (),
    )
