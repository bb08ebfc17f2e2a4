"""
Workflow — the certificate deployment state machine.

Domain layer — pure orchestration. All I/O is injected via ports.

  Start ─ fetch key ─▶ KeyFetched ─ verify ─▶ PayloadVerified
    PayloadVerified ─ not cert_renewed ─▶ NotRenewal (done)
    PayloadVerified ─ exchange key ─▶ CredentialsExchanged ─ update secret ─▶ Deployed
    Deployed ─ wait, read state ─▶ Verified (done)
  Any step ─▶ Failed (absorbing)

Stages are chained on the railway: a failure short-circuits everything
after it. Deployment-stage failures (rejected update, failed verification)
are also reported through the Notifier; a notification that cannot be
delivered never replaces the deployment outcome.

The verification runs as its own task after a fixed delay. If the
cancellation event fires or the deadline passes first, the task is
cancelled and the invocation still succeeds with VERIFICATION_SKIPPED:
the update was accepted, only its confirmation was lost.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeAlias

import structlog
from railway import FailureDescription
from railway.result import Failure, Result

from cert_deployer.domain.errors import MalformedEventError, VerificationError
from cert_deployer.domain.models import (
    DeploymentOutcome,
    EventRecord,
    Notification,
    NotificationLevel,
    NotificationPayload,
    SecretUpdateRequest,
    SessionTokens,
    WorkflowConfig,
    WorkflowReport,
    WorkflowState,
)
from cert_deployer.domain.ports import (
    CredentialExchanger,
    DeploymentTrigger,
    DeploymentVerifier,
    Notifier,
    PublicKeyResolver,
    SignatureVerifier,
)

log = structlog.get_logger()

DEFAULT_VERIFICATION_DELAY_SECONDS = 60.0

Sleep: TypeAlias = Callable[[float], Awaitable[object]]


class CertificateDeploymentWorkflow:
    """
    Propagate one renewed certificate into a cluster's ingress secret.

    One instance serves one invocation: it holds the invocation's
    configuration and collaborators and keeps no state between runs,
    so running the same notification twice performs the whole
    workflow twice.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        key_resolver: PublicKeyResolver,
        signature_verifier: SignatureVerifier,
        credential_exchanger: CredentialExchanger,
        deployment_trigger: DeploymentTrigger,
        deployment_verifier: DeploymentVerifier,
        notifier: Notifier,
        verification_delay: float = DEFAULT_VERIFICATION_DELAY_SECONDS,
        verification_deadline: float | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._key_resolver = key_resolver
        self._signature_verifier = signature_verifier
        self._credential_exchanger = credential_exchanger
        self._deployment_trigger = deployment_trigger
        self._deployment_verifier = deployment_verifier
        self._notifier = notifier
        self._verification_delay = verification_delay
        self._verification_deadline = verification_deadline
        self._sleep = sleep

    async def run(
        self,
        payload: NotificationPayload,
        cancel: asyncio.Event | None = None,
    ) -> Result[WorkflowReport]:
        """
        Execute the workflow for one notification.

        Flow:
          1. Fetch the instance public key (fresh, never cached)
          2. Verify the payload against it and decode the event
          3. Stop here unless the event is cert_renewed
          4. Exchange the API key for session tokens
          5. Update the ingress secret (accepted asynchronously)
          6. After the delay, confirm the secret state is applied
          7. Notify the outcome

        Returns Result[WorkflowReport] on success, or the failure of the
        first failing stage.
        """
        log.info("workflow.started", region=self._config.instance.region)
        key = await self._key_resolver.fetch_public_key(self._config.instance)
        event = key.flat_map(lambda public_key: self._signature_verifier.verify(payload, public_key))
        return await event.flat_map_async(lambda verified: self._dispatch(verified, cancel))

    async def _dispatch(
        self, event: EventRecord, cancel: asyncio.Event | None
    ) -> Result[WorkflowReport]:
        if not event.is_renewal:
            log.info("workflow.event_ignored", event_type=event.event_type)
            return Result.success(WorkflowReport(state=WorkflowState.NOT_RENEWAL, event=event))

        return await self._secret_update_request(event).flat_map_async(
            lambda request: self._deploy(event, request, cancel)
        )

    def _secret_update_request(self, event: EventRecord) -> Result[SecretUpdateRequest]:
        certificate = event.certificate
        if certificate is None:
            return MalformedEventError(
                "The cert_renewed notification does not name a certificate."
            ).to_result()
        if event.ignored_certificates:
            log.warning("workflow.extra_certificates_ignored", ignored=event.ignored_certificates)
        return Result.success(
            SecretUpdateRequest(
                cert_crn=certificate.cert_crn,
                cluster_id=self._config.cluster_id,
                secret_name=self._config.secret_name,
            )
        )

    async def _deploy(
        self,
        event: EventRecord,
        request: SecretUpdateRequest,
        cancel: asyncio.Event | None,
    ) -> Result[WorkflowReport]:
        tokens = await self._credential_exchanger.exchange(self._config.credential)
        return await tokens.flat_map_async(
            lambda session: self._trigger_and_verify(event, request, session, cancel)
        )

    async def _trigger_and_verify(
        self,
        event: EventRecord,
        request: SecretUpdateRequest,
        tokens: SessionTokens,
        cancel: asyncio.Event | None,
    ) -> Result[WorkflowReport]:
        accepted = await self._deployment_trigger.update_secret(tokens, request)
        if accepted.is_failure():
            return await self._report_failure(accepted.error())

        verified = await self._scheduled_verification(tokens, request, cancel)
        if verified.is_failure():
            return await self._report_failure(verified.error())

        outcome = verified.value()
        if outcome is DeploymentOutcome.VERIFICATION_SKIPPED:
            return Result.success(
                WorkflowReport(state=WorkflowState.DEPLOYED, event=event, outcome=outcome)
            )

        delivered = await self._notifier.notify(
            Notification(
                level=NotificationLevel.SUCCESS,
                text=f"ALB Secret updated in cluster {request.cluster_id}.",
            )
        )
        delivered.peek_failure(_log_delivery_failure)
        log.info("workflow.completed", cluster_id=request.cluster_id, outcome=outcome.value)
        return Result.success(
            WorkflowReport(
                state=WorkflowState.VERIFIED,
                event=event,
                outcome=outcome,
                notification_error=delivered.either(lambda _: None, lambda err: err.message),
            )
        )

    async def _scheduled_verification(
        self,
        tokens: SessionTokens,
        request: SecretUpdateRequest,
        cancel: asyncio.Event | None,
    ) -> Result[DeploymentOutcome]:
        """Run the delayed verification, racing it against cancellation and the deadline."""
        verification = asyncio.create_task(
            self._verify_after_delay(tokens, request), name="alb-secret-verification"
        )
        waiters: set[asyncio.Task] = {verification}
        cancelled: asyncio.Task | None = None
        if cancel is not None:
            cancelled = asyncio.create_task(cancel.wait(), name="invocation-cancelled")
            waiters.add(cancelled)

        try:
            done, pending = await asyncio.wait(
                waiters,
                timeout=self._verification_deadline,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if verification in done:
            try:
                return verification.result()
            except Exception as e:
                log.error("workflow.verification_crashed", error=type(e).__name__, exc_info=True)
                return VerificationError(
                    "Couldn't verify the certificate secret. Reason: unexpected error.",
                    DeploymentOutcome.VERIFY_FAILED,
                ).to_result()

        log.warning(
            "workflow.verification_skipped",
            reason="cancelled" if cancelled in done else "deadline",
            cluster_id=request.cluster_id,
            secret_name=request.secret_name,
        )
        return Result.success(DeploymentOutcome.VERIFICATION_SKIPPED)

    async def _verify_after_delay(
        self, tokens: SessionTokens, request: SecretUpdateRequest
    ) -> Result[DeploymentOutcome]:
        log.info("workflow.verification_scheduled", delay_seconds=self._verification_delay)
        await self._sleep(self._verification_delay)
        return await self._deployment_verifier.verify_secret(tokens, request)

    async def _report_failure(self, failure: FailureDescription) -> Result[WorkflowReport]:
        """Notify a deployment-stage failure; the original failure is always returned."""
        log.error("workflow.deployment_failed", error_code=failure.code.value, message=failure.message)
        delivered = await self._notifier.notify(
            Notification(level=NotificationLevel.FAILURE, text=failure.message)
        )
        delivered.peek_failure(_log_delivery_failure)
        return Failure(failure)


def _log_delivery_failure(failure: FailureDescription) -> None:
    log.error("notification.delivery_failed", message=failure.message)
