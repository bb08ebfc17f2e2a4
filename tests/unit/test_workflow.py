"""
Unit tests for the deployment workflow — the state machine over the ports.

Uses mock ports (AsyncMock for network-bound ports, MagicMock for the
synchronous verifier) to test the workflow in isolation. The verification
delay goes through an injected fake sleep, so no test waits in real time.

Test categories:
  - Success track: renewal → exchange → update → delay → verify → one success notification
  - Ignored events: non-renewal stops after verification, nothing else is called
  - Signed event shapes: only certificates[0] of a renewal is inspected
  - Failure at each stage: short-circuits, with failure notifications only
    for deployment-stage failures
  - Notification failures never replace the deployment outcome
  - Cancellation and deadline: verification skipped, invocation still succeeds
  - Replay: the same notification runs the whole workflow again
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey
from railway import ErrorCode, Result, ResultAssertions
from structlog.testing import capture_logs

from cert_deployer.adapters.jwt_verifier import JwtSignatureVerifier
from cert_deployer.domain.errors import (
    AuthError,
    DeploymentRejectedError,
    InvalidSignatureError,
    KeyFetchError,
    NotificationDeliveryError,
    VerificationError,
)
from cert_deployer.domain.models import (
    CertificateRef,
    DeploymentOutcome,
    EventRecord,
    Notification,
    NotificationLevel,
    NotificationPayload,
    PublicKey,
    SecretUpdateRequest,
    SessionTokens,
    WorkflowConfig,
    WorkflowState,
)
from cert_deployer.workflow import CertificateDeploymentWorkflow
from tests.conftest import CERT_CRN, CLUSTER_ID, SECRET_NAME, renewal_claims, sign_claims

PAYLOAD = NotificationPayload(token="signed.payload.token")
KEY = PublicKey(pem="-----BEGIN PUBLIC KEY-----\n...\n-----END PUBLIC KEY-----\n")
TOKENS = SessionTokens(access_token="access", refresh_token="refresh")
RENEWAL = EventRecord(event_type="cert_renewed", certificate=CertificateRef(cert_crn=CERT_CRN))
EXPECTED_REQUEST = SecretUpdateRequest(cert_crn=CERT_CRN, cluster_id=CLUSTER_ID, secret_name=SECRET_NAME)


class Ports:
    """All six ports, mocked, succeeding by default, recording call order."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.delays: list[float] = []

        self.key_resolver = AsyncMock()
        self.key_resolver.fetch_public_key.side_effect = self._record("fetch_key", Result.success(KEY))
        self.signature_verifier = MagicMock()
        self.signature_verifier.verify.side_effect = self._record_sync("verify", Result.success(RENEWAL))
        self.credential_exchanger = AsyncMock()
        self.credential_exchanger.exchange.side_effect = self._record("exchange", Result.success(TOKENS))
        self.deployment_trigger = AsyncMock()
        self.deployment_trigger.update_secret.side_effect = self._record(
            "update", Result.success(DeploymentOutcome.ACCEPTED)
        )
        self.deployment_verifier = AsyncMock()
        self.deployment_verifier.verify_secret.side_effect = self._record(
            "read_state", Result.success(DeploymentOutcome.APPLIED)
        )
        self.notifier = AsyncMock()
        self.notifier.notify.side_effect = self._notified

    def _record(self, name: str, result: Result):
        async def side_effect(*args, **kwargs):
            self.calls.append(name)
            return result

        return side_effect

    def _record_sync(self, name: str, result: Result):
        def side_effect(*args, **kwargs):
            self.calls.append(name)
            return result

        return side_effect

    async def _notified(self, notification: Notification) -> Result[Notification]:
        self.calls.append(f"notify:{notification.level.value}")
        return Result.success(notification)

    async def sleep(self, seconds: float) -> None:
        self.calls.append("sleep")
        self.delays.append(seconds)

    def workflow(self, config: WorkflowConfig, **kwargs) -> CertificateDeploymentWorkflow:
        kwargs.setdefault("sleep", self.sleep)
        return CertificateDeploymentWorkflow(
            config=config,
            key_resolver=self.key_resolver,
            signature_verifier=self.signature_verifier,
            credential_exchanger=self.credential_exchanger,
            deployment_trigger=self.deployment_trigger,
            deployment_verifier=self.deployment_verifier,
            notifier=self.notifier,
            **kwargs,
        )

    def notifications(self) -> list[Notification]:
        return [call.args[0] for call in self.notifier.notify.call_args_list]


@pytest.fixture()
def ports() -> Ports:
    return Ports()


# ─────────────────────── Success Track ───────────────────────


class TestWorkflowSuccess:
    """
    GIVEN a verified cert_renewed event and collaborators that all succeed
    WHEN the workflow runs
    THEN the secret is updated, confirmed after the delay and one success
    notification is sent.
    """

    async def test_returns_verified_report(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        result = await ports.workflow(workflow_config).run(PAYLOAD)

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.VERIFIED
        assert report.outcome is DeploymentOutcome.APPLIED
        assert report.event == RENEWAL
        assert report.notification_error is None

    async def test_steps_run_in_order_with_delay_before_read(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        """
        GIVEN all ports succeed
        WHEN the workflow runs
        THEN every step runs exactly once, and the state read happens only
        after the configured delay has elapsed.
        """
        await ports.workflow(workflow_config, verification_delay=60).run(PAYLOAD)

        assert ports.calls == [
            "fetch_key",
            "verify",
            "exchange",
            "update",
            "sleep",
            "read_state",
            "notify:success",
        ]
        assert ports.delays == [60]

    async def test_passes_values_between_steps(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        await ports.workflow(workflow_config).run(PAYLOAD)

        ports.key_resolver.fetch_public_key.assert_awaited_once_with(workflow_config.instance)
        ports.signature_verifier.verify.assert_called_once_with(PAYLOAD, KEY)
        ports.credential_exchanger.exchange.assert_awaited_once_with(workflow_config.credential)
        ports.deployment_trigger.update_secret.assert_awaited_once_with(TOKENS, EXPECTED_REQUEST)
        ports.deployment_verifier.verify_secret.assert_awaited_once_with(TOKENS, EXPECTED_REQUEST)

    async def test_success_notification_names_cluster(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        await ports.workflow(workflow_config).run(PAYLOAD)

        assert ports.notifications() == [
            Notification(
                level=NotificationLevel.SUCCESS,
                text=f"ALB Secret updated in cluster {CLUSTER_ID}.",
            )
        ]

    async def test_only_first_certificate_is_deployed(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        """
        GIVEN a renewal naming two certificates
        WHEN the workflow runs
        THEN exactly one update is made, for certificates[0].
        """
        event = EventRecord(
            event_type="cert_renewed",
            certificate=CertificateRef(cert_crn=CERT_CRN),
            ignored_certificates=1,
        )
        ports.signature_verifier.verify.side_effect = None
        ports.signature_verifier.verify.return_value = Result.success(event)

        await ports.workflow(workflow_config).run(PAYLOAD)

        ports.deployment_trigger.update_secret.assert_awaited_once_with(TOKENS, EXPECTED_REQUEST)


# ─────────────────────── Ignored Events ───────────────────────


class TestNonRenewalEvent:
    """
    GIVEN a verified event that is not cert_renewed
    WHEN the workflow runs
    THEN it succeeds without exchanging credentials, deploying or notifying.
    """

    async def test_stops_after_verification(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        ignored = EventRecord(event_type="cert_about_to_expire")
        ports.signature_verifier.verify.side_effect = None
        ports.signature_verifier.verify.return_value = Result.success(ignored)

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.NOT_RENEWAL
        assert report.event == ignored
        ports.credential_exchanger.exchange.assert_not_called()
        ports.deployment_trigger.update_secret.assert_not_called()
        ports.deployment_verifier.verify_secret.assert_not_called()
        ports.notifier.notify.assert_not_called()


class TestSignedEventShapes:
    """
    GIVEN real signed payloads decoded by JwtSignatureVerifier
    WHEN the workflow runs
    THEN only certificates[0] of a cert_renewed event is ever inspected.
    """

    @pytest.fixture()
    def signed_ports(self, ports: Ports, public_key: PublicKey) -> Ports:
        ports.key_resolver.fetch_public_key.side_effect = None
        ports.key_resolver.fetch_public_key.return_value = Result.success(public_key)
        ports.signature_verifier = JwtSignatureVerifier()
        return ports

    @pytest.mark.parametrize(
        "certificates",
        [[{"name": "x"}], ["crn:x"], {"cert_crn": CERT_CRN}, []],
    )
    async def test_non_renewal_succeeds_whatever_its_certificates(
        self,
        signed_ports: Ports,
        workflow_config: WorkflowConfig,
        signing_key: RSAPrivateKey,
        certificates: object,
    ) -> None:
        token = sign_claims(signing_key, {"event_type": "cert_expired", "certificates": certificates})

        result = await signed_ports.workflow(workflow_config).run(NotificationPayload(token=token))

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.NOT_RENEWAL
        signed_ports.credential_exchanger.exchange.assert_not_called()
        signed_ports.notifier.notify.assert_not_called()

    async def test_malformed_trailing_certificate_is_ignored(
        self,
        signed_ports: Ports,
        workflow_config: WorkflowConfig,
        signing_key: RSAPrivateKey,
    ) -> None:
        claims = renewal_claims()
        claims["certificates"].append({"name": "other"})
        token = sign_claims(signing_key, claims)

        with capture_logs() as logs:
            result = await signed_ports.workflow(workflow_config).run(NotificationPayload(token=token))

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.VERIFIED
        signed_ports.deployment_trigger.update_secret.assert_awaited_once_with(TOKENS, EXPECTED_REQUEST)
        [warning] = [e for e in logs if e["event"] == "workflow.extra_certificates_ignored"]
        assert warning["ignored"] == 1


# ─────────────────────── Failures Before Deployment ───────────────────────


class TestFailuresBeforeDeployment:
    """
    GIVEN a failure before the update is attempted
    WHEN the workflow runs
    THEN it returns that failure, later stages are never called and no
    notification is sent.
    """

    async def test_key_fetch_failure(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        ports.key_resolver.fetch_public_key.side_effect = None
        ports.key_resolver.fetch_public_key.return_value = KeyFetchError("no key", status=404).to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert failure.exception.status == 404
        ports.signature_verifier.verify.assert_not_called()
        ports.notifier.notify.assert_not_called()

    async def test_invalid_signature_always_aborts(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        ports.signature_verifier.verify.side_effect = None
        ports.signature_verifier.verify.return_value = InvalidSignatureError("forged").to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        ResultAssertions.assert_failure(result, ErrorCode.AUTHENTICATION_ERROR)
        ports.credential_exchanger.exchange.assert_not_called()
        ports.deployment_trigger.update_secret.assert_not_called()
        ports.notifier.notify.assert_not_called()

    async def test_renewal_without_certificate(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        ports.signature_verifier.verify.side_effect = None
        ports.signature_verifier.verify.return_value = Result.success(EventRecord(event_type="cert_renewed"))

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        ResultAssertions.assert_failure_message_contains(result, "does not name a certificate")
        ports.credential_exchanger.exchange.assert_not_called()

    async def test_credential_exchange_failure(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        ports.credential_exchanger.exchange.side_effect = None
        ports.credential_exchanger.exchange.return_value = AuthError(
            "Couldn't obtain tokens. Reason: status code 400.", status=400
        ).to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result, ErrorCode.AUTHENTICATION_ERROR)
        assert failure.exception.status == 400
        ports.deployment_trigger.update_secret.assert_not_called()
        ports.notifier.notify.assert_not_called()


# ─────────────────────── Deployment-Stage Failures ───────────────────────


class TestDeploymentFailures:
    """
    GIVEN the update is rejected or cannot be confirmed
    WHEN the workflow runs
    THEN exactly one failure notification carrying the reason is sent and
    the original failure is returned.
    """

    async def test_rejected_update_is_notified(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        message = "ALB failed updating the certificate secret. Reason: status code 500."
        ports.deployment_trigger.update_secret.side_effect = None
        ports.deployment_trigger.update_secret.return_value = DeploymentRejectedError(
            message, status=500
        ).to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert failure.message == message
        assert ports.notifications() == [Notification(level=NotificationLevel.FAILURE, text=message)]
        ports.deployment_verifier.verify_secret.assert_not_called()
        assert "sleep" not in ports.calls

    @pytest.mark.parametrize(
        "outcome", [DeploymentOutcome.NOT_YET_APPLIED, DeploymentOutcome.VERIFY_FAILED]
    )
    async def test_unconfirmed_update_is_notified(
        self, ports: Ports, workflow_config: WorkflowConfig, outcome: DeploymentOutcome
    ) -> None:
        ports.deployment_verifier.verify_secret.side_effect = None
        ports.deployment_verifier.verify_secret.return_value = VerificationError(
            "secret state is 'pending'", outcome=outcome
        ).to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result)
        assert failure.exception.outcome is outcome
        notifications = ports.notifications()
        assert len(notifications) == 1
        assert notifications[0].level is NotificationLevel.FAILURE

    async def test_verifier_crash_is_notified_as_verify_failed(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        """
        GIVEN the deployment verifier raises an unexpected exception
        WHEN the workflow runs
        THEN it fails with VERIFY_FAILED and one failure notification is sent.
        """
        ports.deployment_verifier.verify_secret.side_effect = RuntimeError("connection pool closed")

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result, ErrorCode.EXTERNAL_SERVICE_ERROR)
        assert failure.exception.outcome is DeploymentOutcome.VERIFY_FAILED
        assert "connection pool closed" not in failure.message
        [notification] = ports.notifications()
        assert notification.level is NotificationLevel.FAILURE
        assert notification.text == failure.message

    async def test_undelivered_failure_notification_keeps_deployment_failure(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        ports.deployment_trigger.update_secret.side_effect = None
        ports.deployment_trigger.update_secret.return_value = DeploymentRejectedError(
            "rejected", status=409
        ).to_result()
        ports.notifier.notify.side_effect = None
        ports.notifier.notify.return_value = NotificationDeliveryError("slack down").to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        failure = ResultAssertions.assert_failure(result)
        assert failure.message == "rejected"
        assert failure.exception.status == 409


class TestSuccessNotificationFailure:
    """
    GIVEN a deployment confirmed as applied
    WHEN the success notification cannot be delivered
    THEN the invocation still succeeds and the report records the delivery error.
    """

    async def test_deployment_outcome_is_kept(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        ports.notifier.notify.side_effect = None
        ports.notifier.notify.return_value = NotificationDeliveryError(
            "Error occurred when sending Slack message: status code 404.", status=404
        ).to_result()

        result = await ports.workflow(workflow_config).run(PAYLOAD)

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.VERIFIED
        assert report.outcome is DeploymentOutcome.APPLIED
        assert report.notification_error == "Error occurred when sending Slack message: status code 404."
        ports.notifier.notify.assert_awaited_once()


# ─────────────────────── Cancellation & Deadline ───────────────────────


class TestVerificationSkipped:
    """
    GIVEN the update was accepted
    WHEN the invocation is cancelled or the deadline passes during the wait
    THEN the verification task is abandoned, the invocation succeeds as
    DEPLOYED with VERIFICATION_SKIPPED, and nothing is notified.
    """

    async def test_deadline_before_delay_elapses(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        workflow = ports.workflow(
            workflow_config, verification_delay=30, verification_deadline=0.01, sleep=asyncio.sleep
        )

        result = await workflow.run(PAYLOAD)

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.DEPLOYED
        assert report.outcome is DeploymentOutcome.VERIFICATION_SKIPPED
        ports.deployment_verifier.verify_secret.assert_not_called()
        ports.notifier.notify.assert_not_called()

    async def test_cancelled_during_delay(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        cancel = asyncio.Event()

        async def sleep_then_get_cancelled(seconds: float) -> None:
            cancel.set()
            await asyncio.sleep(30)

        workflow = ports.workflow(workflow_config, sleep=sleep_then_get_cancelled)

        result = await workflow.run(PAYLOAD, cancel=cancel)

        report = ResultAssertions.assert_success(result)
        assert report.outcome is DeploymentOutcome.VERIFICATION_SKIPPED
        ports.deployment_verifier.verify_secret.assert_not_called()
        ports.notifier.notify.assert_not_called()

    async def test_abandoned_verification_is_finished_before_returning(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        cancel = asyncio.Event()

        async def sleep_until_cancelled(seconds: float) -> None:
            cancel.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                ports.calls.append("verification_cancelled")
                raise

        workflow = ports.workflow(workflow_config, sleep=sleep_until_cancelled)

        await workflow.run(PAYLOAD, cancel=cancel)

        assert ports.calls[-1] == "verification_cancelled"

    async def test_unset_cancel_event_does_not_skip(
        self, ports: Ports, workflow_config: WorkflowConfig
    ) -> None:
        result = await ports.workflow(workflow_config).run(PAYLOAD, cancel=asyncio.Event())

        report = ResultAssertions.assert_success(result)
        assert report.state is WorkflowState.VERIFIED


# ─────────────────────── Replay ───────────────────────


class TestReplay:
    async def test_same_notification_runs_twice(self, ports: Ports, workflow_config: WorkflowConfig) -> None:
        """
        GIVEN the same valid notification delivered twice
        WHEN the workflow runs for each delivery
        THEN both runs succeed and every step, including the key fetch, runs twice.
        """
        workflow = ports.workflow(workflow_config)

        first = await workflow.run(PAYLOAD)
        second = await workflow.run(PAYLOAD)

        assert ResultAssertions.assert_success(first).state is WorkflowState.VERIFIED
        assert ResultAssertions.assert_success(second).state is WorkflowState.VERIFIED
        assert ports.key_resolver.fetch_public_key.await_count == 2
        assert ports.deployment_trigger.update_secret.await_count == 2
        assert ports.notifier.notify.await_count == 2
