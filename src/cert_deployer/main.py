"""
Application entry point — wires dependencies and runs one invocation.

Composition root: creates concrete adapters, injects them into the
workflow, and turns the workflow's Result into the invocation response.

This is the ONLY place where concrete adapter classes are instantiated.
Everything else depends on Protocol interfaces.

Entry points:
  - main(params): serverless action handler, one notification per call
  - cli(): `cert-deployer [params.json]`, reads the params from a file or stdin
  - cert_deployer.asgi:app: long-running webhook receiver (see asgi.py)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import structlog
from pydantic import ValidationError
from railway import ErrorCode, LoggingExecutionContext
from railway.http_support import build_response
from railway.result import Result

from cert_deployer.adapters.http_client import (
    HttpAlbSecretsClient,
    HttpCredentialExchanger,
    HttpPublicKeyResolver,
)
from cert_deployer.adapters.jwt_verifier import JwtSignatureVerifier
from cert_deployer.adapters.slack import SlackWebhookNotifier
from cert_deployer.config import AppSettings, InvocationParams
from cert_deployer.domain.errors import InvalidRequestError
from cert_deployer.domain.models import NotificationPayload, WorkflowReport
from cert_deployer.workflow import CertificateDeploymentWorkflow

RESPONSE_HEADERS = {"Content-Type": "application/json"}


def configure_structlog(log_level: str = "INFO") -> None:
    """
    Configure structlog for structured logging.

    Console renderer with ISO timestamps; events below `log_level` are
    filtered out before any processing.
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_workflow(params: InvocationParams, settings: AppSettings) -> CertificateDeploymentWorkflow:
    """
    Instantiate the workflow and its adapters for one invocation.

    Nothing created here outlives the invocation: keys, tokens and
    credentials stay in this workflow instance only.
    """
    timeout = settings.http_timeout_seconds
    config = params.to_workflow_config(settings.default_slack_channel)
    alb_client = HttpAlbSecretsClient(albsecrets_url=settings.endpoints.alb_secrets_url, timeout=timeout)
    return CertificateDeploymentWorkflow(
        config=config,
        key_resolver=HttpPublicKeyResolver(
            base_url=settings.endpoints.certificate_manager_url,
            timeout=timeout,
        ),
        signature_verifier=JwtSignatureVerifier(),
        credential_exchanger=HttpCredentialExchanger(
            token_url=settings.endpoints.iam_token_url,
            timeout=timeout,
        ),
        deployment_trigger=alb_client,
        deployment_verifier=alb_client,
        notifier=SlackWebhookNotifier(
            webhook_url=config.slack_webhook,
            channel=config.slack_channel,
            timeout=timeout,
        ),
        verification_delay=settings.verification.delay_seconds,
        verification_deadline=settings.verification.deadline_seconds,
    )


def parse_params(params: dict[str, Any]) -> Result[InvocationParams]:
    """Validate raw invocation parameters; failures name the fields, never their values."""
    try:
        return Result.success(InvocationParams.model_validate(params))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'params'}: {error['msg']}"
            for error in e.errors(include_input=False, include_url=False)
        )
        return InvalidRequestError(f"Invalid invocation parameters: {problems}.").to_result()


def _log_secondary_error(report: WorkflowReport) -> None:
    if report.notification_error is not None:
        structlog.get_logger().warning(
            "invocation.secondary_error",
            state=report.state.value,
            message=report.notification_error,
        )


def to_response(result: Result[WorkflowReport]) -> dict[str, Any]:
    """Render a workflow Result as the invocation response."""
    body, status = build_response(result, success_body={})
    return {"statusCode": status, "headers": dict(RESPONSE_HEADERS), "body": body}


async def handle(
    params: dict[str, Any],
    settings: AppSettings,
    cancel: asyncio.Event | None = None,
) -> dict[str, Any]:
    """Validate raw parameters, run one invocation end to end and return the response."""
    return await run_invocation(parse_params(params), settings, cancel)


async def run_invocation(
    parsed: Result[InvocationParams],
    settings: AppSettings,
    cancel: asyncio.Event | None = None,
) -> dict[str, Any]:
    """Run the workflow for already validated parameters inside a logging context."""
    ctx = LoggingExecutionContext(operation="CertificateDeployment")

    async def invocation() -> Result[WorkflowReport]:
        return await parsed.flat_map_async(
            lambda valid: create_workflow(valid, settings).run(
                NotificationPayload(token=valid.data.get_secret_value()),
                cancel=cancel,
            )
        )

    result = await ctx.execute(invocation)
    result.peek(_log_secondary_error)
    result.peek_failure(
        lambda failure: structlog.get_logger().error(
            "invocation.failed",
            error_code=failure.code.value,
            message=failure.message,
        )
    )
    return to_response(result)


def main(params: dict[str, Any]) -> dict[str, Any]:
    """Serverless action handler: process exactly one notification."""
    try:
        settings = AppSettings()
    except ValidationError as e:
        return to_response(
            Result.failure(ErrorCode.CONFIGURATION_ERROR, f"Configuration error: {e.error_count()} invalid setting(s).")
        )

    configure_structlog(settings.log_level)
    return asyncio.run(handle(params, settings))


def cli() -> None:
    """Run one invocation from a params JSON document (file argument or stdin)."""
    try:
        if len(sys.argv) > 1:
            with open(sys.argv[1], encoding="utf-8") as f:
                params = json.load(f)
        else:
            params = json.load(sys.stdin)
    except (OSError, ValueError) as e:
        print(f"FATAL: cannot read invocation parameters — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(2)

    if not isinstance(params, dict):
        print("FATAL: invocation parameters must be a JSON object", file=sys.stderr)  # noqa: T201
        sys.exit(2)

    response = main(params)
    print(json.dumps(response))  # noqa: T201
    sys.exit(0 if response["statusCode"] == 200 else 1)


if __name__ == "__main__":
    cli()
