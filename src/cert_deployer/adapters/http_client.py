"""
HTTP adapters — certificate manager, IAM and ALB API calls via httpx.

Adapter layer — implements the PublicKeyResolver, CredentialExchanger,
DeploymentTrigger and DeploymentVerifier ports with httpx.AsyncClient.

Endpoints (defaults target IBM Cloud):
  1. GET  {certificate manager}/api/v1/instances/{crn}/notifications/publicKey?keyFormat=pem
  2. POST {iam}/identity/token (API key grant) → access_token + refresh_token
  3. PUT  {alb}/albsecrets with both tokens → 204 once the update is accepted
  4. GET  {alb}/albsecrets with both tokens → per-secret state

No retries: every non-success response is a terminal, typed failure.
Response bodies are validated before use; an unexpected shape fails closed.
All errors are captured into Result failures — no exceptions leak to
the workflow.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from railway.result import Result

from cert_deployer.domain.errors import (
    AuthError,
    DeploymentRejectedError,
    KeyFetchError,
    VerificationError,
    capture,
)
from cert_deployer.domain.models import (
    Credential,
    DeploymentOutcome,
    InstanceRef,
    PublicKey,
    SecretUpdateRequest,
    SessionTokens,
)

log = structlog.get_logger()

DEFAULT_CERTIFICATE_MANAGER_URL = "https://{region}.certificate-manager.cloud.ibm.com"
DEFAULT_IAM_TOKEN_URL = "https://iam.cloud.ibm.com/identity/token"
DEFAULT_ALB_SECRETS_URL = "https://containers.cloud.ibm.com/global/v1/alb/albsecrets"

IAM_APIKEY_GRANT = "urn:ibm:params:oauth:grant-type:apikey"
ACCEPTED_STATUSES = frozenset({202, 204})
APPLIED_STATE = "updated"

_BODY_EXCERPT_LIMIT = 500


def _excerpt(response: httpx.Response) -> str:
    text = response.text
    if len(text) > _BODY_EXCERPT_LIMIT:
        return text[:_BODY_EXCERPT_LIMIT] + "..."
    return text


def _json_object(response: httpx.Response) -> dict[str, Any] | None:
    """Decode a JSON object body, or None when the body is anything else."""
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _alb_headers(tokens: SessionTokens) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {tokens.access_token}",
        "X-Auth-Refresh-Token": f"Bearer {tokens.refresh_token}",
    }


class HttpPublicKeyResolver:
    """
    Fetch the notification public key of a certificate manager instance.

    Implements the PublicKeyResolver port. The endpoint template is
    formatted with the region embedded in the instance CRN.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_CERTIFICATE_MANAGER_URL,
        timeout: float = 30,
    ) -> None:
        self._base_url = base_url
        self._timeout = timeout

    async def fetch_public_key(self, instance: InstanceRef) -> Result[PublicKey]:
        """
        Request the PEM public key for the given instance.

        Returns Result[PublicKey] on HTTP 200 with a `publicKey` field,
        or Result.failure(KeyFetchError) carrying the observed status and body.
        """
        return await capture(self._do_fetch(instance))

    async def _do_fetch(self, instance: InstanceRef) -> PublicKey:
        base = self._base_url.format(region=instance.region).rstrip("/")
        url = f"{base}/api/v1/instances/{instance.encoded}/notifications/publicKey"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    url,
                    params={"keyFormat": "pem"},
                    headers={"cache-control": "no-cache"},
                )
        except httpx.HTTPError as e:
            raise KeyFetchError(
                f"Couldn't get the public key for the provided instance. Reason is: {type(e).__name__}."
            ) from e

        if response.status_code != 200:
            raise KeyFetchError(
                "Couldn't get the public key for the provided instance. "
                f"Reason is: status code {response.status_code} and body {_excerpt(response)}.",
                status=response.status_code,
                body=response.text,
            )

        body = _json_object(response)
        pem = body.get("publicKey") if body else None
        if not isinstance(pem, str) or not pem.strip():
            raise KeyFetchError(
                "Couldn't get the public key for the provided instance. "
                "Reason is: the response did not contain a publicKey.",
                body=response.text,
            )
        log.info("public_key.fetched", region=instance.region)
        return PublicKey(pem=pem)


class HttpCredentialExchanger:
    """
    Exchange an API key for IAM session tokens.

    Implements the CredentialExchanger port. The API key travels in the
    form body, never in the URL.
    """

    def __init__(
        self,
        token_url: str = DEFAULT_IAM_TOKEN_URL,
        timeout: float = 30,
    ) -> None:
        self._token_url = token_url
        self._timeout = timeout

    async def exchange(self, credential: Credential) -> Result[SessionTokens]:
        """
        Request an access/refresh token pair.

        Returns Result[SessionTokens] on HTTP 200, or Result.failure(AuthError)
        whose status is the IAM status (4xx: bad key, 5xx: IAM outage).
        """
        return await capture(self._do_exchange(credential))

    async def _do_exchange(self, credential: Credential) -> SessionTokens:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    self._token_url,
                    data={"grant_type": IAM_APIKEY_GRANT, "apikey": credential.api_key},
                    headers={"Accept": "application/json"},
                )
        except httpx.HTTPError as e:
            raise AuthError(f"Couldn't obtain tokens. Reason: {type(e).__name__}.") from e

        if response.status_code != 200:
            raise AuthError(
                f"Couldn't obtain tokens. Reason: status code {response.status_code}.",
                status=response.status_code,
            )

        body = _json_object(response) or {}
        access_token = body.get("access_token")
        refresh_token = body.get("refresh_token")
        if not isinstance(access_token, str) or not isinstance(refresh_token, str):
            raise AuthError("Couldn't obtain tokens. Reason: the token response is incomplete.")
        log.info("session_tokens.acquired")
        return SessionTokens(access_token=access_token, refresh_token=refresh_token)


class HttpAlbSecretsClient:
    """
    Update and inspect a cluster's ALB (ingress) secret.

    Implements both the DeploymentTrigger and the DeploymentVerifier ports;
    they share the endpoint and the dual-token headers.
    """

    def __init__(
        self,
        albsecrets_url: str = DEFAULT_ALB_SECRETS_URL,
        timeout: float = 30,
    ) -> None:
        self._albsecrets_url = albsecrets_url
        self._timeout = timeout

    async def update_secret(
        self, tokens: SessionTokens, request: SecretUpdateRequest
    ) -> Result[DeploymentOutcome]:
        """
        PUT the new certificate CRN to the ingress secret.

        Returns Result.success(ACCEPTED) on 202/204, otherwise
        Result.failure(DeploymentRejectedError) with the ALB status.
        """
        return await capture(self._do_update(tokens, request))

    async def verify_secret(
        self, tokens: SessionTokens, request: SecretUpdateRequest
    ) -> Result[DeploymentOutcome]:
        """
        Read the ingress secret once and classify its state.

        Returns Result.success(APPLIED) when the secret's state is "updated";
        otherwise Result.failure(VerificationError) with outcome
        NOT_YET_APPLIED (any other state) or VERIFY_FAILED (failed read,
        unknown response shape).
        """
        return await capture(self._do_verify(tokens, request))

    async def _do_update(self, tokens: SessionTokens, request: SecretUpdateRequest) -> DeploymentOutcome:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.put(
                    self._albsecrets_url,
                    headers=_alb_headers(tokens),
                    json={
                        "certCrn": request.cert_crn,
                        "clusterID": request.cluster_id,
                        "secretName": request.secret_name,
                    },
                )
        except httpx.HTTPError as e:
            raise DeploymentRejectedError(
                f"ALB failed updating the certificate secret. Reason: {type(e).__name__}."
            ) from e

        if response.status_code not in ACCEPTED_STATUSES:
            raise DeploymentRejectedError(
                f"ALB failed updating the certificate secret. Reason: status code {response.status_code}.",
                status=response.status_code,
            )
        log.info(
            "alb_secret.update_accepted",
            cluster_id=request.cluster_id,
            secret_name=request.secret_name,
        )
        return DeploymentOutcome.ACCEPTED

    async def _do_verify(self, tokens: SessionTokens, request: SecretUpdateRequest) -> DeploymentOutcome:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    self._albsecrets_url,
                    headers=_alb_headers(tokens),
                    params={"clusterID": request.cluster_id, "secretName": request.secret_name},
                )
        except httpx.HTTPError as e:
            raise VerificationError(
                f"Couldn't verify the certificate secret. Reason: {type(e).__name__}.",
                outcome=DeploymentOutcome.VERIFY_FAILED,
            ) from e

        if response.status_code != 200:
            raise VerificationError(
                f"Couldn't verify the certificate secret. Reason: status code {response.status_code}.",
                outcome=DeploymentOutcome.VERIFY_FAILED,
                status=response.status_code,
            )

        state = _secret_state(_json_object(response), request.secret_name)
        if state is None:
            raise VerificationError(
                "Couldn't verify the certificate secret. Reason: unexpected response from the ALB API.",
                outcome=DeploymentOutcome.VERIFY_FAILED,
            )
        if state != APPLIED_STATE:
            raise VerificationError(
                f"ALB failed updating the certificate secret. Reason: secret state is {state!r}.",
                outcome=DeploymentOutcome.NOT_YET_APPLIED,
                state=state,
            )
        log.info("alb_secret.applied", cluster_id=request.cluster_id, secret_name=request.secret_name)
        return DeploymentOutcome.APPLIED


def _secret_state(body: dict[str, Any] | None, secret_name: str) -> str | None:
    """
    Pick the state of `secret_name` out of an albsecrets listing.

    Entries naming a different secret are skipped; entries without a
    name are taken as-is. Returns None when no usable entry exists.
    """
    entries = body.get("albSecrets") if body else None
    if not isinstance(entries, list):
        return None
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        if entry.get("secretName", secret_name) != secret_name:
            continue
        state = entry.get("state")
        return state if isinstance(state, str) else None
    return None
