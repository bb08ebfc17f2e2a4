"""
Configuration — typed, validated settings and invocation parameters.

Two sources, both validated with pydantic:

  - AppSettings (pydantic-settings): process-level settings loaded from
    environment variables / .env. Endpoints, timeouts, verification timing,
    log level, and (for the long-running ASGI mode only) a default
    deployment target.
  - InvocationParams: the per-invocation input of the serverless action,
    using the action's camelCase field names (instanceCrn, apiKey, ...).

Nested settings use env_nested_delimiter="__", so ENDPOINTS__IAM_TOKEN_URL
maps to endpoints.iam_token_url and VERIFICATION__DELAY_SECONDS maps to
verification.delay_seconds.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from cert_deployer.adapters.http_client import (
    DEFAULT_ALB_SECRETS_URL,
    DEFAULT_CERTIFICATE_MANAGER_URL,
    DEFAULT_IAM_TOKEN_URL,
)
from cert_deployer.domain.models import Credential, InstanceRef, WorkflowConfig
from cert_deployer.workflow import DEFAULT_VERIFICATION_DELAY_SECONDS

# Resolve the .env file relative to the project root (two levels above this file),
# so settings load correctly regardless of the working directory at runtime.
_ENV_FILE = Path(__file__).parent.parent.parent / ".env"

DEFAULT_SLACK_CHANNEL = "#certificates"


def _validate_crn(value: str) -> str:
    InstanceRef(value)
    return value


CrnStr = Annotated[str, AfterValidator(_validate_crn)]


class EndpointSettings(BaseModel):
    """Collaborator endpoints. Override for other regions or for testing."""

    certificate_manager_url: str = Field(
        default=DEFAULT_CERTIFICATE_MANAGER_URL,
        description="Certificate manager base URL; {region} is taken from the instance CRN",
    )
    iam_token_url: str = Field(default=DEFAULT_IAM_TOKEN_URL, description="IAM token endpoint")
    alb_secrets_url: str = Field(default=DEFAULT_ALB_SECRETS_URL, description="ALB secrets endpoint")

    @field_validator("certificate_manager_url")
    @classmethod
    def validate_region_placeholder(cls, value: str) -> str:
        """Only {region} may be templated into the certificate manager URL."""
        try:
            value.format(region="region")
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"certificate_manager_url may only use the {{region}} placeholder: {value!r}") from e
        return value


class VerificationSettings(BaseModel):
    """
    Timing of the post-deployment verification.

    delay_seconds approximates how long the ingress controller takes to
    pick up a new secret. deadline_seconds bounds the wait for the
    verification task; when it passes, verification is skipped, not failed.
    """

    delay_seconds: float = Field(default=DEFAULT_VERIFICATION_DELAY_SECONDS, ge=0)
    deadline_seconds: float | None = Field(default=None, gt=0)


class DeploymentSettings(BaseModel):
    """Default deployment target, used when notifications arrive over HTTP."""

    instance_crn: CrnStr = Field(description="CRN of the certificate manager instance")
    api_key: SecretStr = Field(description="API key with ALB and certificate manager access")
    cluster_id: str = Field(description="Target cluster ID")
    secret_name: str = Field(description="Ingress secret name")
    slack_webhook: SecretStr = Field(description="Slack incoming webhook URL")
    slack_channel: str | None = Field(default=None, description="Slack channel")


class AppSettings(BaseSettings):
    """
    Root application settings — aggregates all sub-settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values

    Nothing is required: the serverless action receives its target in the
    invocation parameters, so only the ASGI mode needs `deployment`.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    endpoints: EndpointSettings = Field(default_factory=lambda: EndpointSettings())
    verification: VerificationSettings = Field(default_factory=lambda: VerificationSettings())
    deployment: DeploymentSettings | None = None

    default_slack_channel: str = Field(default=DEFAULT_SLACK_CHANNEL)
    http_timeout_seconds: float = Field(default=30, gt=0)
    log_level: str = Field(default="INFO")


class InvocationParams(BaseModel):
    """
    Input of one invocation.

    Field aliases are the action's parameter names. Unknown parameters
    (platform metadata) are ignored; missing or empty ones fail validation.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)

    instance_crn: CrnStr = Field(alias="instanceCrn", min_length=1)
    data: SecretStr = Field(description="Signed notification payload")
    api_key: SecretStr = Field(alias="apiKey")
    cluster_id: str = Field(alias="clusterId", min_length=1)
    secret_name: str = Field(alias="secretName", min_length=1)
    slack_webhook: SecretStr = Field(alias="slackWebHook")
    slack_channel: str | None = Field(default=None, alias="slackChannel")

    @field_validator("data", "api_key", "slack_webhook")
    @classmethod
    def validate_not_blank(cls, value: SecretStr) -> SecretStr:
        if not value.get_secret_value().strip():
            raise ValueError("must not be empty")
        return value

    @classmethod
    def from_deployment(cls, deployment: DeploymentSettings, data: str) -> InvocationParams:
        """Build invocation parameters from the configured target and a received payload."""
        return cls(
            instance_crn=deployment.instance_crn,
            data=SecretStr(data),
            api_key=deployment.api_key,
            cluster_id=deployment.cluster_id,
            secret_name=deployment.secret_name,
            slack_webhook=deployment.slack_webhook,
            slack_channel=deployment.slack_channel,
        )

    def to_workflow_config(self, default_slack_channel: str = DEFAULT_SLACK_CHANNEL) -> WorkflowConfig:
        return WorkflowConfig(
            instance=InstanceRef(self.instance_crn),
            credential=Credential(api_key=self.api_key.get_secret_value()),
            cluster_id=self.cluster_id,
            secret_name=self.secret_name,
            slack_webhook=self.slack_webhook.get_secret_value(),
            slack_channel=self.slack_channel or default_slack_channel,
        )
