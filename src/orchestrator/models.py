"""Pydantic models for the two configuration documents.

BaseSettings is the operator-authored, immutable layer (region, account,
naming). GeneratedState is the machine-written layer: one section per
resource family, always present with empty defaults so later phases can
read it unconditionally.
"""

from __future__ import annotations

import re
from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

ORPHANED = "ORPHANED"

VALID_MEMORY_NAME_PATTERN = r"^[a-zA-Z][a-zA-Z0-9_]{0,47}$"
VALID_ACCOUNT_ID_PATTERN = r"^\d{12}$"

# =============================================================================
# Base settings
# =============================================================================


class AwsSettings(BaseModel):
    """Target account and region."""

    model_config = {"extra": "ignore", "frozen": True}

    region: Annotated[str, Field(min_length=1)]
    account_id: Annotated[str, Field(min_length=1)]

    @field_validator("account_id", mode="before")
    @classmethod
    def coerce_account_id(cls, v: Any) -> Any:
        # YAML reads unquoted account ids as integers
        if isinstance(v, int):
            return str(v).zfill(12)
        return v

    @field_validator("account_id")
    @classmethod
    def validate_account_id(cls, v: str) -> str:
        if not re.match(VALID_ACCOUNT_ID_PATTERN, v):
            raise ValueError("account_id must be a 12-digit AWS account id")
        return v


class NamingSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    prefix: str = "bac"
    execution_role: str = "bac-execution-role"
    execution_policy: str = "bac-execution-policy"
    ecr_repositories: dict[str, str] = Field(
        default_factory=lambda: {"diy": "bac-runtime-repo-diy", "sdk": "bac-runtime-repo-sdk"}
    )


class MemorySettings(BaseModel):
    """Conversation memory store request."""

    model_config = {"extra": "ignore", "frozen": True}

    name: str = "bac_agent_memory"
    description: str = "BAC agent conversation memory"
    event_expiry_days: Annotated[int, Field(ge=1, le=365)] = 90

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.match(VALID_MEMORY_NAME_PATTERN, v):
            raise ValueError(f"memory name must match {VALID_MEMORY_NAME_PATTERN}")
        return v


class OktaSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    domain: str = ""
    scope: str = "api"
    provider_name: str = "bac-identity-provider-okta"
    audience: str = "api://default"

    @field_validator("domain")
    @classmethod
    def strip_scheme(cls, v: str) -> str:
        return v.removeprefix("https://").rstrip("/")

    @property
    def discovery_url(self) -> str:
        return f"https://{self.domain}/oauth2/default/.well-known/openid-configuration"


class ToolLambdaSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    stack_name: str = "bac-mcp-stack"
    template_path: str = "mcp-tool-lambda/packaged-template.yaml"
    tool_schema_path: str = "mcp-tool-lambda/tool-schema.json"
    function_name: str = "bac-mcp-tool"


class GatewaySettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    name: str = "bac-gtw"
    description: str = "BAC MCP gateway"
    target_name: str = "bac-tool"


class AgentSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    name: Annotated[str, Field(min_length=1)]


class RuntimeSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    diy_agent: AgentSettings = Field(default_factory=lambda: AgentSettings(name="bac_diy_agent"))
    sdk_agent: AgentSettings = Field(default_factory=lambda: AgentSettings(name="bac_sdk_agent"))
    network_mode: str = "PUBLIC"


class CleanupSettings(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    # When false only identities whose name starts with identity_prefix are removed
    delete_all_workload_identities: bool = False
    identity_prefix: str = ""


class BaseSettings(BaseModel):
    """Immutable operator settings loaded from the base document."""

    model_config = {"extra": "ignore", "frozen": True}

    aws: AwsSettings
    naming: NamingSettings = Field(default_factory=NamingSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    okta: OktaSettings = Field(default_factory=OktaSettings)
    tool_lambda: ToolLambdaSettings = Field(
        default_factory=ToolLambdaSettings,
        validation_alias=AliasChoices("tool_lambda", "mcp_lambda"),
    )
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)
    runtime: RuntimeSettings = Field(default_factory=RuntimeSettings)
    cleanup: CleanupSettings = Field(default_factory=CleanupSettings)

    @model_validator(mode="before")
    @classmethod
    def fold_flat_keys(cls, data: Any) -> Any:
        """Accept the older flat layout (region, account_id, okta_domain)."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        aws = dict(data.get("aws") or {})
        for key in ("region", "account_id"):
            if key in data and key not in aws:
                aws[key] = data.pop(key)
        if aws:
            data["aws"] = aws
        if "okta_domain" in data:
            okta = dict(data.get("okta") or {})
            okta.setdefault("domain", data.pop("okta_domain"))
            data["okta"] = okta
        return data

    @property
    def identity_prefix(self) -> str:
        return self.cleanup.identity_prefix or self.naming.prefix

    def ecr_uri(self, repository: str, tag: str = "latest") -> str:
        return (
            f"{self.aws.account_id}.dkr.ecr.{self.aws.region}.amazonaws.com/{repository}:{tag}"
        )


# =============================================================================
# Generated state
# =============================================================================


class SectionState(BaseModel):
    """Common shape of a generated section."""

    model_config = {"extra": "ignore"}

    status: str = ""


class GatewayState(SectionState):
    id: str = ""
    arn: str = ""
    url: str = ""


class OAuthProviderState(SectionState):
    provider_name: str = ""
    provider_arn: str = ""
    domain: str = ""
    scopes: list[str] = Field(default_factory=list)


class ToolLambdaState(SectionState):
    function_name: str = ""
    function_arn: str = ""
    role_arn: str = ""
    stack_name: str = ""
    gateway_execution_role_arn: str = ""


class AgentRuntimeState(SectionState):
    arn: str = ""
    id: str = ""
    ecr_uri: str = ""
    endpoint_arn: str = ""


class RuntimeState(BaseModel):
    model_config = {"extra": "ignore"}

    diy_agent: AgentRuntimeState = Field(default_factory=AgentRuntimeState)
    sdk_agent: AgentRuntimeState = Field(default_factory=AgentRuntimeState)


class ClientState(SectionState):
    diy_runtime_endpoint: str = ""
    sdk_runtime_endpoint: str = ""


class MemoryState(SectionState):
    id: str = ""
    name: str = ""
    region: str = ""
    event_expiry_days: int | str = ""
    created_at: str = ""
    description: str = ""


class GeneratedState(BaseModel):
    """Machine-written state, one section per resource family."""

    model_config = {"extra": "ignore"}

    gateway: GatewayState = Field(default_factory=GatewayState)
    oauth_provider: OAuthProviderState = Field(default_factory=OAuthProviderState)
    tool_lambda: ToolLambdaState = Field(
        default_factory=ToolLambdaState,
        validation_alias=AliasChoices("tool_lambda", "mcp_lambda"),
    )
    runtime: RuntimeState = Field(default_factory=RuntimeState)
    client: ClientState = Field(default_factory=ClientState)
    memory: MemoryState = Field(default_factory=MemoryState)

    @model_validator(mode="before")
    @classmethod
    def drop_null_sections(cls, data: Any) -> Any:
        # "section:" with no body loads as None
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    def section(self, name: str) -> BaseModel:
        node: Any = self
        for part in name.split("."):
            node = getattr(node, part)
        return node


# Addressable sections; dotted names reach nested sections
SECTION_MODELS: dict[str, type[BaseModel]] = {
    "gateway": GatewayState,
    "oauth_provider": OAuthProviderState,
    "tool_lambda": ToolLambdaState,
    "runtime": RuntimeState,
    "runtime.diy_agent": AgentRuntimeState,
    "runtime.sdk_agent": AgentRuntimeState,
    "client": ClientState,
    "memory": MemoryState,
}

# Sections whose on-disk key changed; old name accepted on read
LEGACY_SECTION_KEYS = {"tool_lambda": "mcp_lambda"}


def empty_section(name: str) -> dict[str, Any]:
    """Return the empty-valued schema for a generated section."""
    try:
        model = SECTION_MODELS[name]
    except KeyError:
        raise KeyError(f"Unknown generated section: {name}") from None
    return model().model_dump()


def default_document() -> dict[str, Any]:
    """Return the full generated document with every section empty."""
    return GeneratedState().model_dump()
