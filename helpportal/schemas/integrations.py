"""Request/response models for integration setup endpoints."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ZendeskValidateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    subdomain: str = ""
    email: str = ""
    api_token: str = Field(default="", alias="apiToken")


class ZendeskValidateResponse(BaseModel):
    valid: bool
    error: Optional[str] = None


class JiraConnectionResponse(BaseModel):
    connected: bool
    error: Optional[str] = None


class AutomationSetupRequest(BaseModel):
    """One-time admin credentials. Used for the Automation API call, never stored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email: str = ""
    api_token: str = Field(default="", alias="apiToken")
    rule_kind: Literal["comment", "status_changed"] = Field(default="comment", alias="ruleKind")


class AutomationSetupResponse(BaseModel):
    success: bool
    rule_uuid: Optional[str] = None
    error: Optional[str] = None


class AutomationRuleSummary(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    uuid: str
    name: str = ""
    state: str = ""
    rule_scope_aris: list[str] = Field(default_factory=list, alias="ruleScopeARIs")


class AutomationRuleListResponse(BaseModel):
    success: bool = True
    rules: list[AutomationRuleSummary] = Field(default_factory=list)


class ZendeskConfigRequest(ZendeskValidateRequest):
    group_id: Optional[str] = Field(default=None, alias="groupId")


class JiraProjectRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    project_key: str = Field(min_length=1, alias="projectKey")


class JiraProjectResponse(BaseModel):
    success: bool = True
    project_key: str
    project_id: str


class JiraOAuthStartResponse(BaseModel):
    url: str


class JiraOAuthCallbackResponse(BaseModel):
    connected: bool
    cloud_url: Optional[str] = None


class JiraBasicConfigRequest(BaseModel):
    """Site URL + email + API token connection, the alternative to OAuth."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    jira_url: str = Field(default="", alias="jiraUrl")
    email: str = ""
    api_token: str = Field(default="", alias="apiToken")
    project_key: Optional[str] = Field(default=None, alias="projectKey")
    service_desk_id: Optional[str] = Field(default=None, alias="serviceDeskId")


class JiraConfigStatus(BaseModel):
    """Connection state without credentials."""

    configured: bool
    auth_mode: Optional[str] = None
    cloud_url: Optional[str] = None
    project_key: Optional[str] = None
    project_id: Optional[str] = None
    service_desk_id: Optional[str] = None
    automation_rule_created: bool = False


class JiraDisconnectResponse(BaseModel):
    success: bool = True
    revoked: bool = False
