"""Application domain models for CRM integrations."""

from .crm import (
    Activity,
    ActivityType,
    CallInfo,
    CallRecording,
    Contact,
    Deal,
    DealInsights,
    DealStage,
    EmailMessage,
    GoogleEventParams,
    MessageChannel,
    MessagePage,
    OutgoingEmail,
    RiskLevel,
    TextMessage,
)
from .integrations import (
    AuthorizationRequest,
    ConnectionState,
    ConnectionStatus,
    CredentialRecord,
    OAuthTokens,
    PendingAuthorization,
    Provider,
)

__all__ = [
    "Activity",
    "ActivityType",
    "AuthorizationRequest",
    "CallInfo",
    "CallRecording",
    "ConnectionState",
    "ConnectionStatus",
    "Contact",
    "CredentialRecord",
    "Deal",
    "DealInsights",
    "DealStage",
    "EmailMessage",
    "GoogleEventParams",
    "MessageChannel",
    "MessagePage",
    "OAuthTokens",
    "OutgoingEmail",
    "PendingAuthorization",
    "Provider",
    "RiskLevel",
    "TextMessage",
]
