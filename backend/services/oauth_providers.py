"""OAuth provider configuration for Gmail, Outlook and Google Calendar."""

from dataclasses import dataclass, field
from typing import Dict, Tuple

from application.models.integrations import Provider
from backend.settings import Settings

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

MICROSOFT_AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
MICROSOFT_TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
MICROSOFT_USERINFO_URL = "https://graph.microsoft.com/v1.0/me"

GMAIL_SCOPES = (
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.send",
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
)

OUTLOOK_SCOPES = (
    "https://graph.microsoft.com/Mail.Read",
    "https://graph.microsoft.com/Mail.Send",
    "https://graph.microsoft.com/Mail.ReadWrite",
    "https://graph.microsoft.com/User.Read",
    "offline_access",
)

GOOGLE_CALENDAR_SCOPES = (
    "https://www.googleapis.com/auth/calendar.events",
    "https://www.googleapis.com/auth/userinfo.email",
)


@dataclass(frozen=True)
class ProviderConfig:
    """Static OAuth settings for one provider on one deployment."""

    provider: Provider
    client_id: str
    client_secret: str
    auth_url: str
    token_url: str
    userinfo_url: str
    redirect_uri: str
    scopes: Tuple[str, ...]
    use_pkce: bool = True
    extra_auth_params: Dict[str, str] = field(default_factory=dict)
    # Userinfo fields checked in order for the account email.
    email_fields: Tuple[str, ...] = ("email",)

    def __post_init__(self) -> None:
        if not self.scopes:
            raise ValueError(f"{self.provider.value}: at least one scope is required")
        for name in ("auth_url", "token_url", "userinfo_url", "redirect_uri"):
            if not getattr(self, name).startswith(("https://", "http://")):
                raise ValueError(f"{self.provider.value}: {name} must be an absolute URL")

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)


def build_provider_configs(settings: Settings) -> Dict[Provider, ProviderConfig]:
    """Provider configs with redirect URIs for this deployment's origin."""
    google_offline = {"access_type": "offline", "prompt": "consent"}
    return {
        Provider.gmail: ProviderConfig(
            provider=Provider.gmail,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            auth_url=GOOGLE_AUTH_URL,
            token_url=GOOGLE_TOKEN_URL,
            userinfo_url=GOOGLE_USERINFO_URL,
            redirect_uri=settings.redirect_uri(Provider.gmail.value),
            scopes=GMAIL_SCOPES,
            use_pkce=True,
            extra_auth_params=google_offline,
        ),
        Provider.outlook: ProviderConfig(
            provider=Provider.outlook,
            client_id=settings.microsoft_client_id,
            client_secret=settings.microsoft_client_secret,
            auth_url=MICROSOFT_AUTH_URL,
            token_url=MICROSOFT_TOKEN_URL,
            userinfo_url=MICROSOFT_USERINFO_URL,
            redirect_uri=settings.redirect_uri(Provider.outlook.value),
            scopes=OUTLOOK_SCOPES,
            use_pkce=False,
            extra_auth_params={"response_mode": "query", "prompt": "consent"},
            email_fields=("mail", "userPrincipalName"),
        ),
        Provider.google_calendar: ProviderConfig(
            provider=Provider.google_calendar,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            auth_url=GOOGLE_AUTH_URL,
            token_url=GOOGLE_TOKEN_URL,
            userinfo_url=GOOGLE_USERINFO_URL,
            redirect_uri=settings.redirect_uri(Provider.google_calendar.value),
            scopes=GOOGLE_CALENDAR_SCOPES,
            use_pkce=True,
            extra_auth_params=google_offline,
        ),
    }
