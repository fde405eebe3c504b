import time
from dataclasses import dataclass, field


def now_timestamp() -> "str":
    """
    current time in the `unix:<seconds>` form used across snapshots.
    """
    return f"unix:{int(time.time())}"


def clamp_percent(value: "float") -> "float":
    return max(0.0, min(100.0, value))


@dataclass(frozen=True, slots=True)
class UsageWindow:
    """
    UsageWindow represents one rate-limit bucket, e.g. the
    5-hour session window or the 7-day weekly window.

    None fields mean "unknown", never zero.
    """

    used_percent: "float | None" = None
    window_minutes: "int | None" = None
    # opaque: either an ISO string from the provider or `unix:<seconds>`
    resets_at: "str | None" = None

    @property
    def remaining_percent(self) -> "float | None":
        if self.used_percent is None:
            return None
        return clamp_percent(100.0 - self.used_percent)


@dataclass(frozen=True, slots=True)
class IdentityInfo:
    account_email: "str | None" = None
    account_organization: "str | None" = None
    login_method: "str | None" = None


@dataclass(frozen=True, slots=True)
class StatusInfo:
    """
    StatusInfo is the operational status reported by a
    provider's public status page.
    """

    indicator: "str | None" = None
    description: "str | None" = None
    updated_at: "str | None" = None
    url: "str | None" = None


@dataclass(frozen=True, slots=True)
class ProviderResult:
    """
    ProviderResult is the normalized usage record for a single
    provider, produced by exactly one strategy.
    """

    provider: "str"
    # tag naming the strategy that produced this result
    source_label: "str"
    updated_at: "str" = field(default_factory=now_timestamp)
    primary: "UsageWindow | None" = None
    secondary: "UsageWindow | None" = None
    tertiary: "UsageWindow | None" = None
    credits_remaining: "float | None" = None
    # OpenAI dashboard code-review quota, only carried through snapshots
    code_review_remaining_percent: "float | None" = None
    identity: "IdentityInfo | None" = None
    status: "StatusInfo | None" = None

    @property
    def has_data(self) -> "bool":
        return any(
            value is not None
            for value in (
                self.primary,
                self.secondary,
                self.tertiary,
                self.credits_remaining,
            )
        )


@dataclass(frozen=True, slots=True)
class ApiKeyAccount:
    """
    account authenticated with a plain API key, carries no identity.
    """


@dataclass(frozen=True, slots=True)
class ChatGptAccount:
    email: "str | None" = None
    plan_type: "str | None" = None


AccountDetails = ApiKeyAccount | ChatGptAccount


def identity_from_account(account: "AccountDetails | None") -> "IdentityInfo | None":
    """
    maps the account variant reported by the app-server into
    IdentityInfo. Only signed-in ChatGPT accounts carry identity.
    """
    match account:
        case ChatGptAccount(email=email, plan_type=plan_type):
            return IdentityInfo(account_email=email, login_method=plan_type)
        case ApiKeyAccount():
            return None
        case None:
            return None


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    results: "list[ProviderResult]"

    @property
    def any_success(self) -> "bool":
        return bool(self.results)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """
    Snapshot is the document cached on disk and republished to
    the desktop shell.
    """

    generated_at: "str"
    enabled_providers: "list[str]"
    entries: "list[ProviderResult]"

    @classmethod
    def from_results(cls, results: "list[ProviderResult]") -> "Snapshot":
        return cls(
            generated_at=now_timestamp(),
            enabled_providers=[r.provider for r in results],
            entries=list(results),
        )


# public API of the desktop bridge: the D-Bus names it serves the
# SnapshotEnvelope under, and the envelope schema version
SNAPSHOT_SCHEMA_VERSION = 1
DBUS_SERVICE_NAME = "dev.codexbar.WidgetService"
DBUS_OBJECT_PATH = "/dev/codexbar/WidgetService"
DBUS_INTERFACE_NAME = "dev.codexbar.WidgetService"


@dataclass(frozen=True, slots=True)
class SnapshotEnvelope:
    snapshot: "Snapshot"
    schema_version: "int" = SNAPSHOT_SCHEMA_VERSION
