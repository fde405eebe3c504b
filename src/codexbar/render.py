import json

from codexbar.config import VERSION
from codexbar.models import ProviderResult, UsageWindow


def window_payload(window: "UsageWindow | None") -> "dict | None":
    if window is None:
        return None
    return {
        "usedPercent": window.used_percent,
        "windowMinutes": window.window_minutes,
        "resetsAt": window.resets_at,
    }


def cli_payload(result: "ProviderResult", include_status: "bool" = False) -> "dict":
    """
    builds the per-provider JSON object printed by `codexbar usage
    --format json`.
    """
    identity = result.identity
    identity_payload = None
    if identity is not None:
        identity_payload = {
            "providerID": result.provider,
            "accountEmail": identity.account_email,
            "accountOrganization": identity.account_organization,
            "loginMethod": identity.login_method,
        }

    credits = None
    if result.credits_remaining is not None:
        credits = {
            "remaining": result.credits_remaining,
            "updatedAt": result.updated_at,
        }

    dashboard = None
    if result.code_review_remaining_percent is not None:
        dashboard = {
            "codeReviewRemainingPercent": result.code_review_remaining_percent,
            "updatedAt": result.updated_at,
        }

    status = None
    if include_status and result.status is not None:
        status = {
            "indicator": result.status.indicator,
            "description": result.status.description,
            "updatedAt": result.status.updated_at,
            "url": result.status.url,
        }

    return {
        "provider": result.provider,
        "version": VERSION,
        "source": result.source_label,
        "status": status,
        "usage": {
            "primary": window_payload(result.primary),
            "secondary": window_payload(result.secondary),
            "tertiary": window_payload(result.tertiary),
            "updatedAt": result.updated_at,
            "identity": identity_payload,
            "accountEmail": identity.account_email if identity else None,
            "accountOrganization": identity.account_organization if identity else None,
            "loginMethod": identity.login_method if identity else None,
        },
        "credits": credits,
        "antigravityPlanInfo": None,
        "openaiDashboard": dashboard,
    }


def dump_json(payload: "object", pretty: "bool" = False) -> "str":
    if pretty:
        return json.dumps(payload, indent=2)
    return json.dumps(payload, separators=(",", ":"))


def render_json(
    results: "list[ProviderResult]",
    include_status: "bool" = False,
    pretty: "bool" = False,
) -> "str":
    return dump_json([cli_payload(r, include_status) for r in results], pretty)


def format_percent(value: "float | None") -> "str":
    if value is None:
        return "n/a"
    return f"{value:.0f}% left"


def render_text(results: "list[ProviderResult]") -> "str":
    """
    human-readable summary: remaining session and weekly percentages
    per provider.
    """
    lines: "list[str]" = []
    for result in results:
        session_left = result.primary.remaining_percent if result.primary else None
        weekly_left = result.secondary.remaining_percent if result.secondary else None

        lines.append(f"== {result.provider} ({result.source_label}) ==")
        lines.append(f"Session: {format_percent(session_left)}")
        lines.append(f"Weekly: {format_percent(weekly_left)}")
        if result.credits_remaining is not None:
            lines.append(f"Credits: {result.credits_remaining:.1f}")
        lines.append(f"Updated: {result.updated_at}")
        lines.append("")
    return "\n".join(lines)
