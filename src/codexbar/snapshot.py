"""
the snapshot document cached on disk for the desktop widget.

A snapshot is either built from live results or rebuilt from JSON
previously printed by `codexbar usage --format json`.
"""

import json
from pathlib import Path

import structlog

from codexbar.errors import ParseFailure
from codexbar.models import (
    IdentityInfo,
    ProviderResult,
    Snapshot,
    SnapshotEnvelope,
    StatusInfo,
    UsageWindow,
    now_timestamp,
)
from codexbar.render import window_payload

logger = structlog.get_logger()


def _string(payload: "dict", key: "str") -> "str | None":
    value = payload.get(key)
    return value if isinstance(value, str) else None


def _float(value: "object") -> "float | None":
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _int(value: "object") -> "int | None":
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, str) and value.isdigit():
        return int(value)
    return None


def _window(value: "object") -> "UsageWindow | None":
    if not isinstance(value, dict):
        return None
    return UsageWindow(
        used_percent=_float(value.get("usedPercent")),
        window_minutes=_int(value.get("windowMinutes")),
        resets_at=_string(value, "resetsAt"),
    )


def result_from_cli_payload(value: "object") -> "ProviderResult | None":
    """
    maps one `codexbar usage --format json` object back into a
    ProviderResult. Objects without a provider are skipped.
    """
    if not isinstance(value, dict) or not isinstance(value.get("provider"), str):
        return None

    usage = value.get("usage") if isinstance(value.get("usage"), dict) else {}
    credits = value.get("credits") if isinstance(value.get("credits"), dict) else {}
    dashboard = (
        value.get("openaiDashboard")
        if isinstance(value.get("openaiDashboard"), dict)
        else {}
    )

    identity = None
    if isinstance(usage.get("identity"), dict):
        raw_identity = usage["identity"]
        identity = IdentityInfo(
            account_email=_string(raw_identity, "accountEmail"),
            account_organization=_string(raw_identity, "accountOrganization"),
            login_method=_string(raw_identity, "loginMethod"),
        )

    status = None
    if isinstance(value.get("status"), dict):
        raw_status = value["status"]
        status = StatusInfo(
            indicator=_string(raw_status, "indicator"),
            description=_string(raw_status, "description"),
            updated_at=_string(raw_status, "updatedAt"),
            url=_string(raw_status, "url"),
        )

    return ProviderResult(
        provider=value["provider"],
        source_label=_string(value, "source") or "unknown",
        updated_at=_string(usage, "updatedAt") or _string(value, "updatedAt") or now_timestamp(),
        primary=_window(usage.get("primary")),
        secondary=_window(usage.get("secondary")),
        tertiary=_window(usage.get("tertiary")),
        credits_remaining=_float(credits.get("remaining")),
        code_review_remaining_percent=_float(
            dashboard.get("codeReviewRemainingPercent")
        ),
        identity=identity,
        status=status,
    )


def parse_json_values(raw: "str") -> "list[object]":
    """
    accepts a JSON array, a single JSON object, or JSON lines.
    """
    trimmed = raw.strip()
    if not trimmed:
        raise ParseFailure("empty JSON payload")

    try:
        value = json.loads(trimmed)
    except ValueError:
        return _parse_json_lines(raw)

    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return [value]
    raise ParseFailure("JSON payload must be an object or an array")


def _parse_json_lines(raw: "str") -> "list[object]":
    values: "list[object]" = []
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            values.append(json.loads(line))
        except ValueError:
            continue

    if not values:
        raise ParseFailure("unable to parse payload as JSON")
    return values


def snapshot_from_cli_payloads(values: "list[object]") -> "Snapshot":
    results = [r for r in map(result_from_cli_payload, values) if r is not None]
    return Snapshot.from_results(results)


def entry_payload(result: "ProviderResult") -> "dict":
    identity = None
    if result.identity is not None:
        identity = {
            "accountEmail": result.identity.account_email,
            "accountOrganization": result.identity.account_organization,
            "loginMethod": result.identity.login_method,
        }

    status = None
    if result.status is not None:
        status = {
            "indicator": result.status.indicator,
            "description": result.status.description,
            "updatedAt": result.status.updated_at,
            "url": result.status.url,
        }

    return {
        "provider": result.provider,
        "source": result.source_label,
        "updatedAt": result.updated_at,
        "primary": window_payload(result.primary),
        "secondary": window_payload(result.secondary),
        "tertiary": window_payload(result.tertiary),
        "creditsRemaining": result.credits_remaining,
        "codeReviewRemainingPercent": result.code_review_remaining_percent,
        "identity": identity,
        "status": status,
    }


def snapshot_payload(snapshot: "Snapshot") -> "dict":
    return {
        "generatedAt": snapshot.generated_at,
        "enabledProviders": list(snapshot.enabled_providers),
        "entries": [entry_payload(e) for e in snapshot.entries],
    }


def envelope_payload(envelope: "SnapshotEnvelope") -> "dict":
    return {
        "schemaVersion": envelope.schema_version,
        "snapshot": snapshot_payload(envelope.snapshot),
    }


def write_cache_file(path: "Path", payload: "str") -> "None":
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")
    logger.debug("snapshot_cache_written", path=str(path))
