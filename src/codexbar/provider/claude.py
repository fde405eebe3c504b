import json
import math
from typing import Callable

import structlog

from codexbar.credentials import CredentialStore
from codexbar.errors import CommandTimeout, ParseFailure, ProcessNotFound
from codexbar.models import IdentityInfo, ProviderResult, UsageWindow, clamp_percent
from codexbar.process import CommandOutput, run_command
from codexbar.provider.base import Strategy
from codexbar.scraper import extract_windowed_used_percent, strip_ansi

logger = structlog.get_logger()

CLAUDE_STATUS_PAGE_URL = "https://status.claude.com"
CLAUDE_USAGE_URL = "https://api.anthropic.com/api/oauth/usage"
OAUTH_BETA_HEADER = "anthropic-beta: oauth-2025-04-20"
OAUTH_TOKEN_FIELD = "oauth_access_token"

HTTP_TIMEOUT_SECONDS = 20.0
# curl's own limit, kept below the process deadline
CURL_MAX_TIME_SECONDS = 15
INTERACTIVE_TIMEOUT_SECONDS = 30.0

SESSION_WINDOW_MINUTES = 300
WEEKLY_WINDOW_MINUTES = 10080

SOURCE_OAUTH = "claude-oauth-api"
SOURCE_CLI = "claude-cli"

# labels as printed by the interactive `/usage` panel
SESSION_LABELS: "tuple[str, ...]" = ("current session",)
WEEKLY_LABELS: "tuple[str, ...]" = ("current week (all models)", "current week")
MODEL_WEEKLY_LABELS: "tuple[str, ...]" = ("current week (sonnet", "current week (opus")


def split_http_status(output: "str") -> "tuple[str, int] | None":
    """
    splits curl output produced with `-w "\\n%{http_code}"` into the
    response body and the numeric status code on the last line.
    """
    trimmed = output.rstrip("\r\n")
    body, newline, status_line = trimmed.rpartition("\n")
    if not newline:
        return None
    try:
        return body, int(status_line.strip())
    except ValueError:
        return None


def _number(value: "object") -> "float | None":
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def _reset_time(value: "object") -> "str | None":
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, int) and not isinstance(value, bool):
        return f"unix:{value}"
    return None


def window_from_usage_json(
    payload: "dict",
    key: "str",
    window_minutes: "int",
) -> "UsageWindow | None":
    window = payload.get(key)
    if not isinstance(window, dict):
        return None

    utilization = _number(window.get("utilization"))
    used_percent = clamp_percent(utilization) if utilization is not None else None
    resets_at = _reset_time(window.get("resets_at"))

    if used_percent is None and resets_at is None:
        return None

    return UsageWindow(
        used_percent=used_percent,
        window_minutes=window_minutes,
        resets_at=resets_at,
    )


def result_from_usage_json(body: "str") -> "ProviderResult | None":
    """
    maps the OAuth usage endpoint payload onto a ProviderResult.
    The model-specific weekly window prefers sonnet over opus.
    """
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    primary = window_from_usage_json(payload, "five_hour", SESSION_WINDOW_MINUTES)
    secondary = window_from_usage_json(payload, "seven_day", WEEKLY_WINDOW_MINUTES)
    tertiary = window_from_usage_json(
        payload, "seven_day_sonnet", WEEKLY_WINDOW_MINUTES
    ) or window_from_usage_json(payload, "seven_day_opus", WEEKLY_WINDOW_MINUTES)

    if primary is None and secondary is None and tertiary is None:
        return None

    return ProviderResult(
        provider="claude",
        source_label=SOURCE_OAUTH,
        primary=primary,
        secondary=secondary,
        tertiary=tertiary,
        identity=IdentityInfo(login_method="oauth"),
    )


class ClaudeProvider:
    """
    ClaudeProvider reads usage either from the OAuth usage endpoint,
    using a token cached by the Claude CLI login, or by feeding
    `/usage` to the interactive CLI and scraping what it prints.
    """

    def __init__(
        self,
        credentials: "CredentialStore",
        program: "str" = "claude",
        curl_program: "str" = "curl",
        usage_url: "str" = CLAUDE_USAGE_URL,
        runner: "Callable[..., CommandOutput]" = run_command,
    ) -> "None":
        self._credentials = credentials
        self._program = program
        self._curl = curl_program
        self._usage_url = usage_url
        self._run = runner

    @property
    def name(self) -> "str":
        return "claude"

    @property
    def status_page_url(self) -> "str | None":
        return CLAUDE_STATUS_PAGE_URL

    def strategies(self) -> "list[Strategy]":
        return [
            Strategy(SOURCE_OAUTH, self.fetch_via_oauth),
            Strategy(SOURCE_CLI, self.fetch_via_cli),
        ]

    def _curl_args(self, access_token: "str") -> "list[str]":
        return [
            "-sS",
            "--location",
            "--max-time",
            str(CURL_MAX_TIME_SECONDS),
            "-H",
            f"Authorization: Bearer {access_token}",
            "-H",
            OAUTH_BETA_HEADER,
            "-H",
            "Accept: application/json",
            "-w",
            "\n%{http_code}",
            self._usage_url,
        ]

    def fetch_via_oauth(self) -> "ProviderResult | None":
        access_token = self._credentials.resolve_token(self.name, OAUTH_TOKEN_FIELD)
        if access_token is None:
            return None

        try:
            output = self._run(
                self._curl,
                self._curl_args(access_token),
                timeout=HTTP_TIMEOUT_SECONDS,
            )
        except (ProcessNotFound, CommandTimeout) as exc:
            logger.debug("claude_oauth_unavailable", error=str(exc))
            return None

        parts = split_http_status(output.stdout)
        if parts is None:
            return None

        body, status_code = parts
        if status_code != 200:
            logger.debug("claude_oauth_http_status", status_code=status_code)
            return None

        return result_from_usage_json(body)

    def fetch_via_cli(self) -> "ProviderResult | None":
        try:
            output = self._run(
                self._program,
                [],
                input_text="/usage\n",
                timeout=INTERACTIVE_TIMEOUT_SECONDS,
            )
        except (ProcessNotFound, CommandTimeout) as exc:
            logger.debug("claude_cli_unavailable", error=str(exc))
            return None

        text = strip_ansi(f"{output.stdout}\n{output.stderr}")
        session_used = extract_windowed_used_percent(text, SESSION_LABELS)
        weekly_used = extract_windowed_used_percent(text, WEEKLY_LABELS)
        model_used = extract_windowed_used_percent(text, MODEL_WEEKLY_LABELS)

        if session_used is None and weekly_used is None and model_used is None:
            raise ParseFailure("no usage figures found in claude /usage output")

        def window(used: "float | None", minutes: "int") -> "UsageWindow | None":
            if used is None:
                return None
            return UsageWindow(used_percent=used, window_minutes=minutes)

        return ProviderResult(
            provider=self.name,
            source_label=SOURCE_CLI,
            primary=window(session_used, SESSION_WINDOW_MINUTES),
            secondary=window(weekly_used, WEEKLY_WINDOW_MINUTES),
            tertiary=window(model_used, WEEKLY_WINDOW_MINUTES),
            identity=IdentityInfo(login_method="cli"),
        )
