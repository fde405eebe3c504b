import math
from typing import Callable

import structlog

from codexbar.config import VERSION
from codexbar.errors import CodexbarError, CommandTimeout, ParseFailure, ProcessNotFound
from codexbar.models import (
    ProviderResult,
    UsageWindow,
    clamp_percent,
    identity_from_account,
)
from codexbar.process import CommandOutput, run_command
from codexbar.provider.base import Strategy
from codexbar.rpc import RateLimitWindow, RpcSession
from codexbar.scraper import extract_credits, extract_labelled_used_percent, strip_ansi

logger = structlog.get_logger()

CODEX_STATUS_PAGE_URL = "https://status.openai.com"

# read-only sandbox, never auto-approve anything
RESTRICTED_ARGS: "list[str]" = ["-s", "read-only", "-a", "untrusted"]
APP_SERVER_ARGS: "list[str]" = [*RESTRICTED_ARGS, "app-server"]

RPC_CLIENT_NAME = "codexbar"
STATUS_TIMEOUT_SECONDS = 20.0

SESSION_WINDOW_MINUTES = 300
WEEKLY_WINDOW_MINUTES = 10080

SOURCE_RPC = "codex-cli"
SOURCE_STATUS = "codex-status"


def window_from_rpc(window: "RateLimitWindow | None") -> "UsageWindow | None":
    """
    converts an app-server rate limit window. A window without a
    used percentage carries nothing worth showing and is dropped.
    """
    if window is None or window.used_percent is None:
        return None

    return UsageWindow(
        used_percent=clamp_percent(window.used_percent),
        window_minutes=window.window_duration_mins,
        resets_at=f"unix:{window.resets_at}" if window.resets_at is not None else None,
    )


def _parse_balance(balance: "str | None") -> "float | None":
    if balance is None:
        return None
    try:
        value = float(balance)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


class CodexProvider:
    """
    CodexProvider reads usage from the Codex CLI. The app-server
    JSON-RPC channel is tried first since it reports exact windows,
    reset times and the signed-in account. Scraping `/status` is the
    fallback when the app-server is unavailable or misbehaves.
    """

    def __init__(
        self,
        program: "str" = "codex",
        rpc_read_timeout: "float" = 30.0,
        status_timeout: "float" = STATUS_TIMEOUT_SECONDS,
        start_session: "Callable[..., RpcSession | None]" = RpcSession.start,
        runner: "Callable[..., CommandOutput]" = run_command,
    ) -> "None":
        self._program = program
        self._rpc_read_timeout = rpc_read_timeout
        self._status_timeout = status_timeout
        self._start_session = start_session
        self._run = runner

    @property
    def name(self) -> "str":
        return "codex"

    @property
    def status_page_url(self) -> "str | None":
        return CODEX_STATUS_PAGE_URL

    def strategies(self) -> "list[Strategy]":
        return [
            Strategy(SOURCE_RPC, self.fetch_via_rpc),
            Strategy(SOURCE_STATUS, self.fetch_via_status),
        ]

    def fetch_via_rpc(self) -> "ProviderResult | None":
        session = self._start_session(
            self._program,
            APP_SERVER_ARGS,
            read_timeout=self._rpc_read_timeout,
        )
        if session is None:
            return None

        with session:
            session.initialize(RPC_CLIENT_NAME, VERSION)

            # identity is optional enrichment, the limits are not
            try:
                account = session.fetch_account()
            except CodexbarError as exc:
                logger.debug("codex_account_read_failed", error=str(exc))
                account = None

            limits = session.fetch_rate_limits()

        primary = window_from_rpc(limits.primary)
        secondary = window_from_rpc(limits.secondary)
        if primary is None and secondary is None:
            return None

        return ProviderResult(
            provider=self.name,
            source_label=SOURCE_RPC,
            primary=primary,
            secondary=secondary,
            credits_remaining=_parse_balance(limits.credits_balance),
            identity=identity_from_account(account),
        )

    def fetch_via_status(self) -> "ProviderResult | None":
        try:
            output = self._run(
                self._program,
                RESTRICTED_ARGS,
                input_text="/status\n",
                timeout=self._status_timeout,
            )
        except (ProcessNotFound, CommandTimeout) as exc:
            logger.debug("codex_status_unavailable", error=str(exc))
            return None

        text = strip_ansi(f"{output.stdout}\n{output.stderr}")
        five_hour_used = extract_labelled_used_percent(text, "5h limit")
        weekly_used = extract_labelled_used_percent(text, "weekly limit")
        credits = extract_credits(text)

        if five_hour_used is None and weekly_used is None and credits is None:
            raise ParseFailure("no usage figures found in codex /status output")

        return ProviderResult(
            provider=self.name,
            source_label=SOURCE_STATUS,
            primary=(
                UsageWindow(
                    used_percent=five_hour_used,
                    window_minutes=SESSION_WINDOW_MINUTES,
                )
                if five_hour_used is not None
                else None
            ),
            secondary=(
                UsageWindow(
                    used_percent=weekly_used,
                    window_minutes=WEEKLY_WINDOW_MINUTES,
                )
                if weekly_used is not None
                else None
            ),
            credits_remaining=credits,
        )
