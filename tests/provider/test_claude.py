import json

import pytest

from codexbar.credentials import CredentialStore
from codexbar.errors import CommandTimeout, ParseFailure, ProcessNotFound
from codexbar.models import IdentityInfo, UsageWindow
from codexbar.process import CommandOutput
from codexbar.provider.claude import (
    CLAUDE_USAGE_URL,
    ClaudeProvider,
    result_from_usage_json,
    split_http_status,
)


class FakeRunner:
    def __init__(self, outcome: "CommandOutput | Exception") -> "None":
        self._outcome = outcome
        self.calls: "list[dict]" = []

    def __call__(
        self,
        program: "str",
        args: "list[str]",
        input_text: "str | None" = None,
        timeout: "float" = 20.0,
    ) -> "CommandOutput":
        self.calls.append(
            {"program": program, "args": args, "input_text": input_text, "timeout": timeout}
        )
        if isinstance(self._outcome, Exception):
            raise self._outcome
        return self._outcome


class FixedCredentials(CredentialStore):
    def __init__(self, token: "str | None") -> "None":
        super().__init__(backends=[])
        self._token = token

    def resolve_token(self, provider: "str", field: "str" = "oauth_access_token") -> "str | None":
        return self._token


USAGE_BODY = json.dumps(
    {
        "five_hour": {"utilization": 41.0, "resets_at": "2026-02-11T23:30:00Z"},
        "seven_day": {"utilization": "54", "resets_at": 1771203600},
        "seven_day_sonnet": None,
        "seven_day_opus": {"utilization": 12},
    }
)

USAGE_PANEL = (
    "\x1b[2J\x1b[H Settings  Status  Config  \x1b[7mUsage\x1b[0m\n"
    "\n"
    " Current session\n"
    " \x1b[34m█████████▌\x1b[0m                                 19% used\n"
    " Resets 4pm (Europe/Berlin)\n"
    "\n"
    " Current week (all models)\n"
    " ██████████████████▌                                37% used\n"
    " Resets Oct 23, 9am (Europe/Berlin)\n"
    "\n"
    " Current week (Sonnet only)\n"
    " ███▌                                                7% used\n"
)


class TestSplitHttpStatus:
    def test_splits_at_last_newline(self) -> "None":
        assert split_http_status('{"a": 1}\n{"b": 2}\n200\n') == ('{"a": 1}\n{"b": 2}', 200)

    def test_handles_crlf_and_empty_body(self) -> "None":
        assert split_http_status("\n401\r\n") == ("", 401)

    @pytest.mark.parametrize("output", ["", "200", "body\nnot-a-code"])
    def test_unparseable(self, output: "str") -> "None":
        assert split_http_status(output) is None


class TestResultFromUsageJson:
    def test_maps_windows(self) -> "None":
        result = result_from_usage_json(USAGE_BODY)

        assert result.source_label == "claude-oauth-api"
        assert result.primary == UsageWindow(
            used_percent=41.0, window_minutes=300, resets_at="2026-02-11T23:30:00Z"
        )
        assert result.secondary == UsageWindow(
            used_percent=54.0, window_minutes=10080, resets_at="unix:1771203600"
        )
        # sonnet missing, opus used instead
        assert result.tertiary == UsageWindow(used_percent=12.0, window_minutes=10080)
        assert result.identity == IdentityInfo(login_method="oauth")
        assert result.credits_remaining is None

    def test_utilization_is_clamped(self) -> "None":
        result = result_from_usage_json(json.dumps({"five_hour": {"utilization": 180}}))
        assert result.primary.used_percent == 100.0

    def test_window_with_only_reset_keeps_unknown_usage(self) -> "None":
        result = result_from_usage_json(
            json.dumps({"seven_day": {"utilization": None, "resets_at": " 2026-10-20 "}})
        )
        assert result.secondary.used_percent is None
        assert result.secondary.resets_at == "2026-10-20"

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            "[]",
            json.dumps({}),
            json.dumps({"five_hour": {"utilization": None, "resets_at": "  "}}),
        ],
    )
    def test_no_windows(self, body: "str") -> "None":
        assert result_from_usage_json(body) is None


class TestClaudeOauthStrategy:
    def test_curl_contract(self) -> "None":
        runner = FakeRunner(CommandOutput(stdout=USAGE_BODY + "\n200", stderr="", returncode=0))
        provider = ClaudeProvider(FixedCredentials("tok-123"), runner=runner)

        result = provider.fetch_via_oauth()

        assert result.primary.used_percent == 41.0
        call = runner.calls[0]
        assert call["program"] == "curl"
        assert call["timeout"] == 20.0
        assert call["args"] == [
            "-sS",
            "--location",
            "--max-time",
            "15",
            "-H",
            "Authorization: Bearer tok-123",
            "-H",
            "anthropic-beta: oauth-2025-04-20",
            "-H",
            "Accept: application/json",
            "-w",
            "\n%{http_code}",
            CLAUDE_USAGE_URL,
        ]

    def test_without_token_curl_is_not_run(self) -> "None":
        runner = FakeRunner(CommandOutput(stdout="", stderr="", returncode=0))
        provider = ClaudeProvider(FixedCredentials(None), runner=runner)
        assert provider.fetch_via_oauth() is None
        assert runner.calls == []

    def test_non_200_is_no_data(self) -> "None":
        runner = FakeRunner(
            CommandOutput(stdout='{"error": "expired"}\n401', stderr="", returncode=0)
        )
        provider = ClaudeProvider(FixedCredentials("tok"), runner=runner)
        assert provider.fetch_via_oauth() is None

    @pytest.mark.parametrize(
        "error", [ProcessNotFound("curl"), CommandTimeout("curl", 20.0)]
    )
    def test_curl_unavailable_is_no_data(self, error: "Exception") -> "None":
        provider = ClaudeProvider(FixedCredentials("tok"), runner=FakeRunner(error))
        assert provider.fetch_via_oauth() is None


class TestClaudeCliStrategy:
    def test_scrapes_usage_panel(self) -> "None":
        runner = FakeRunner(CommandOutput(stdout=USAGE_PANEL, stderr="", returncode=0))
        provider = ClaudeProvider(FixedCredentials(None), runner=runner)

        result = provider.fetch_via_cli()

        assert result.source_label == "claude-cli"
        assert result.primary == UsageWindow(used_percent=19.0, window_minutes=300)
        assert result.secondary == UsageWindow(used_percent=37.0, window_minutes=10080)
        assert result.tertiary == UsageWindow(used_percent=7.0, window_minutes=10080)
        assert runner.calls[0]["program"] == "claude"
        assert runner.calls[0]["input_text"] == "/usage\n"

    def test_remaining_phrasing_is_inverted(self) -> "None":
        panel = "Current session\n  80% remaining\n"
        runner = FakeRunner(CommandOutput(stdout=panel, stderr="", returncode=0))
        result = ClaudeProvider(FixedCredentials(None), runner=runner).fetch_via_cli()
        assert result.primary.used_percent == 20.0
        assert result.secondary is None

    def test_unrecognised_output_raises_parse_failure(self) -> "None":
        runner = FakeRunner(CommandOutput(stdout="Welcome!\n", stderr="", returncode=0))
        with pytest.raises(ParseFailure):
            ClaudeProvider(FixedCredentials(None), runner=runner).fetch_via_cli()

    def test_not_installed_is_no_data(self) -> "None":
        runner = FakeRunner(ProcessNotFound("claude"))
        assert ClaudeProvider(FixedCredentials(None), runner=runner).fetch_via_cli() is None

    def test_strategy_order(self) -> "None":
        names = [s.name for s in ClaudeProvider(FixedCredentials(None)).strategies()]
        assert names == ["claude-oauth-api", "claude-cli"]
