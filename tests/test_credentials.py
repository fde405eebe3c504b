import json
from pathlib import Path
from typing import Callable

import pytest

from codexbar.credentials import (
    CredentialStore,
    KWalletBackend,
    SecretToolBackend,
    load_token_from_credentials_file,
)
from codexbar.errors import CredentialStoreUnavailable

ENV_VARS = ("CODEXBAR_CLAUDE_OAUTH_TOKEN", "CLAUDE_OAUTH_TOKEN")


class StubBackend:
    """
    in-memory backend recording every call made against it.
    """

    def __init__(
        self,
        name: "str",
        value: "str | None" = None,
        accepts_store: "bool" = True,
    ) -> "None":
        self._name = name
        self._value = value
        self._accepts_store = accepts_store
        self.lookups: "list[tuple[str, str]]" = []
        self.stored: "list[tuple[str, str, str, str]]" = []

    @property
    def name(self) -> "str":
        return self._name

    def lookup(self, provider: "str", field: "str") -> "str | None":
        self.lookups.append((provider, field))
        return self._value

    def store(
        self,
        provider: "str",
        field: "str",
        label: "str",
        value: "str",
    ) -> "None":
        if not self._accepts_store:
            raise CredentialStoreUnavailable(f"{self._name} refused")
        self.stored.append((provider, field, label, value))


@pytest.fixture(autouse=True)
def _clear_env(monkeypatch: "pytest.MonkeyPatch") -> "None":
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _write_credentials(path: "Path", token: "object") -> "Path":
    path.write_text(json.dumps({"claudeAiOauth": {"accessToken": token}}))
    return path


class TestResolveToken:
    def test_env_override_wins_and_nothing_else_is_consulted(
        self, monkeypatch: "pytest.MonkeyPatch", tmp_path: "Path"
    ) -> "None":
        monkeypatch.setenv("CODEXBAR_CLAUDE_OAUTH_TOKEN", "  env-token  ")
        backend = StubBackend("stub", value="vault-token")
        store = CredentialStore(
            backends=[backend],
            credentials_files={
                "claude": _write_credentials(tmp_path / "c.json", "file-token")
            },
        )

        assert store.resolve_token("claude") == "env-token"
        assert backend.lookups == []

    def test_blank_env_falls_through_to_second_env_var(
        self, monkeypatch: "pytest.MonkeyPatch"
    ) -> "None":
        monkeypatch.setenv("CODEXBAR_CLAUDE_OAUTH_TOKEN", "   ")
        monkeypatch.setenv("CLAUDE_OAUTH_TOKEN", "second")
        store = CredentialStore(backends=[])
        assert store.resolve_token("claude") == "second"

    def test_first_populated_backend_wins(self, tmp_path: "Path") -> "None":
        empty = StubBackend("empty", value=None)
        populated = StubBackend("populated", value="vault-token")
        never = StubBackend("never", value="other")
        store = CredentialStore(
            backends=[empty, populated, never],
            credentials_files={
                "claude": _write_credentials(tmp_path / "c.json", "file-token")
            },
        )

        assert store.resolve_token("claude", "oauth_access_token") == "vault-token"
        assert empty.lookups == [("claude", "oauth_access_token")]
        assert populated.lookups == [("claude", "oauth_access_token")]
        assert never.lookups == []

    def test_credentials_file_is_last_resort(self, tmp_path: "Path") -> "None":
        store = CredentialStore(
            backends=[StubBackend("empty")],
            credentials_files={
                "claude": _write_credentials(tmp_path / "c.json", " file-token\n")
            },
        )
        assert store.resolve_token("claude") == "file-token"

    def test_nothing_found(self, tmp_path: "Path") -> "None":
        store = CredentialStore(
            backends=[StubBackend("empty")],
            credentials_files={"claude": tmp_path / "missing.json"},
        )
        assert store.resolve_token("claude") is None

    def test_source_order_is_visible(self, tmp_path: "Path") -> "None":
        store = CredentialStore(
            backends=[StubBackend("a"), StubBackend("b")],
            credentials_files={"claude": tmp_path / "c.json"},
        )
        names = [name for name, _ in store.sources("claude", "oauth_access_token")]
        assert names == [
            "env:CODEXBAR_CLAUDE_OAUTH_TOKEN",
            "env:CLAUDE_OAUTH_TOKEN",
            "a",
            "b",
            "credentials-file",
        ]

    def test_unexecutable_helpers_fall_through_to_credentials_file(
        self, tmp_path: "Path"
    ) -> "None":
        helper = tmp_path / "helper"
        helper.write_text("#!/bin/sh\necho vault-token\n")
        helper.chmod(0o644)
        store = CredentialStore(
            backends=[
                SecretToolBackend(program=str(helper)),
                KWalletBackend(program=str(helper)),
            ],
            credentials_files={
                "claude": _write_credentials(tmp_path / "c.json", "file-token")
            },
        )
        assert store.resolve_token("claude") == "file-token"

    def test_provider_without_overrides_uses_backends_only(self) -> "None":
        backend = StubBackend("stub", value="codex-token")
        store = CredentialStore(backends=[backend])
        assert store.resolve_token("codex", "api_token") == "codex-token"


class TestCredentialsFile:
    def test_reads_nested_token(self, tmp_path: "Path") -> "None":
        path = _write_credentials(tmp_path / "c.json", "abc")
        assert load_token_from_credentials_file(path) == "abc"

    @pytest.mark.parametrize("token", ["", "   ", None, 42])
    def test_rejects_empty_or_wrong_type(self, tmp_path: "Path", token: "object") -> "None":
        path = _write_credentials(tmp_path / "c.json", token)
        assert load_token_from_credentials_file(path) is None

    def test_rejects_malformed_json(self, tmp_path: "Path") -> "None":
        path = tmp_path / "c.json"
        path.write_text("{not json")
        assert load_token_from_credentials_file(path) is None

    def test_rejects_wrong_shape(self, tmp_path: "Path") -> "None":
        path = tmp_path / "c.json"
        path.write_text(json.dumps({"claudeAiOauth": "flat"}))
        assert load_token_from_credentials_file(path) is None


class TestStoreToken:
    def test_first_accepting_backend_wins(self) -> "None":
        refusing = StubBackend("refusing", accepts_store=False)
        accepting = StubBackend("accepting")
        unused = StubBackend("unused")
        store = CredentialStore(backends=[refusing, accepting, unused])

        store.store_token("claude", "oauth_access_token", "Label", "tok")

        assert accepting.stored == [("claude", "oauth_access_token", "Label", "tok")]
        assert unused.stored == []

    def test_all_refusing_raises(self) -> "None":
        store = CredentialStore(
            backends=[
                StubBackend("a", accepts_store=False),
                StubBackend("b", accepts_store=False),
            ]
        )
        with pytest.raises(CredentialStoreUnavailable):
            store.store_token("claude", "oauth_access_token", "Label", "tok")

    def test_no_backends_raises(self) -> "None":
        with pytest.raises(CredentialStoreUnavailable):
            CredentialStore(backends=[]).store_token("claude", "f", "Label", "tok")


class TestSecretToolBackend:
    def test_lookup_arguments_and_trimming(
        self, fake_program: "Callable[[str, str], str]", tmp_path: "Path"
    ) -> "None":
        log = tmp_path / "argv.json"
        program = fake_program(
            "secret-tool",
            f"""
            import json, sys
            json.dump(sys.argv[1:], open({str(log)!r}, "w"))
            print("  vault-token  ")
            """,
        )

        backend = SecretToolBackend(program=program)
        assert backend.lookup("claude", "oauth_access_token") == "vault-token"
        assert json.loads(log.read_text()) == [
            "lookup",
            "service",
            "codexbar",
            "provider",
            "claude",
            "field",
            "oauth_access_token",
        ]

    def test_lookup_failure_is_none(self, fake_program: "Callable[[str, str], str]") -> "None":
        program = fake_program("secret-tool", "import sys; sys.exit(1)\n")
        assert SecretToolBackend(program=program).lookup("claude", "f") is None

    def test_missing_helper_is_unavailable(self) -> "None":
        backend = SecretToolBackend(program="codexbar-no-secret-tool")
        assert backend.lookup("claude", "f") is None
        with pytest.raises(CredentialStoreUnavailable):
            backend.store("claude", "f", "Label", "tok")

    def test_store_passes_secret_on_stdin(
        self, fake_program: "Callable[[str, str], str]", tmp_path: "Path"
    ) -> "None":
        log = tmp_path / "store.json"
        program = fake_program(
            "secret-tool",
            f"""
            import json, sys
            json.dump({{"argv": sys.argv[1:], "stdin": sys.stdin.read()}}, open({str(log)!r}, "w"))
            """,
        )

        SecretToolBackend(program=program).store("claude", "oauth_access_token", "My Label", "tok")

        recorded = json.loads(log.read_text())
        assert recorded["argv"][:3] == ["store", "--label", "My Label"]
        assert recorded["argv"][3:] == [
            "service",
            "codexbar",
            "provider",
            "claude",
            "field",
            "oauth_access_token",
        ]
        assert recorded["stdin"] == "tok\n"

    def test_store_refusal_raises(self, fake_program: "Callable[[str, str], str]") -> "None":
        program = fake_program(
            "secret-tool",
            "import sys; print('no keyring', file=sys.stderr); sys.exit(1)\n",
        )
        with pytest.raises(CredentialStoreUnavailable, match="no keyring"):
            SecretToolBackend(program=program).store("claude", "f", "Label", "tok")


class TestKWalletBackend:
    def test_tries_each_wallet(
        self, fake_program: "Callable[[str, str], str]", tmp_path: "Path"
    ) -> "None":
        program = fake_program(
            "kwallet-query",
            """
            import sys
            if sys.argv[-1] != "kdewallet5":
                sys.exit(1)
            assert sys.argv[1:5] == ["-f", "CodexBar", "-r", "claude.oauth_access_token"]
            print("wallet-token")
            """,
        )
        backend = KWalletBackend(program=program)
        assert backend.lookup("claude", "oauth_access_token") == "wallet-token"

    def test_store_fails_after_all_wallets(
        self, fake_program: "Callable[[str, str], str]"
    ) -> "None":
        program = fake_program(
            "kwallet-query",
            "import sys; print('wallet closed', file=sys.stderr); sys.exit(1)\n",
        )
        with pytest.raises(CredentialStoreUnavailable, match="wallet closed"):
            KWalletBackend(program=program).store("claude", "f", "Label", "tok")
