import json
import os
from pathlib import Path
from typing import Callable, Protocol, Sequence

import structlog

from codexbar.errors import CommandTimeout, CredentialStoreUnavailable, ProcessNotFound
from codexbar.process import run_command

logger = structlog.get_logger()

SECRET_SERVICE = "codexbar"
KWALLET_FOLDER = "CodexBar"
KWALLET_WALLETS: "tuple[str, ...]" = ("kdewallet", "kdewallet5")

LOOKUP_TIMEOUT_SECONDS = 8.0
STORE_TIMEOUT_SECONDS = 12.0

# env vars checked before any secret backend, in order
ENV_OVERRIDES: "dict[str, tuple[str, ...]]" = {
    "claude": ("CODEXBAR_CLAUDE_OAUTH_TOKEN", "CLAUDE_OAUTH_TOKEN"),
}

# nested keys of the access token inside a vendor credentials file
CREDENTIALS_FILE_KEYS: "dict[str, tuple[str, ...]]" = {
    "claude": ("claudeAiOauth", "accessToken"),
}

TokenSource = Callable[[], "str | None"]


def _non_empty(value: "str | None") -> "str | None":
    if value is None:
        return None
    value = value.strip()
    return value or None


class SecretBackend(Protocol):
    """
    SecretBackend is an OS credential vault reached through a helper
    program. A missing helper means "unavailable", not an error.
    """

    @property
    def name(self) -> "str": ...

    def lookup(self, provider: "str", field: "str") -> "str | None": ...

    def store(
        self,
        provider: "str",
        field: "str",
        label: "str",
        value: "str",
    ) -> "None": ...


class SecretToolBackend:
    """
    libsecret via `secret-tool`, keyed by service/provider/field
    attributes.
    """

    def __init__(self, program: "str" = "secret-tool") -> "None":
        self._program = program

    @property
    def name(self) -> "str":
        return "secret-tool"

    def _attributes(self, provider: "str", field: "str") -> "list[str]":
        return ["service", SECRET_SERVICE, "provider", provider, "field", field]

    def lookup(self, provider: "str", field: "str") -> "str | None":
        try:
            output = run_command(
                self._program,
                ["lookup", *self._attributes(provider, field)],
                timeout=LOOKUP_TIMEOUT_SECONDS,
            )
        except (ProcessNotFound, CommandTimeout) as exc:
            logger.debug("secret_backend_unavailable", backend=self.name, error=str(exc))
            return None

        if not output.ok:
            return None
        return _non_empty(output.stdout)

    def store(
        self,
        provider: "str",
        field: "str",
        label: "str",
        value: "str",
    ) -> "None":
        try:
            output = run_command(
                self._program,
                ["store", "--label", label, *self._attributes(provider, field)],
                input_text=f"{value}\n",
                timeout=STORE_TIMEOUT_SECONDS,
            )
        except (ProcessNotFound, CommandTimeout) as exc:
            raise CredentialStoreUnavailable(
                f"failed to invoke {self._program}: {exc}"
            ) from exc

        if not output.ok:
            raise CredentialStoreUnavailable(
                f"{self._program} refused to store the secret: {output.stderr.strip()}"
            )


class KWalletBackend:
    """
    KDE Wallet via `kwallet-query`. Entries live in the CodexBar
    folder as `<provider>.<field>`; both wallet names KDE has used
    are tried.
    """

    def __init__(
        self,
        program: "str" = "kwallet-query",
        wallets: "Sequence[str]" = KWALLET_WALLETS,
    ) -> "None":
        self._program = program
        self._wallets = tuple(wallets)

    @property
    def name(self) -> "str":
        return "kwallet"

    def lookup(self, provider: "str", field: "str") -> "str | None":
        entry = f"{provider}.{field}"
        for wallet in self._wallets:
            try:
                output = run_command(
                    self._program,
                    ["-f", KWALLET_FOLDER, "-r", entry, wallet],
                    timeout=LOOKUP_TIMEOUT_SECONDS,
                )
            except ProcessNotFound:
                return None
            except CommandTimeout:
                continue

            if not output.ok:
                continue
            value = _non_empty(output.stdout)
            if value:
                return value
        return None

    def store(
        self,
        provider: "str",
        field: "str",
        label: "str",
        value: "str",
    ) -> "None":
        entry = f"{provider}.{field}"
        last_error = "unknown error"

        for wallet in self._wallets:
            try:
                output = run_command(
                    self._program,
                    ["-f", KWALLET_FOLDER, "-w", entry, wallet],
                    input_text=f"{value}\n",
                    timeout=STORE_TIMEOUT_SECONDS,
                )
            except ProcessNotFound as exc:
                raise CredentialStoreUnavailable(str(exc)) from exc
            except CommandTimeout as exc:
                last_error = str(exc)
                continue

            if output.ok:
                return
            last_error = output.stderr.strip() or f"exit status {output.returncode}"

        raise CredentialStoreUnavailable(
            f"failed to store credentials with KDE Wallet: {last_error}"
        )


def default_backends() -> "list[SecretBackend]":
    return [SecretToolBackend(), KWalletBackend()]


def load_token_from_credentials_file(
    path: "Path",
    keys: "Sequence[str]" = CREDENTIALS_FILE_KEYS["claude"],
) -> "str | None":
    """
    reads an access token out of a vendor's JSON credentials file.
    The file is never written.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None

    value: "object" = data
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)

    if not isinstance(value, str):
        return None
    return _non_empty(value)


class CredentialStore:
    """
    CredentialStore resolves and persists bearer tokens.

    Lookup goes through an ordered list of sources: environment
    overrides, then each secret backend, then the vendor credentials
    file. The first non-empty value wins and later sources are never
    consulted. Writes go to the first backend that accepts them.
    """

    def __init__(
        self,
        backends: "Sequence[SecretBackend] | None" = None,
        credentials_files: "dict[str, Path] | None" = None,
        env_overrides: "dict[str, tuple[str, ...]] | None" = None,
    ) -> "None":
        self._backends: "list[SecretBackend]" = (
            list(backends) if backends is not None else default_backends()
        )
        self._credentials_files = credentials_files or {}
        self._env_overrides = env_overrides if env_overrides is not None else ENV_OVERRIDES

    def sources(self, provider: "str", field: "str") -> "list[tuple[str, TokenSource]]":
        """
        the ordered lookup chain for provider/field, as
        (source name, callable) pairs.
        """
        chain: "list[tuple[str, TokenSource]]" = []

        for var in self._env_overrides.get(provider, ()):
            chain.append((f"env:{var}", lambda var=var: _non_empty(os.environ.get(var))))

        for backend in self._backends:
            chain.append(
                (
                    backend.name,
                    lambda backend=backend: backend.lookup(provider, field),
                )
            )

        path = self._credentials_files.get(provider)
        keys = CREDENTIALS_FILE_KEYS.get(provider)
        if path is not None and keys is not None:
            chain.append(
                ("credentials-file", lambda: load_token_from_credentials_file(path, keys))
            )

        return chain

    def resolve_token(
        self,
        provider: "str",
        field: "str" = "oauth_access_token",
    ) -> "str | None":
        for source_name, source in self.sources(provider, field):
            token = source()
            if token:
                logger.debug("token_resolved", provider=provider, source=source_name)
                return token

        logger.debug("token_missing", provider=provider)
        return None

    def store_token(
        self,
        provider: "str",
        field: "str",
        label: "str",
        value: "str",
    ) -> "None":
        """
        writes value to the first backend that accepts it. Raises
        CredentialStoreUnavailable only when every backend refuses.
        """
        failures: "list[str]" = []
        for backend in self._backends:
            try:
                backend.store(provider, field, label, value)
            except CredentialStoreUnavailable as exc:
                logger.debug("secret_store_refused", backend=backend.name, error=str(exc))
                failures.append(f"{backend.name}: {exc}")
                continue

            logger.info("token_stored", provider=provider, backend=backend.name)
            return

        raise CredentialStoreUnavailable(
            "failed to store credentials securely; install libsecret-tools "
            "(secret-tool) or ensure KDE Wallet is available"
            + (f" ({'; '.join(failures)})" if failures else "")
        )
