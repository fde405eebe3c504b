import subprocess
import sys
from pathlib import Path

import httpx
import structlog
from prometheus_client import CollectorRegistry

from codexbar.cli import parse_args
from codexbar.config import Config
from codexbar.credentials import CredentialStore, load_token_from_credentials_file
from codexbar.errors import CodexbarError, CredentialStoreUnavailable, ProcessNotFound
from codexbar.logging import setup_logging
from codexbar.metrics import MetricsUpdater
from codexbar.models import ProviderResult, Snapshot, SnapshotEnvelope
from codexbar.orchestrator import Resolver
from codexbar.provider.claude import OAUTH_TOKEN_FIELD, ClaudeProvider
from codexbar.provider.codex import CodexProvider
from codexbar.render import dump_json, render_json, render_text
from codexbar.snapshot import (
    envelope_payload,
    parse_json_values,
    snapshot_from_cli_payloads,
    snapshot_payload,
    write_cache_file,
)
from codexbar.status import new_status_client

logger = structlog.get_logger()

OAUTH_TOKEN_LABEL = "CodexBar Claude OAuth Access Token"


def build_credentials(config: "Config") -> "CredentialStore":
    return CredentialStore(credentials_files={"claude": config.claude_credentials_path})


def build_resolver(
    config: "Config",
    metrics_updater: "MetricsUpdater",
    status_client: "httpx.Client | None" = None,
) -> "Resolver":
    # order here is the order providers are resolved and reported
    providers = [
        CodexProvider(program=config.codex_bin),
        ClaudeProvider(
            credentials=build_credentials(config),
            program=config.claude_bin,
            curl_program=config.curl_bin,
        ),
    ]
    return Resolver(
        providers,
        metrics_updater,
        source_override=config.source_override,
        status_client=status_client,
    )


def resolve_live(
    config: "Config",
    metrics_updater: "MetricsUpdater",
) -> "list[ProviderResult]":
    status_client = new_status_client() if config.include_status else None
    try:
        resolver = build_resolver(config, metrics_updater, status_client)
        return resolver.resolve(config.provider).results
    finally:
        if status_client is not None:
            status_client.close()
        if config.metrics_textfile:
            metrics_updater.write_textfile(config.metrics_textfile)


def run_usage(config: "Config", metrics_updater: "MetricsUpdater") -> "None":
    results = resolve_live(config, metrics_updater)
    if config.output_format == "json":
        print(render_json(results, config.include_status, config.pretty))
    else:
        print(render_text(results), end="")


def run_snapshot(config: "Config", metrics_updater: "MetricsUpdater") -> "None":
    if config.input_path:
        path = Path(config.input_path)
        try:
            raw = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise CodexbarError(f"failed to read JSON input from {path}: {exc}") from exc
        snapshot = snapshot_from_cli_payloads(parse_json_values(raw))
    else:
        snapshot = Snapshot.from_results(resolve_live(config, metrics_updater))

    if config.envelope:
        document = envelope_payload(SnapshotEnvelope(snapshot))
    else:
        document = snapshot_payload(snapshot)
    payload = dump_json(document, config.pretty)
    if config.write_cache:
        write_cache_file(Path(config.write_cache), payload)
    print(payload)


def run_auth(config: "Config") -> "None":
    provider = config.provider.strip().lower()
    if provider != "claude":
        raise CodexbarError(f"unsupported auth provider '{provider}'")

    print("Starting Claude browser login...")
    try:
        completed = subprocess.run([config.claude_bin, "auth", "login"])
    except FileNotFoundError as exc:
        raise ProcessNotFound(config.claude_bin) from exc
    if completed.returncode != 0:
        raise CodexbarError(
            f"`claude auth login` exited with status {completed.returncode}"
        )

    credentials = build_credentials(config)
    access_token = load_token_from_credentials_file(
        config.claude_credentials_path
    ) or credentials.resolve_token("claude", OAUTH_TOKEN_FIELD)

    if access_token:
        try:
            credentials.store_token(
                "claude", OAUTH_TOKEN_FIELD, OAUTH_TOKEN_LABEL, access_token
            )
        except CredentialStoreUnavailable as exc:
            logger.warning("token_cache_failed", error=str(exc))

    print("Claude browser login complete. CodexBar will use OAuth usage data.")


def main(argv: "list[str] | None" = None) -> "int":
    config = parse_args(argv)
    setup_logging(config.log_level)
    # a private registry: a one-shot CLI has no use for process metrics
    metrics_updater = MetricsUpdater(registry=CollectorRegistry())

    try:
        if config.command == "auth":
            run_auth(config)
        elif config.command == "snapshot":
            run_snapshot(config, metrics_updater)
        else:
            run_usage(config, metrics_updater)
    except CodexbarError as exc:
        print(f"codexbar: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
