import argparse

from codexbar.config import Config

# subcommand options copied onto Config when present
_COMMAND_FIELDS: "tuple[str, ...]" = (
    "output_format",
    "provider",
    "source",
    "include_status",
    "pretty",
    "input_path",
    "write_cache",
    "envelope",
)


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="codexbar",
        description="Usage and rate-limit readout for AI coding assistants",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: warning)",
    )
    parser.add_argument(
        "--metrics.textfile",
        dest="metrics_textfile",
        default="",
        help="Write Prometheus metrics to this file after resolving",
    )
    subparsers = parser.add_subparsers(dest="command")

    usage = subparsers.add_parser("usage", help="Show usage for providers (default)")
    usage.add_argument(
        "--format",
        dest="output_format",
        default="text",
        choices=["text", "json"],
        help="Output format (default: text)",
    )
    usage.add_argument(
        "--provider",
        default="all",
        help="Provider to query: all, both, codex or claude (default: all)",
    )
    usage.add_argument(
        "--source",
        default="auto",
        help="Source label to report; auto keeps the strategy's own (default: auto)",
    )
    usage.add_argument(
        "--status",
        dest="include_status",
        action="store_true",
        help="Include provider status page information",
    )
    usage.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    auth = subparsers.add_parser("auth", help="Log in and cache the provider token")
    auth.add_argument(
        "--provider",
        default="claude",
        help="Provider to authenticate (default: claude)",
    )

    snapshot = subparsers.add_parser("snapshot", help="Print a widget snapshot")
    snapshot.add_argument("--provider", default="all")
    snapshot.add_argument("--status", dest="include_status", action="store_true")
    snapshot.add_argument("--pretty", action="store_true")
    snapshot.add_argument(
        "--input",
        dest="input_path",
        default="",
        help="Build the snapshot from saved `usage --format json` output",
    )
    snapshot.add_argument(
        "--write-cache",
        dest="write_cache",
        default="",
        help="Also write the snapshot to this path",
    )
    snapshot.add_argument(
        "--envelope",
        action="store_true",
        help="Wrap the snapshot in the versioned desktop bridge envelope",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.log_level = args.log_level
    config.metrics_textfile = args.metrics_textfile
    config.command = args.command or "usage"
    for name in _COMMAND_FIELDS:
        if hasattr(args, name):
            setattr(config, name, getattr(args, name))
    return config
