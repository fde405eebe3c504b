import os
from dataclasses import dataclass, field
from pathlib import Path

VERSION = "0.1.0"


def _default_claude_credentials() -> "Path":
    return Path(os.environ.get("HOME", "~")).expanduser() / ".claude" / ".credentials.json"


@dataclass
class Config:
    log_level: "str" = "warning"
    # "text" or "json"
    output_format: "str" = "text"
    # "all", "both", "codex" or "claude"
    provider: "str" = "all"
    # "auto" keeps each strategy's own source label
    source: "str" = "auto"
    include_status: "bool" = False
    pretty: "bool" = False
    metrics_textfile: "str" = ""
    # "usage", "auth" or "snapshot"
    command: "str" = "usage"
    # snapshot: rebuild from saved usage JSON instead of resolving live
    input_path: "str" = ""
    write_cache: "str" = ""
    # snapshot: wrap the document in the versioned bridge envelope
    envelope: "bool" = False

    codex_bin: "str" = "codex"
    claude_bin: "str" = "claude"
    curl_bin: "str" = "curl"
    claude_credentials_path: "Path" = field(default_factory=_default_claude_credentials)

    @classmethod
    def from_env(cls) -> "Config":
        credentials = os.environ.get("CODEXBAR_CLAUDE_CREDENTIALS", "")
        return cls(
            codex_bin=os.environ.get("CODEXBAR_CODEX_BIN", "") or "codex",
            claude_bin=os.environ.get("CODEXBAR_CLAUDE_BIN", "") or "claude",
            curl_bin=os.environ.get("CODEXBAR_CURL_BIN", "") or "curl",
            claude_credentials_path=(
                Path(credentials).expanduser()
                if credentials
                else _default_claude_credentials()
            ),
        )

    @property
    def source_override(self) -> "str | None":
        if self.source.strip().lower() == "auto":
            return None
        return self.source
