import json
import os
import selectors
import subprocess
import time
from dataclasses import dataclass
from types import TracebackType

import structlog

from codexbar.errors import CommandTimeout, ProtocolViolation, RpcError
from codexbar.models import AccountDetails, ApiKeyAccount, ChatGptAccount

logger = structlog.get_logger()

_READ_CHUNK = 65536


@dataclass(frozen=True, slots=True)
class RateLimitWindow:
    used_percent: "float | None" = None
    window_duration_mins: "int | None" = None
    # unix seconds
    resets_at: "int | None" = None


@dataclass(frozen=True, slots=True)
class RateLimitSnapshot:
    primary: "RateLimitWindow | None" = None
    secondary: "RateLimitWindow | None" = None
    # balance is reported as a decimal string
    credits_balance: "str | None" = None


class RpcSession:
    """
    RpcSession speaks newline-delimited JSON-RPC with a single
    child process over its stdin/stdout.

    Requests are strictly serialized: one request is written, then
    lines are read until the response carrying the same id shows up.
    Anything else on stdout (log noise, notifications, responses to
    other ids) is skipped. The session owns the child and kills it on
    close(); use it as a context manager so that happens on every
    exit path.
    """

    def __init__(
        self,
        proc: "subprocess.Popen[bytes]",
        program: "str" = "rpc",
        read_timeout: "float" = 30.0,
    ) -> "None":
        if proc.stdin is None or proc.stdout is None:
            raise ValueError("RpcSession needs a child with piped stdin and stdout")
        self._proc = proc
        self._program = program
        self._read_timeout = read_timeout
        self._next_id = 1
        self._buffer = b""
        self._selector = selectors.DefaultSelector()
        self._selector.register(proc.stdout, selectors.EVENT_READ)

    @classmethod
    def start(
        cls,
        program: "str",
        args: "list[str]",
        read_timeout: "float" = 30.0,
    ) -> "RpcSession | None":
        """
        spawns the child with stdio piped. Returns None when the
        program is missing or cannot be spawned, which callers treat
        as "no data" rather than a failure.
        """
        try:
            proc = subprocess.Popen(
                [program, *args],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.debug("rpc_program_unavailable", program=program, error=str(exc))
            return None

        return cls(proc, program=program, read_timeout=read_timeout)

    def __enter__(self) -> "RpcSession":
        return self

    def __exit__(
        self,
        exc_type: "type[BaseException] | None",
        exc: "BaseException | None",
        tb: "TracebackType | None",
    ) -> "None":
        self.close()

    def close(self) -> "None":
        """
        kills the child if it is still running and reaps it.
        """
        self._selector.close()
        if self._proc.poll() is None:
            self._proc.kill()
            self._proc.wait()
        for stream in (self._proc.stdin, self._proc.stdout):
            try:
                stream.close()
            except OSError:
                # stdin may already be broken if the child died first
                pass

    def initialize(self, client_name: "str", client_version: "str") -> "None":
        self.request(
            "initialize",
            {"clientInfo": {"name": client_name, "version": client_version}},
        )
        self.notify("initialized", {})

    def fetch_account(self) -> "AccountDetails | None":
        result = self.request("account/read", {})
        return decode_account(result)

    def fetch_rate_limits(self) -> "RateLimitSnapshot":
        result = self.request("account/rateLimits/read", {})
        return decode_rate_limits(result)

    def request(self, method: "str", params: "dict") -> "object":
        request_id = self._next_id
        self._next_id += 1

        self._send({"id": request_id, "method": method, "params": params})
        # one budget for the whole exchange, however much noise arrives
        deadline = time.monotonic() + self._read_timeout

        while True:
            message = self._read_message(deadline)
            message_id = message.get("id")
            # JSON true would otherwise compare equal to id 1
            if isinstance(message_id, bool) or message_id != request_id:
                continue

            if "error" in message:
                raise RpcError(method, message["error"])

            if "result" in message:
                return message["result"]

            raise ProtocolViolation(
                f"{self._program} response missing result for method '{method}'"
            )

    def notify(self, method: "str", params: "dict") -> "None":
        self._send({"method": method, "params": params})

    def _send(self, payload: "dict") -> "None":
        line = json.dumps(payload).encode("utf-8") + b"\n"
        try:
            self._proc.stdin.write(line)
            self._proc.stdin.flush()
        except OSError as exc:
            raise ProtocolViolation(
                f"failed to write request to {self._program}"
            ) from exc

    def _read_message(self, deadline: "float") -> "dict":
        """
        returns the next line that decodes to a JSON object, skipping
        blank and unparseable lines. Raises CommandTimeout once the
        monotonic deadline passes.
        """
        while True:
            line = self._read_line(deadline).strip()
            if not line:
                continue
            try:
                value = json.loads(line)
            except ValueError:
                continue
            if isinstance(value, dict):
                return value

    def _read_line(self, deadline: "float") -> "bytes":
        if time.monotonic() >= deadline:
            raise CommandTimeout(self._program, self._read_timeout)
        fd = self._proc.stdout.fileno()

        while b"\n" not in self._buffer:
            remaining = deadline - time.monotonic()
            if remaining <= 0 or not self._selector.select(remaining):
                raise CommandTimeout(self._program, self._read_timeout)

            chunk = os.read(fd, _READ_CHUNK)
            if not chunk:
                if self._buffer:
                    line, self._buffer = self._buffer, b""
                    return line
                raise ProtocolViolation(f"{self._program} closed stdout")
            self._buffer += chunk

        line, _, self._buffer = self._buffer.partition(b"\n")
        return line


def _optional_number(payload: "dict", key: "str", kind: "type") -> "object":
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ProtocolViolation(f"expected number for '{key}', got {value!r}")
    if kind is int:
        if isinstance(value, float) and not value.is_integer():
            raise ProtocolViolation(f"expected integer for '{key}', got {value!r}")
        return int(value)
    return float(value)


def _optional_string(payload: "dict", key: "str") -> "str | None":
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ProtocolViolation(f"expected string for '{key}', got {value!r}")
    return value


def decode_account(result: "object") -> "AccountDetails | None":
    """
    decodes an `account/read` result. The account object is tagged
    by its `type` field: `apiKey` or `chatgpt`.
    """
    if not isinstance(result, dict):
        raise ProtocolViolation("account response is not an object")

    account = result.get("account")
    if account is None:
        return None
    if not isinstance(account, dict):
        raise ProtocolViolation("account details are not an object")

    kind = account.get("type")
    if kind == "apiKey":
        return ApiKeyAccount()
    if kind == "chatgpt":
        return ChatGptAccount(
            email=_optional_string(account, "email"),
            plan_type=_optional_string(account, "planType"),
        )
    raise ProtocolViolation(f"unknown account type {kind!r}")


def _decode_window(payload: "object") -> "RateLimitWindow | None":
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ProtocolViolation("rate limit window is not an object")
    return RateLimitWindow(
        used_percent=_optional_number(payload, "usedPercent", float),
        window_duration_mins=_optional_number(payload, "windowDurationMins", int),
        resets_at=_optional_number(payload, "resetsAt", int),
    )


def decode_rate_limits(result: "object") -> "RateLimitSnapshot":
    if not isinstance(result, dict) or not isinstance(result.get("rateLimits"), dict):
        raise ProtocolViolation("rate limits response missing 'rateLimits'")

    limits = result["rateLimits"]
    credits = limits.get("credits")
    balance = None
    if credits is not None:
        if not isinstance(credits, dict):
            raise ProtocolViolation("credits snapshot is not an object")
        balance = _optional_string(credits, "balance")

    return RateLimitSnapshot(
        primary=_decode_window(limits.get("primary")),
        secondary=_decode_window(limits.get("secondary")),
        credits_balance=balance,
    )
