class CodexbarError(Exception):
    """
    base class for every error raised by the resolution engine.
    """


class ProcessNotFound(CodexbarError):
    """
    the external program is not installed, not on the search path,
    or cannot be executed.
    """

    def __init__(self, program: "str", reason: "str | None" = None) -> "None":
        if reason:
            super().__init__(f"{program} cannot be executed: {reason}")
        else:
            super().__init__(f"{program} is not installed")
        self.program = program
        self.reason = reason


class CommandTimeout(CodexbarError):
    def __init__(self, program: "str", timeout: "float") -> "None":
        super().__init__(f"{program} timed out after {timeout:g}s")
        self.program = program
        self.timeout = timeout


class ProtocolViolation(CodexbarError):
    """
    a structured-protocol peer sent something we cannot interpret.
    """


class RpcError(CodexbarError):
    def __init__(self, method: "str", detail: "object") -> "None":
        super().__init__(f"request '{method}' failed: {detail}")
        self.method = method
        self.detail = detail


class CredentialStoreUnavailable(CodexbarError):
    """
    no secret-storage backend accepted a read or write.
    """


class ParseFailure(CodexbarError):
    pass


class UnknownProvider(CodexbarError):
    def __init__(self, selector: "str") -> "None":
        super().__init__(f"unknown provider '{selector}'")
        self.selector = selector


class AllProvidersFailed(CodexbarError):
    def __init__(self, selector: "str") -> "None":
        super().__init__(
            f"no live usage data available for provider '{selector}'; "
            "ensure corresponding CLI tools are installed and authenticated"
        )
        self.selector = selector
