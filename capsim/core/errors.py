class CapsimError(Exception):
    """Base class for simulator errors."""


class CodecError(CapsimError, ValueError):
    """A message could not be formatted or parsed."""


class MalformedMessage(CodecError):
    """Inbound line matched a pattern name but not its field count."""

    def __init__(self, name: str, expected: int, got: int):
        super().__init__(f"{name}: expected {expected} fields, got {got}")
        self.name = name
        self.expected = expected
        self.got = got


class ConfigurationError(CapsimError, ValueError):
    """Invalid bus address, flag value or config file. Fatal at startup."""


class PublisherLoopFailure(CapsimError):
    """Raised inside a publisher tick; stops only that publisher."""

    def __init__(self, stream: str, cause: BaseException):
        super().__init__(f"publisher {stream} failed: {cause!r}")
        self.stream = stream
        self.cause = cause
