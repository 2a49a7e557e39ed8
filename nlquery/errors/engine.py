"""Classified errors raised by engine adapters and the generation client.

Every error carries a registry code and the native error detail. The
native detail is for server-side logging only; ``user_message`` is the
sanitized text that may be shown to a caller or published on the
delivery channel.
"""

from nlquery.errors.registry import get_error
from nlquery.utils.redaction import sanitize_error_message


class NLQueryError(Exception):
    """Base class for classified nlquery errors.

    Attributes:
        code: Error code in E-XXXX format.
        detail: Native error message (redacted, server-side only).
        context: Values substituted into the registry message template.
    """

    code = "E-5002"

    def __init__(self, detail: str = "", **context: str) -> None:
        self.detail = sanitize_error_message(detail) or ""
        self.context = context
        super().__init__(self.detail or self.user_message)

    @property
    def user_message(self) -> str:
        """Return the user-safe message from the registry template."""
        error_def = get_error(self.code)
        if error_def is None:
            return "An unexpected error occurred."
        try:
            return error_def.message_template.format(**self.context)
        except KeyError:
            return error_def.title

    @property
    def remediation(self) -> str:
        """Return the remediation text for this error code."""
        error_def = get_error(self.code)
        return error_def.remediation if error_def else ""


class EngineConnectionError(NLQueryError):
    """Cannot reach or authenticate to the backing engine. Not retried."""

    code = "E-1001"


class CredentialUnavailableError(EngineConnectionError):
    """The stored secret for a connection could not be decrypted."""

    code = "E-1002"


class SchemaIntrospectionError(NLQueryError):
    """A catalog query failed while reading the schema."""

    code = "E-2001"


class QueryExecutionError(NLQueryError):
    """The query failed at the backing engine.

    Query failures are surfaced verbatim, so the user message is the
    (credential-redacted) native engine message.
    """

    code = "E-3001"

    def __init__(self, detail: str = "", **context: str) -> None:
        super().__init__(detail, **context)
        self.context.setdefault("detail", self.detail)


class UnsupportedEngineError(NLQueryError):
    """No adapter is registered for the requested engine kind."""

    code = "E-5001"

    def __init__(self, engine: str) -> None:
        super().__init__(f"No adapter registered for engine kind '{engine}'", engine=engine)
        self.engine = engine


class GenerationError(NLQueryError):
    """The generation backend failed or returned an unusable response."""

    code = "E-4001"


class GenerationTimeoutError(GenerationError):
    """The generation backend exceeded the overall request timeout."""

    code = "E-4002"
