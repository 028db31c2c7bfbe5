"""
Error taxonomy for parsing, diff application and the remote modify path.
Public entry points convert these into structured results; only contract
violations (SpecIntegrityError in strict mode) are allowed to escape.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class InfraflowError(Exception):
    """Base class for all infraflow errors."""


class InvalidInputError(InfraflowError):
    """Prompt (or persisted payload) failed a precondition before any resolver ran."""


class SpecIntegrityError(InfraflowError):
    """A spec violates its structural invariants (dangling references, duplicate ids)."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Spec integrity violation")


class DiffValidationError(InfraflowError):
    """An operation references something that does not exist in the working spec."""

    def __init__(self, message: str, references: list[str] | None = None):
        self.references = list(references or [])
        super().__init__(message)


# ---------------------------------------------------------------------------
# Network errors: transient ones are retried, fatal ones surface immediately
# ---------------------------------------------------------------------------
class NetworkError(InfraflowError):
    """
    A failed modify round-trip. When the server answered with a structured
    failure, `detail` holds its error detail (snake_case keys) and wins over
    the status-code guess in to_modify_error.
    """

    transient = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        detail: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ):
        self.status_code = status_code
        self.detail = detail
        self.retry_after = retry_after
        super().__init__(message)


class TransientNetworkError(NetworkError):
    """5xx, timeout or connection failure."""

    transient = True


class FatalNetworkError(NetworkError):
    """4xx or a body that is not the JSON we expect."""


class RequestCancelled(InfraflowError):
    """The request was superseded or explicitly cancelled."""


# ---------------------------------------------------------------------------
# User-facing error codes for the LLM modification path
# ---------------------------------------------------------------------------
class ModifyErrorCode(str, Enum):
    API_KEY_MISSING = "API_KEY_MISSING"
    API_RATE_LIMIT = "API_RATE_LIMIT"
    API_TIMEOUT = "API_TIMEOUT"
    API_ERROR = "API_ERROR"
    INVALID_JSON = "INVALID_JSON"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    INVALID_OPERATION = "INVALID_OPERATION"
    NODE_NOT_FOUND = "NODE_NOT_FOUND"
    EMPTY_DIAGRAM = "EMPTY_DIAGRAM"
    OPERATION_FAILED = "OPERATION_FAILED"
    UNKNOWN = "UNKNOWN"


class ModifyError(InfraflowError):
    """Modification failure carrying a code and a message meant for the end user."""

    def __init__(
        self,
        message: str,
        code: ModifyErrorCode,
        user_message: str,
        recoverable: bool = True,
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.user_message = user_message
        self.recoverable = recoverable
        self.retry_after = retry_after

    def to_detail(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "user_message": self.user_message,
            "technical_message": str(self),
            "recoverable": self.recoverable,
            "retry_after": self.retry_after,
        }

    @classmethod
    def api_key_missing(cls) -> ModifyError:
        return cls(
            "OPENAI_API_KEY is not configured",
            ModifyErrorCode.API_KEY_MISSING,
            "AI 기능을 사용하려면 API 키 설정이 필요합니다.",
            recoverable=False,
        )

    @classmethod
    def rate_limit(cls, retry_after: int = 60) -> ModifyError:
        return cls(
            "Rate limit exceeded",
            ModifyErrorCode.API_RATE_LIMIT,
            f"요청이 너무 많습니다. {retry_after}초 후에 다시 시도해주세요.",
            retry_after=retry_after,
        )

    @classmethod
    def timeout(cls) -> ModifyError:
        return cls(
            "API request timed out",
            ModifyErrorCode.API_TIMEOUT,
            "AI 응답 시간이 초과되었습니다. 다시 시도해주세요.",
        )

    @classmethod
    def api_error(cls, status: int | None, message: str | None = None) -> ModifyError:
        return cls(
            f"API error: {status} - {message or 'unknown'}",
            ModifyErrorCode.API_ERROR,
            "AI 서비스에 문제가 발생했습니다. 잠시 후 다시 시도해주세요.",
        )

    @classmethod
    def invalid_json(cls, details: str | None = None) -> ModifyError:
        return cls(
            f"Failed to parse JSON: {details or 'unknown error'}",
            ModifyErrorCode.INVALID_JSON,
            "AI 응답을 처리할 수 없습니다. 다시 시도해주세요.",
        )

    @classmethod
    def invalid_response(cls, details: str | None = None) -> ModifyError:
        return cls(
            f"Invalid LLM response: {details or 'unknown error'}",
            ModifyErrorCode.INVALID_RESPONSE,
            "AI 응답 형식이 올바르지 않습니다. 다시 시도해주세요.",
        )

    @classmethod
    def invalid_operation(cls, details: str | None = None) -> ModifyError:
        return cls(
            f"Invalid operation: {details or 'unknown error'}",
            ModifyErrorCode.INVALID_OPERATION,
            "요청한 변경 작업이 올바르지 않습니다.",
        )

    @classmethod
    def node_not_found(cls, node_id: str) -> ModifyError:
        return cls(
            f"Node not found: {node_id}",
            ModifyErrorCode.NODE_NOT_FOUND,
            f'"{node_id}" 노드를 찾을 수 없습니다. 노드 이름을 확인해주세요.',
        )

    @classmethod
    def invalid_prompt(cls, problem: str) -> ModifyError:
        return cls(f"Invalid prompt: {problem}", ModifyErrorCode.INVALID_OPERATION, problem)

    @classmethod
    def empty_diagram(cls) -> ModifyError:
        return cls(
            "Cannot modify empty diagram",
            ModifyErrorCode.EMPTY_DIAGRAM,
            "수정할 다이어그램이 없습니다. 먼저 다이어그램을 생성해주세요.",
        )

    @classmethod
    def operation_failed(cls, details: str | None = None) -> ModifyError:
        return cls(
            f"Operation failed: {details or 'unknown error'}",
            ModifyErrorCode.OPERATION_FAILED,
            "변경 사항을 적용할 수 없습니다. 다시 시도해주세요.",
        )

    @classmethod
    def unknown(cls, error: BaseException | str) -> ModifyError:
        return cls(str(error), ModifyErrorCode.UNKNOWN, "알 수 없는 오류가 발생했습니다.")

    @classmethod
    def from_detail(cls, detail: dict[str, Any]) -> ModifyError:
        """Rebuild an error reported by the remote modify endpoint."""
        code = ModifyErrorCode(detail["code"])
        return cls(
            detail.get("technical_message") or code.value,
            code,
            detail["user_message"],
            recoverable=detail.get("recoverable", True),
            retry_after=detail.get("retry_after"),
        )


def to_modify_error(error: BaseException) -> ModifyError:
    """Map an arbitrary failure onto the closest ModifyError code."""
    if isinstance(error, ModifyError):
        return error
    if isinstance(error, NetworkError):
        if error.detail is not None:
            return ModifyError.from_detail(error.detail)
        if error.status_code == 429:
            return ModifyError.rate_limit(error.retry_after or 60)
        if error.status_code == 504:
            return ModifyError.timeout()
        if error.status_code is not None:
            return ModifyError.api_error(error.status_code, str(error))
        if "timeout" in str(error).lower() or "timed out" in str(error).lower():
            return ModifyError.timeout()
        return ModifyError.api_error(None, str(error))
    text = str(error).lower()
    if "api key" in text:
        return ModifyError.api_key_missing()
    if "rate limit" in text or "429" in text:
        return ModifyError.rate_limit()
    if "timeout" in text or "timed out" in text:
        return ModifyError.timeout()
    return ModifyError.unknown(error)
