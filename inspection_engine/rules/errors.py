from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class FindingsErrorCode:
    code: str
    message: str


FINDINGS_001_CONFIG_INVALID = FindingsErrorCode(
    "FINDINGS_001_CONFIG_INVALID",
    "Rule or profile configuration is malformed.",
)
FINDINGS_002_UNKNOWN_OPERATOR = FindingsErrorCode(
    "FINDINGS_002_UNKNOWN_OPERATOR",
    "Condition uses an unknown operator.",
)
FINDINGS_003_VERSION_CONFLICT = FindingsErrorCode(
    "FINDINGS_003_VERSION_CONFLICT",
    "Override version does not match the expected version.",
)
FINDINGS_004_PARSE_FAILED = FindingsErrorCode(
    "FINDINGS_004_PARSE_FAILED",
    "Configuration file parse failed.",
)
FINDINGS_005_FINDING_NOT_FOUND = FindingsErrorCode(
    "FINDINGS_005_FINDING_NOT_FOUND",
    "Requested finding or version was not found.",
)
FINDINGS_006_PLAN_INVALID = FindingsErrorCode(
    "FINDINGS_006_PLAN_INVALID",
    "Merged report plan failed structural validation.",
)
FINDINGS_007_NO_DRAFT = FindingsErrorCode(
    "FINDINGS_007_NO_DRAFT",
    "Finding has no draft override.",
)


class FindingsError(RuntimeError):
    def __init__(self, err: FindingsErrorCode, detail: str = "") -> None:
        suffix = f" detail={detail}" if detail else ""
        super().__init__(f"{err.code}: {err.message}{suffix}")
        self.err = err
        self.detail = detail


class ConfigError(FindingsError):
    def __init__(self, detail: str = "", err: FindingsErrorCode = FINDINGS_001_CONFIG_INVALID) -> None:
        super().__init__(err, detail)


class ConflictError(FindingsError):
    def __init__(self, detail: str = "", *, expected: int | None = None, actual: int | None = None) -> None:
        super().__init__(FINDINGS_003_VERSION_CONFLICT, detail)
        self.expected = expected
        self.actual = actual


class NotFoundError(FindingsError):
    def __init__(self, detail: str = "", err: FindingsErrorCode = FINDINGS_005_FINDING_NOT_FOUND) -> None:
        super().__init__(err, detail)


class ValidationError(FindingsError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(FINDINGS_006_PLAN_INVALID, detail)
