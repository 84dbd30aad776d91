"""Error taxonomy shared by every pipeline stage.

Each error carries a machine-readable ``kind`` so entry points can turn it into
a structured failure object instead of letting it escape.
"""

from typing import Any, Dict, Optional


class FinanceFlowError(Exception):
    """Base class for all pipeline errors."""

    kind = "internal_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message}


class ConfigurationMissing(FinanceFlowError):
    """A required credential or setting is absent."""

    kind = "configuration_missing"

    def __init__(self, message: str, setting: Optional[str] = None) -> None:
        super().__init__(message)
        self.setting = setting


class UpstreamFailure(FinanceFlowError):
    """Transport or protocol error raised by a provider adapter."""

    kind = "upstream_failure"

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        sub_call: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.sub_call = sub_call

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.provider:
            data["provider"] = self.provider
        if self.sub_call:
            data["sub_call"] = self.sub_call
        return data


class UpstreamTimeout(UpstreamFailure):
    """A provider call exceeded its time bound."""

    kind = "upstream_timeout"


class InsightFailure(UpstreamFailure):
    """The insight producer failed or returned an unusable payload."""

    kind = "insight_failure"


class ValidationFailure(FinanceFlowError):
    """Malformed numeric field or irreconcilable currency."""

    kind = "validation_failure"


class RenderFailure(FinanceFlowError):
    """A report could not be projected into the requested format."""

    kind = "render_failure"
