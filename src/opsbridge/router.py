"""Summary: Shared action-router base for the domain adapters.

Importance: Owns payload validation, unknown-action rejection, and the failure envelope shape.
Alternatives: Duplicate dispatch tables and error handling in every domain module.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import ValidationError

from opsbridge.config import AdapterConfig
from opsbridge.envelope import EXIT_BACKEND, EXIT_OK, EXIT_VALIDATION, RequestEnvelope, build_response
from opsbridge.models import RouterResult
from opsbridge.payloads import ActionPayload, format_payload_error


logger = logging.getLogger(__name__)


class PayloadError(ValueError):
    """Summary: Raised by handlers when a payload is valid in shape but unusable.

    Importance: Becomes an exit-2 envelope, like schema validation failures.
    Alternatives: Return error envelopes directly from deep helper functions.
    """

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class ActionRouter(ABC):
    """Summary: Routes one action name to a handler with a validated payload.

    Importance: Guarantees every router answers with an envelope and an exit code.
    Alternatives: Let each adapter implement its own dispatch switch.
    """

    domain: str = ""
    adapter_name: str = ""
    payload_models: dict[str, type[ActionPayload]] = {}

    def __init__(self, config: AdapterConfig) -> None:
        self.config = config

    @property
    def supported_actions(self) -> list[str]:
        return list(self.payload_models)

    def dispatch(self, action: str, payload: dict[str, Any], envelope: RequestEnvelope) -> RouterResult:
        """Summary: Validate the payload for an action and run its handler.

        Importance: Validation failures and payload errors never reach a backend.
        Alternatives: Validate inside each handler.
        """

        model = self.payload_models.get(action)
        if model is None:
            return self.reject_action(action)
        try:
            parsed = model.model_validate(payload)
        except ValidationError as exc:
            return self.failure(action, EXIT_VALIDATION, format_payload_error(exc), "validation")
        try:
            return self.handle(action, parsed, envelope)
        except PayloadError as exc:
            return self.failure(action, EXIT_VALIDATION, str(exc), "validation", **exc.context)

    def reject_action(self, action: str) -> RouterResult:
        return self.failure(
            action,
            EXIT_VALIDATION,
            f"unsupported action '{action}'",
            "validation",
            supportedActions=self.supported_actions,
        )

    @abstractmethod
    def handle(self, action: str, payload: ActionPayload, envelope: RequestEnvelope) -> RouterResult:
        raise NotImplementedError

    def success(self, action: str, **fields: Any) -> RouterResult:
        body = build_response(self.domain, action, True, adapter=self.adapter_name, **fields)
        return RouterResult(exit_code=EXIT_OK, body=body)

    def failure(
        self,
        action: str,
        exit_code: int,
        error: str,
        error_kind: str,
        **fields: Any,
    ) -> RouterResult:
        """Summary: Build a failure envelope with an error string and kind."""

        if exit_code == EXIT_BACKEND:
            logger.warning("%s.%s failed: %s", self.domain, action, error)
        else:
            logger.info("%s.%s rejected: %s", self.domain, action, error)
        body = build_response(
            self.domain,
            action,
            False,
            adapter=self.adapter_name,
            error=error,
            errorKind=error_kind,
            **fields,
        )
        return RouterResult(exit_code=exit_code, body=body)
