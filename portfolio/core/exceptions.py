"""
Service-wide exception hierarchy.

Services raise these; the app factory registers one handler per type so
every blueprint gets the same HTTP status codes and error envelope.

Usage:
    from portfolio.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="UseCase", resource_id=uc_id)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "UseCase", "Engagement").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Always raised before any derivation runs. Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        issues: Per-field friendly messages, rendered as ``issues`` in the response.
        details: Optional structured payload.
    """

    def __init__(
        self,
        message: str,
        issues: list[str] | None = None,
        details: dict | None = None,
    ) -> None:
        self.issues = issues or []
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation conflicts with current state.

    Maps to HTTP 409.

    Args:
        resource: Entity name.
        field: The field whose state conflicts.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} {field}={value!r} conflicts with current state"
        super().__init__(msg)


class GateSequenceError(Exception):
    """Raised when a governance gate is processed before its predecessor passed.

    Distinct from ConflictError so the HTTP layer can expose the
    ``GATE_SEQUENCE_ERROR`` code. Nothing is persisted or audited when
    this is raised. Maps to HTTP 409.
    """

    code = "GATE_SEQUENCE_ERROR"

    def __init__(self, gate: str, required_gate: str,
                 gate_label: str | None = None, required_label: str | None = None) -> None:
        self.gate = gate
        self.required_gate = required_gate
        super().__init__(
            f"{gate_label or gate} gate cannot be processed until the "
            f"{required_label or required_gate} gate has passed"
        )


class ActivationBlocked(Exception):
    """Raised by the write path when the governance engine refuses activation.

    The engine itself returns an ``ActivationCheck``; the use-case service
    wraps a blocked check in this exception. The blueprint rolls the update
    back and commits the ``ACTIVATION_BLOCKED`` audit row on its own.
    Maps to HTTP 403.
    """

    code = "GOVERNANCE_INCOMPLETE"

    def __init__(self, check, target_status: str | None = None, previous_status: str | None = None) -> None:
        self.check = check
        self.target_status = target_status
        self.previous_status = previous_status
        super().__init__("Governance gates incomplete: " + "; ".join(check.reasons))


class PhaseTransitionRequiresJustification(Exception):
    """Raised when a phase move has pending requirements and no justification.

    Maps to HTTP 400.
    """

    code = "PHASE_TRANSITION_REQUIRES_JUSTIFICATION"

    def __init__(self, transition) -> None:
        self.transition = transition
        super().__init__(
            f"Moving from {transition.from_phase} to {transition.to_phase} "
            "requires a justification"
        )
