"""Error taxonomy for the workflow core.

Only the generation pipeline retries anything. Every other component reports
its failure once, synchronously.
"""


class NexusError(Exception):
    """Base class for every error raised by the workflow core."""


class CatalogError(NexusError, ValueError):
    """The static step/tier configuration violates a load-time invariant."""

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__("Invalid step catalog: " + "; ".join(self.issues))


class ValidationError(NexusError, ValueError):
    """Caller-supplied request or state is incomplete. Never retried."""

    def __init__(self, missing: list[str], message: str | None = None):
        self.missing = list(missing)
        if message is None:
            message = "Missing required fields: " + ", ".join(self.missing)
        super().__init__(message)


class UnknownStepError(NexusError, LookupError):
    """Catalog lookup miss. A programmer error, surfaced immediately."""

    def __init__(self, step_id):
        self.step_id = step_id
        super().__init__(f"Unknown step id: {step_id!r}")


class UnknownTierError(NexusError, LookupError):
    """Tier lookup miss."""

    def __init__(self, tier_id):
        self.tier_id = tier_id
        super().__init__(f"Unknown tier id: {tier_id!r}")


class InaccessibleStepError(NexusError):
    """A transition would violate the tier or prerequisite gate.

    Recoverable: the caller should re-check the available steps.
    """

    def __init__(self, step_id: int, tier_id: str, missing_prerequisites: list[int], tier_blocked: bool):
        self.step_id = step_id
        self.tier_id = tier_id
        self.missing_prerequisites = list(missing_prerequisites)
        self.tier_blocked = tier_blocked

        reasons = []
        if tier_blocked:
            reasons.append(f"tier '{tier_id}' is too low")
        if self.missing_prerequisites:
            reasons.append(f"prerequisites not completed: {self.missing_prerequisites}")
        super().__init__(f"Step {step_id} is not accessible ({'; '.join(reasons)}).")


class TransientGenerationError(NexusError):
    """Network or service hiccup during generation. Retried up to the cap."""

    def __init__(self, message: str, cause: BaseException | None = None, attempt: int | None = None):
        self.cause = cause
        self.attempt = attempt
        super().__init__(message)


class GenerationCancelled(NexusError):
    """The caller cancelled generation. Not a failure and never retried."""
