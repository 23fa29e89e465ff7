"""
Error Taxonomy
==============
Typed failures raised inside the pipeline. Where each one is absorbed:

    TransportError              - collaborator unreachable / timed out.
                                  Gate → MANUAL default; sandbox/fix → escalate.
    ParseError                  - malformed structured response.
                                  Gate → MANUAL default; fix → escalate.
    RetrievalError              - clone or file reads produced nothing usable.
                                  Escalate.
    ValidationError             - the tests/build command could not finish.
                                  Advisory, never fatal.
    ResourceError               - filesystem / process allocation failure.
                                  Escalate.
    UnrecoverableDeliveryError  - a valid fix exists but the change request
                                  could not be created. The one hard failure.
"""


class SurgeonError(Exception):
    """Base class for every pipeline error."""


class TransportError(SurgeonError):
    pass


class ParseError(SurgeonError):
    pass


class RetrievalError(SurgeonError):
    pass


class ValidationError(SurgeonError):
    def __init__(self, message: str, command: str = "") -> None:
        super().__init__(message)
        self.command = command


class ResourceError(SurgeonError):
    pass


class UnrecoverableDeliveryError(SurgeonError):
    pass


class UnsafePathError(SurgeonError, ValueError):
    """A relative path that would resolve outside the workspace repository."""


class InvalidTransitionError(SurgeonError):
    """A status change that is not an edge of the pipeline graph."""

    def __init__(self, issue_id: str, current: str, target: str) -> None:
        super().__init__(f"Issue {issue_id}: illegal transition {current} -> {target}")
        self.issue_id = issue_id
        self.current = current
        self.target = target


class IssueNotFoundError(SurgeonError, KeyError):
    def __init__(self, issue_id: str) -> None:
        super().__init__(f"Issue not found: {issue_id}")
        self.issue_id = issue_id
