"""
Typed failures raised by the governance core.
"""


class GovernanceError(Exception):
    """Base class for governance core errors."""
    error_kind = "GovernanceError"


class CollaboratorError(GovernanceError):
    """The advisory collaborator was unreachable or returned unusable output."""
    error_kind = "CollaboratorError"


class CollaboratorTimeout(CollaboratorError):
    """The advisory collaborator did not answer within ADVISOR_TIMEOUT_SEC."""
    error_kind = "CollaboratorTimeout"


class TurnCancelled(GovernanceError):
    """The caller abandoned the turn before it was evaluated."""
    error_kind = "TurnCancelled"


class RuleConfigurationError(GovernanceError):
    """Malformed rule store contents, detected when a snapshot is built."""
    error_kind = "RuleConfigurationError"


class ActionError(GovernanceError):
    """Failure while applying one action of a batch."""
    error_kind = "ActionError"

    def __init__(self, message: str, action_type: str = None):
        super().__init__(message)
        self.action_type = action_type


class UnknownActionType(ActionError):
    error_kind = "UnknownActionType"


class ActionHandlerFailure(ActionError):
    error_kind = "ActionHandlerFailure"
