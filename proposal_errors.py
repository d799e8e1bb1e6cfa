"""
Error taxonomy for the proposal pricing core.

Calculators raise InvalidInput synchronously; the workflow converts
collaborator problems into ExternalCollaboratorFailure and never advances
state when one occurs.
"""

from typing import Optional


class ProposalCoreError(Exception):
    """Base class for every error raised by the proposal core"""
    pass


class InvalidInput(ProposalCoreError, ValueError):
    """Raised when a calculator precondition is violated"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ExternalCollaboratorFailure(ProposalCoreError):
    """Raised when a rendering, delivery or storage collaborator fails"""

    def __init__(self, message: str, collaborator: str = "unknown"):
        super().__init__(message)
        self.collaborator = collaborator


class InvalidTransition(ProposalCoreError):
    """Raised when a workflow transition is not allowed from the current state"""
    pass
