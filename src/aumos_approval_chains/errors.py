"""Exception hierarchy for the approval chain engine.

Every error raised by the engine derives from :class:`ApprovalChainError`.
The concrete classes also derive from the built-in exception a caller
would conventionally catch:

- :class:`NotFoundError` is a ``KeyError`` (unknown chain, request or level)
- :class:`InvalidStateError` is a ``ValueError`` (status forbids the operation)
- :class:`ChainValidationError` is a ``ValueError`` (malformed chain spec)

An HTTP layer typically maps NotFound to 404, InvalidState to 400 (409 for
:class:`ChainInUseError`) and ChainValidation to 400.
"""
from __future__ import annotations


class ApprovalChainError(Exception):
    """Base class for all approval chain engine errors."""


class NotFoundError(ApprovalChainError, KeyError):
    """Raised when an object referenced by id or order does not exist."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return self.message


class ChainNotFoundError(NotFoundError):
    """Raised when no chain exists for the given id.

    Attributes
    ----------
    chain_id:
        The id that was looked up.
    """

    def __init__(self, chain_id: str) -> None:
        self.chain_id = chain_id
        super().__init__(f"Approval chain {chain_id!r} not found.")


class RequestNotFoundError(NotFoundError):
    """Raised when no approval request exists for the given id."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Approval request {request_id!r} not found.")


class LevelNotFoundError(NotFoundError):
    """Raised when a request points at a level its chain does not define."""

    def __init__(self, chain_id: str, level_order: int) -> None:
        self.chain_id = chain_id
        self.level_order = level_order
        super().__init__(f"Level {level_order} not found in approval chain {chain_id!r}.")


class InvalidStateError(ApprovalChainError, ValueError):
    """Raised when a request's status does not permit the operation.

    Attributes
    ----------
    request_id:
        The request the operation targeted.
    status:
        The status the request was in when the operation was refused.
    """

    def __init__(self, message: str, request_id: str | None = None, status: str | None = None) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(message)


class DuplicateVoteError(InvalidStateError):
    """Raised when a user votes twice at the same level of a request."""

    def __init__(self, request_id: str, user_id: str, level_order: int) -> None:
        self.user_id = user_id
        self.level_order = level_order
        super().__init__(
            f"User {user_id!r} has already acted on request {request_id!r} at level {level_order}.",
            request_id=request_id,
        )


class ChainInUseError(InvalidStateError):
    """Raised when a chain cannot change because open requests reference it.

    Attributes
    ----------
    chain_id:
        The chain that was being deleted or re-levelled.
    open_request_ids:
        Ids of the pending or escalated requests blocking the change.
    """

    def __init__(self, chain_id: str, open_request_ids: list[str], action: str = "delete") -> None:
        self.chain_id = chain_id
        self.open_request_ids = list(open_request_ids)
        super().__init__(
            f"Cannot {action} approval chain {chain_id!r}: "
            f"{len(self.open_request_ids)} open request(s) reference it."
        )


class ChainValidationError(ApprovalChainError, ValueError):
    """Raised when a chain specification is malformed.

    Attributes
    ----------
    errors:
        One human-readable message per problem found.
    """

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid approval chain: " + "; ".join(self.errors))


class PersistenceError(ApprovalChainError):
    """Raised when the persistence adapter fails to load or save state."""
