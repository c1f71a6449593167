"""
Guild Multisig — Error taxonomy.

Every failure the coordination core reports is one of the exceptions below.
Callers can catch a whole family (``InputError``, ``AuthorizationError``,
``StateError``, ``StorageError``) or a single kind.

Propagation rules:
- Input and authorization errors are raised before any state is touched.
- State errors are non-fatal; the caller may retry with adjusted input.
- ``ExecutionError`` is raised after the proposal has been marked failed.
- Storage errors raised during a write leave in-memory state unchanged.
"""

from __future__ import annotations

from typing import Any


class MultisigError(Exception):
    """Base class for all coordination-core errors."""
    pass


# ════════════════════════════════════════════════════════════════
# Input / validation
# ════════════════════════════════════════════════════════════════


class InputError(MultisigError):
    """Raised when caller-supplied input is malformed."""
    pass


class InvalidConfig(InputError):
    """Raised for invalid settings or an inconsistent group definition."""
    pass


class UnknownWallet(InputError):
    """Raised when a member name does not resolve in the wallet registry."""

    def __init__(self, wallet_name: str) -> None:
        super().__init__(f"Wallet '{wallet_name}' is not known to the wallet registry")
        self.wallet_name = wallet_name


class InvalidThreshold(InputError):
    """Raised when a group or rule threshold cannot be satisfied."""
    pass


class DuplicateMember(InputError):
    """Raised when a wallet name appears twice in one group."""

    def __init__(self, wallet_name: str) -> None:
        super().__init__(f"Wallet '{wallet_name}' is listed more than once")
        self.wallet_name = wallet_name


class UnknownOperation(InputError):
    """Raised when no executor adapter is registered for an operation tag."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"Unknown operation: {operation}")
        self.operation = operation


class InvalidParams(InputError):
    """Raised when proposal params do not match the operation's shape."""
    pass


# ════════════════════════════════════════════════════════════════
# Authorization
# ════════════════════════════════════════════════════════════════


class AuthorizationError(MultisigError):
    """Raised when a wallet is not allowed to perform an action."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class PermissionDenied(AuthorizationError):
    """Raised when the permission engine denies a propose or vote."""
    pass


class AmountExceedsLimit(AuthorizationError):
    """Raised when a proposal amount is above the rule's spending cap."""
    pass


# ════════════════════════════════════════════════════════════════
# State
# ════════════════════════════════════════════════════════════════


class StateError(MultisigError):
    """Raised when an operation does not fit the current entity state."""
    pass


class GroupNotFound(StateError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Multisig group not found: {group_id}")
        self.group_id = group_id


class GroupSuspended(StateError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"Multisig group {group_id} is suspended")
        self.group_id = group_id


class ProposalNotFound(StateError):
    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal not found: {proposal_id}")
        self.proposal_id = proposal_id


class ProposalNotPending(StateError):
    def __init__(self, proposal_id: str, status: str) -> None:
        super().__init__(f"Proposal {proposal_id} is {status}, not pending")
        self.proposal_id = proposal_id
        self.status = status


class ProposalExpired(StateError):
    def __init__(self, proposal_id: str) -> None:
        super().__init__(f"Proposal {proposal_id} has expired")
        self.proposal_id = proposal_id


class AlreadyVoted(StateError):
    def __init__(self, proposal_id: str, wallet_name: str) -> None:
        super().__init__(f"Wallet '{wallet_name}' has already voted on {proposal_id}")
        self.proposal_id = proposal_id
        self.wallet_name = wallet_name


class NotAuthorized(StateError):
    """Raised when the voter is not one of the proposal's required approvers."""

    def __init__(self, proposal_id: str, wallet_name: str) -> None:
        super().__init__(
            f"Wallet '{wallet_name}' is not a required approver for {proposal_id}"
        )
        self.proposal_id = proposal_id
        self.wallet_name = wallet_name


class InsufficientApprovals(StateError):
    def __init__(self, proposal_id: str, missing: list[str]) -> None:
        super().__init__(
            f"Proposal {proposal_id} is still waiting for: {', '.join(missing)}"
        )
        self.proposal_id = proposal_id
        self.missing = missing


# ════════════════════════════════════════════════════════════════
# Execution
# ════════════════════════════════════════════════════════════════


class ExecutionError(MultisigError):
    """
    Raised when an operation adapter fails.

    Wraps the adapter's underlying error (available as ``__cause__``). A
    partially successful adapter may attach its receipt.
    """

    def __init__(self, message: str, receipt: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.receipt = receipt
        self.proposal_id: str | None = None


# ════════════════════════════════════════════════════════════════
# Storage
# ════════════════════════════════════════════════════════════════


class StorageError(MultisigError):
    """Raised by storage backends."""
    pass


class StorageCorrupt(StorageError):
    """Raised when a stored record cannot be decoded and no backup is usable."""
    pass


class StorageUnavailable(StorageError):
    """Raised when the backend cannot be written to or read from."""
    pass
