"""
Exception taxonomy for declaring, planning and provisioning a stack.
"""
from typing import List, Optional


class StackError(Exception):
    """Base exception for stackgraph errors."""


# ------------------------------------------------------------------ declaration / planning

class DuplicateIdError(StackError):
    """A node id was declared twice in the same stack."""

    def __init__(self, node_id: str):
        super().__init__(f"Resource '{node_id}' is already declared")
        self.node_id = node_id


class UnknownReferenceError(StackError):
    """An attribute references a node (or output) that does not exist."""

    def __init__(self, node_id: str, target: str, key: Optional[str] = None):
        if key is None:
            msg = f"Resource '{node_id}' references undeclared resource '{target}'"
        else:
            msg = f"Resource '{node_id}' references unknown output '{target}.{key}'"
        super().__init__(msg)
        self.node_id = node_id
        self.target = target
        self.key = key


class CycleError(StackError):
    """The reference graph contains a cycle."""

    def __init__(self, chain: List[str]):
        super().__init__("Reference cycle: " + " -> ".join(chain))
        self.chain = chain


# ------------------------------------------------------------------ internal defects

class NotReadyError(StackError):
    """An output was read from a node that has not reached Ready."""

    def __init__(self, node_id: str):
        super().__init__(f"Resource '{node_id}' is not Ready")
        self.node_id = node_id


class OutputConflictError(StackError):
    """An output was re-written with a different value."""

    def __init__(self, node_id: str, key: str, old, new):
        super().__init__(
            f"Output '{node_id}.{key}' is already set to {old!r}, refusing {new!r}"
        )
        self.node_id = node_id
        self.key = key


class InvalidTransitionError(StackError):
    """A node was moved through an illegal state transition."""


class DependentsRemainError(StackError):
    """A node was scheduled for teardown while dependents are still live."""

    def __init__(self, node_id: str, dependents: List[str]):
        super().__init__(
            f"Cannot destroy '{node_id}': still referenced by {', '.join(dependents)}"
        )
        self.node_id = node_id
        self.dependents = dependents


class StateLockedError(StackError):
    """Another run holds the state lock."""


# ------------------------------------------------------------------ provider

class ProviderError(StackError):
    """Base exception for errors raised by a resource provider."""


class TransientProviderError(ProviderError):
    """Throttling, eventual-consistency misses and wait timeouts. Retried."""


class TerminalProviderError(ProviderError):
    """Configuration rejected by the provider. Never retried."""


class ResourceAbsentError(ProviderError):
    """The resource to delete does not exist."""


class ProvisionError(StackError):
    """Apply or destroy stopped at a node."""

    def __init__(self, node_id: str, kind: str, cause: BaseException):
        super().__init__(f"{kind} '{node_id}' failed ({_error_kind(cause)}): {cause}")
        self.node_id = node_id
        self.kind = kind
        self.cause = cause

    @property
    def error_kind(self) -> str:
        return _error_kind(self.cause)


def _error_kind(cause: BaseException) -> str:
    if isinstance(cause, TransientProviderError):
        return "transient"
    if isinstance(cause, TerminalProviderError):
        return "terminal"
    return type(cause).__name__
