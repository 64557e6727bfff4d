"""Stacks ledger access for the notarization contracts."""

from .gateway import (
    ChainRegistration,
    ContractGateway,
    ContractVersion,
    SubmissionResult,
)

__all__ = [
    "ChainRegistration",
    "ContractGateway",
    "ContractVersion",
    "SubmissionResult",
]
