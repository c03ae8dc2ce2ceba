from .orchestrator import (
    ChainError,
    ChainStep,
    ChainValidationError,
    NarrationCircuitOpen,
    NarrationUnavailable,
    TriggerChainOrchestrator,
    chain_error_detail,
)

__all__ = [
    "ChainError",
    "ChainStep",
    "ChainValidationError",
    "NarrationCircuitOpen",
    "NarrationUnavailable",
    "TriggerChainOrchestrator",
    "chain_error_detail",
]
