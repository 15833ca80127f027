"""
Exception hierarchy and execution error kinds for the arbitrage engine.

RPC and quote failures are absorbed by the component that sees them.
Execution failures never propagate as exceptions: the executor turns them
into an ExecutionResult carrying one of the ErrorKind values below.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ArbitrageEngineError(Exception):
    """Base exception for all engine errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RpcError(ArbitrageEngineError):
    """Raised by the chain client when a JSON-RPC call fails or times out."""

    def __init__(
        self,
        message: str,
        method: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.method = method


class NoQuoteError(ArbitrageEngineError):
    """A DEX does not offer the requested pair at the requested block."""

    def __init__(
        self,
        message: str,
        dex: Optional[str] = None,
        pair: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.dex = dex
        self.pair = pair


class ConfigurationError(ArbitrageEngineError):
    """Raised at startup when the engine configuration cannot be used."""


class ErrorKind(str, Enum):
    GAS_TOO_HIGH = "GasTooHigh"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    STALE_OPPORTUNITY = "StaleOpportunity"
    REVERTED = "Reverted"
    SUBMISSION_FAILED = "SubmissionFailed"
