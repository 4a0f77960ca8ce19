"""Resilience primitives shared by the infrastructure layer."""

from cacheguard.core.resilience.retry_policy import TRANSPORT_ERRORS, RetryPolicy

__all__ = ["TRANSPORT_ERRORS", "RetryPolicy"]
