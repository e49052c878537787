# retrieval_sdk/core/operation_context.py
# SPDX-License-Identifier: Apache-2.0

"""
Core OperationContext type for the retrieval SDK.

A lightweight carrier for request-scoped metadata that every vector store
operation accepts as an optional keyword argument (`ctx=`).

Typical usage
-------------

    from retrieval_sdk.core.operation_context import OperationContext

    ctx = OperationContext.with_timeout(2_000, request_id="req-123")
    results = await store.search("docs", query, ctx=ctx)

Notes
-----
- `deadline_ms` is an absolute epoch timestamp in milliseconds. Use
  `with_timeout()` to build one from a relative budget.
- `tenant` may be sensitive; it is hashed before reaching metrics and
  never logged.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class OperationContext:
    """
    Request context for vector store operations.

    Fields
    ------
    request_id:
        Correlation identifier, echoed in log lines.
    tenant:
        Multi-tenant scope. Hashed for metrics, never logged.
    deadline_ms:
        Absolute epoch milliseconds after which the operation must fail
        with DeadlineExceededError.
    attrs:
        Free-form attribute bag for caller-specific metadata.
    """

    request_id: Optional[str] = None
    tenant: Optional[str] = None
    deadline_ms: Optional[int] = None
    attrs: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def with_timeout(cls, timeout_ms: int, **kwargs: Any) -> "OperationContext":
        """Build a context whose deadline is `timeout_ms` from now."""
        return cls(deadline_ms=_now_ms() + int(timeout_ms), **kwargs)

    def remaining_ms(self) -> Optional[int]:
        """
        Return remaining milliseconds until deadline, or None if no deadline set.
        Non-negative (0 if expired).
        """
        if self.deadline_ms is None:
            return None
        return max(0, self.deadline_ms - _now_ms())

    def remaining_s(self) -> Optional[float]:
        rem = self.remaining_ms()
        return None if rem is None else rem / 1000.0

    def expired(self) -> bool:
        return self.remaining_ms() == 0


__all__ = ["OperationContext"]
