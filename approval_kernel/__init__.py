"""
Approval Kernel

Durable state and vocabulary for delegated token-sweep approvals:
- Lifecycle types with a closed set of transitions
- Approval store with state-guarded (compare-and-swap) updates
- Typed exceptions, injectable clock, structured logging
"""

__version__ = "0.1.0"
