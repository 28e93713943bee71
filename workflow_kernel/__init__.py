"""
Workflow Kernel - approval progression core

A snapshot-based approval engine with:
- Exactly one current step per pending request
- Guarded, typed state transitions
- Per-step SLA deadlines computed from frozen step snapshots
- Single-hop escalation driven by a background deadline sweep
- Optimistic per-record versioning against concurrent decisions
"""

__version__ = "0.1.0"
