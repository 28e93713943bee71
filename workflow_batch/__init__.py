"""
workflow_batch -- Deadline sweep scheduling.

Provides the in-process scheduler that finds pending requests with a
lapsed step deadline and hands each one to the kernel's escalation
transition, one transaction per request.

Architecture:
    workflow_batch/ is a top-level package.  Nothing in workflow_kernel/
    or workflow_engines/ imports from workflow_batch.
"""
