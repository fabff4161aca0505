"""Core orchestration and workflow management.

This module contains the components that coordinate bitcoind and ord:
the orchestrator driving start/publish/reset workflows and the
foreground supervisor behind ``ordstack start``.
"""
