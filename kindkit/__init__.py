"""Errors, command execution, filesystem, node and image helpers for local container-node Kubernetes clusters."""

__version__ = "0.16.0"