"""Reconciliation of fire-ban, facilities, closure and fire-danger sources."""

from campfire_planner.reconcile.builder import Reconciler, ReconcileResult

__all__ = ["ReconcileResult", "Reconciler"]
