"""
Stock reconciliation: formula, preview, batch apply and undo.
"""

from .reconciler import ApplyResult, ReconcileState, SalesIndex, apply_stock, preview, undo_stock

__all__ = ["ApplyResult", "ReconcileState", "SalesIndex", "apply_stock", "preview", "undo_stock"]
