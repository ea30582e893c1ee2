"""
Recibos de entrega e reconciliacao com o communication log.
"""
from .receipts import (
    DeliveryReceipt,
    FlushResult,
    ReceiptTransition,
    normalize_receipt_status,
)
from .reconciler import ReceiptReconciler

__all__ = [
    "DeliveryReceipt",
    "FlushResult",
    "ReceiptTransition",
    "normalize_receipt_status",
    "ReceiptReconciler",
]
