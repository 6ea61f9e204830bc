"""
Settlement services.

- SettlementLedger: Purchase bookkeeping (status, split, refund and loss totals)
- PayeeAccountRegistry: Connect onboarding and capability sync
- PaymentIntentOrchestrator: Buyer checkout (purchase + PaymentIntent)
- RefundManager: Refund issuing and reconciliation
- DisputeManager: Chargeback tracking and evidence submission

Usage:
    from settlement.services import RefundManager, SettlementLedger
"""

from settlement.services.dispute_manager import DisputeManager
from settlement.services.ledger import (
    PayeeTotals,
    PlatformRevenue,
    SettlementLedger,
)
from settlement.services.orchestrator import PaymentIntentOrchestrator, PurchaseIntent
from settlement.services.payee_registry import (
    EarningsSummary,
    OnboardingResult,
    PayeeAccountRegistry,
)
from settlement.services.refund_manager import RefundManager

__all__ = [
    "DisputeManager",
    "EarningsSummary",
    "OnboardingResult",
    "PayeeAccountRegistry",
    "PayeeTotals",
    "PaymentIntentOrchestrator",
    "PlatformRevenue",
    "PurchaseIntent",
    "RefundManager",
    "SettlementLedger",
]
