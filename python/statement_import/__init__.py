"""
Statement Import Module

Bank statement parsing, enrichment and reconciliation against the ledger.
"""

from .models import (
    MatchType,
    ImportAction,
    ImportCandidate,
    ImportSession,
    CandidateAction,
    CreditCardDetectionGroup,
    ConfirmResult,
)
from .settings import ImportSettings
from .card_detector import CreditCardDetector, extract_purchase_date
from .merchant_lookup import MerchantResolver, MerchantMatch, extract_merchant_pattern
from .duplicate_detector import MatchClassifier, description_similarity
from .session_store import ImportSessionStore
from .orchestrator import ImportOrchestrator, parse_actions

__all__ = [
    # Records
    "MatchType",
    "ImportAction",
    "ImportCandidate",
    "ImportSession",
    "CandidateAction",
    "CreditCardDetectionGroup",
    "ConfirmResult",
    # Pipeline
    "ImportSettings",
    "CreditCardDetector",
    "extract_purchase_date",
    "MerchantResolver",
    "MerchantMatch",
    "extract_merchant_pattern",
    "MatchClassifier",
    "description_similarity",
    "ImportSessionStore",
    "ImportOrchestrator",
    "parse_actions",
]
