"""
Duplicate Transaction Detector Module

Classifies import candidates against the existing ledger of the target account.
"""

import logging
from dataclasses import dataclass
from difflib import SequenceMatcher

from ledger.models import LedgerTransaction
from ledger.repositories import LedgerRepository

from .models import ImportCandidate, MatchType
from .parsers.base import normalize_description

logger = logging.getLogger(__name__)


@dataclass
class LedgerMatch:
    """A ledger row that qualifies as a counterpart for a candidate."""

    transaction: LedgerTransaction
    match_type: MatchType
    days_apart: int
    order: int

    @property
    def sort_key(self) -> tuple[int, int, int]:
        # Closest date, then exact before probable, then ledger order
        return (self.days_apart, 0 if self.match_type == MatchType.EXACT else 1, self.order)


def description_similarity(a: str, b: str) -> float:
    """Similarity of two descriptions after normalization, between 0 and 1."""
    norm_a = normalize_description(a)
    norm_b = normalize_description(b)
    if norm_a == norm_b:
        return 1.0
    if not norm_a or not norm_b:
        return 0.0
    return SequenceMatcher(None, norm_a, norm_b).ratio()


class MatchClassifier:
    """Detects re-imports and counterparts of hand-entered transactions."""

    def __init__(
        self,
        ledger: LedgerRepository,
        date_tolerance_days: int = 2,
        exact_description_similarity: float = 1.0,
    ):
        """Initialize the classifier.

        Args:
            ledger: Ledger repository queried for candidate matches
            date_tolerance_days: Days either side a probable match may sit
            exact_description_similarity: Similarity required for an exact match
        """
        self.ledger = ledger
        self.date_tolerance_days = date_tolerance_days
        self.exact_description_similarity = exact_description_similarity

    def classify_batch(self, account_id: str, candidates: list[ImportCandidate]) -> dict:
        """Classify candidates in file order.

        A ledger row claimed by an earlier candidate is not offered to later
        ones. A failure on one candidate leaves it as new.

        Args:
            account_id: Target account
            candidates: Candidates annotated in place

        Returns:
            Count of candidates per match type
        """
        claimed: set[str] = set()

        for candidate in candidates:
            try:
                self._classify(account_id, candidate, claimed)
            except Exception as e:
                logger.warning(
                    f"Match classification failed for row {candidate.row_number}, "
                    f"treating as new: {e}"
                )
                self._reset(candidate)

        stats = {t.value: 0 for t in MatchType}
        for candidate in candidates:
            stats[candidate.match_type.value] += 1
        logger.info(f"Classified {len(candidates)} candidates on account {account_id}: {stats}")
        return stats

    def _classify(self, account_id: str, candidate: ImportCandidate, claimed: set[str]) -> None:
        self._reset(candidate)

        # 1. Already imported from a statement
        previous = self.ledger.find_by_import_hash(account_id, candidate.import_hash)
        if previous:
            candidate.match_type = MatchType.DUPLICATE
            candidate.matched_transaction_id = previous.id
            candidate.matched_transaction = previous.to_dict()
            candidate.match_days_apart = abs((previous.date - candidate.date).days)
            return

        # 2. Counterpart entered by hand
        best = self.find_best_match(account_id, candidate, exclude=claimed)
        if best:
            claimed.add(best.transaction.id)
            candidate.match_type = best.match_type
            candidate.matched_transaction_id = best.transaction.id
            candidate.matched_transaction = best.transaction.to_dict()
            candidate.match_days_apart = best.days_apart

    def find_best_match(
        self,
        account_id: str,
        candidate: ImportCandidate,
        exclude: set[str] | None = None,
    ) -> LedgerMatch | None:
        """Pick the best unreconciled ledger row for a candidate.

        Args:
            account_id: Target account
            candidate: Candidate to match
            exclude: Ledger ids already claimed in this batch

        Returns:
            LedgerMatch or None when no row qualifies
        """
        exclude = exclude or set()
        rows = self.ledger.find_candidate_matches(
            account_id, candidate.date, candidate.amount, self.date_tolerance_days
        )

        matches = []
        for order, row in enumerate(rows):
            if row.id in exclude or row.is_reconciled or row.amount != candidate.amount:
                continue

            days_apart = abs((row.date - candidate.date).days)
            if days_apart > self.date_tolerance_days:
                continue

            similarity = description_similarity(candidate.description, row.description)
            if days_apart == 0 and similarity >= self.exact_description_similarity:
                match_type = MatchType.EXACT
            else:
                match_type = MatchType.PROBABLE

            matches.append(LedgerMatch(row, match_type, days_apart, order))

        if not matches:
            return None
        return min(matches, key=lambda m: m.sort_key)

    @staticmethod
    def _reset(candidate: ImportCandidate) -> None:
        candidate.match_type = MatchType.NEW
        candidate.matched_transaction_id = None
        candidate.matched_transaction = None
        candidate.match_days_apart = None
