"""
Credit Card Detector Module

Finds card-present markers in statement descriptions and resolves them
against the cards configured on the account.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date

from ledger.repositories import CreditCardRepository

from .models import CreditCardDetectionGroup, ImportCandidate
from .settings import DEFAULT_CARD_MARKER_PATTERNS

logger = logging.getLogger(__name__)

# "CARTE 28/12/25" style purchase date prefix
PURCHASE_DATE_RE = re.compile(r"CARTE\s+(\d{2})/(\d{2})/(\d{2,4})", re.IGNORECASE)


@dataclass
class CardMarker:
    """Card-related metadata read from one description."""

    last4: str | None = None
    purchase_date: date | None = None
    is_card_payment: bool = False


def extract_purchase_date(description: str) -> date | None:
    """Read the purchase date embedded in a card payment description."""
    match = PURCHASE_DATE_RE.search(description or "")
    if not match:
        return None

    day, month, year = (int(g) for g in match.groups())
    if year < 100:
        year += 1900 if year >= 70 else 2000

    try:
        return date(year, month, day)
    except ValueError:
        return None


class CreditCardDetector:
    """Detects card-present rows and groups them by last 4 digits."""

    def __init__(
        self,
        credit_cards: CreditCardRepository,
        patterns: list[str] | None = None,
    ):
        """Initialize the detector.

        Args:
            credit_cards: Repository of configured cards
            patterns: Marker regexes; group 1 captures the last 4 digits
        """
        self.credit_cards = credit_cards
        self.patterns = [
            re.compile(p, re.IGNORECASE)
            for p in (patterns or DEFAULT_CARD_MARKER_PATTERNS)
        ]

    def scan(self, description: str) -> CardMarker:
        """Extract card metadata from a description."""
        marker = CardMarker()
        description = description or ""

        for pattern in self.patterns:
            match = pattern.search(description)
            if match:
                marker.last4 = match.group(1)
                break

        marker.purchase_date = extract_purchase_date(description)
        marker.is_card_payment = bool(marker.last4 or marker.purchase_date)
        return marker

    def annotate(
        self,
        account_id: str,
        candidates: list[ImportCandidate],
    ) -> list[CreditCardDetectionGroup]:
        """Annotate candidates with detected cards.

        Each distinct last-4 is resolved once against the account's cards.
        Groups are returned in order of first appearance.

        Args:
            account_id: Target account
            candidates: Candidates to annotate in place

        Returns:
            One detection group per distinct last-4
        """
        groups: dict[str, CreditCardDetectionGroup] = {}

        for candidate in candidates:
            marker = self.scan(candidate.description)
            candidate.purchase_date = marker.purchase_date
            candidate.is_card_payment = marker.is_card_payment

            if not marker.last4:
                continue

            candidate.detected_last4 = marker.last4
            group = groups.get(marker.last4)
            if group is None:
                group = CreditCardDetectionGroup(last4=marker.last4)
                try:
                    card = self.credit_cards.find_by_last4(account_id, marker.last4)
                except Exception as e:
                    logger.warning(f"Card lookup failed for last4 {marker.last4}: {e}")
                    card = None
                if card:
                    group.credit_card_id = card.id
                    group.credit_card_name = card.name
                else:
                    logger.info(f"Card ending {marker.last4} is not configured on account {account_id}")
                groups[marker.last4] = group

            group.count += 1
            candidate.credit_card_id = group.credit_card_id
            candidate.credit_card_name = group.credit_card_name

        return list(groups.values())
