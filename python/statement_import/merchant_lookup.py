"""
Merchant Lookup Module

Derives stable merchant patterns from bank descriptions and resolves them to
payees through the learned alias table.
"""

import logging
import re
from dataclasses import dataclass

from ledger.repositories import PayeeRepository

from .parsers.base import normalize_description

logger = logging.getLogger(__name__)

# Longest prefixes first so "POS PURCHASE" wins over "POS"
BANK_PREFIXES = [
    "PAIEMENT PAR CARTE",
    "PAIEMENT CB",
    "RETRAIT DAB",
    "VIR SEPA",
    "PRLV SEPA",
    "POS PURCHASE",
    "BILLS PAYMENT",
    "ONLINE",
    "CHEQUE",
    "CHQ",
    "POS",
]

_PREFIX_RE = re.compile(
    r"^(?:" + "|".join(re.escape(p) for p in BANK_PREFIXES) + r")\b[\s:\-]*",
    re.IGNORECASE,
)
_CARD_DATE_RE = re.compile(r"\bCARTE\s+\d{2}/\d{2}/\d{2,4}\b", re.IGNORECASE)
_CARD_SUFFIX_RE = re.compile(r"\bCB\s?\*\s?\d{4}\s*$|\bCARD\s*[X*]{2,}\s?\d{4}\b", re.IGNORECASE)
_DATE_RE = re.compile(r"\b\d{1,4}[/.\-]\d{1,2}(?:[/.\-]\d{2,4})?\b")
_REFERENCE_RE = re.compile(r"\d{6,}")


def extract_merchant_pattern(description: str) -> str:
    """Strip volatile tokens from a description to get a stable merchant key.

    Removes the card purchase date, card marker suffix, bank operation
    prefixes, embedded dates and long reference numbers, then normalizes.

    Args:
        description: Raw bank description

    Returns:
        Normalized merchant pattern, possibly empty
    """
    text = (description or "").strip()
    text = _CARD_DATE_RE.sub(" ", text)
    text = _CARD_SUFFIX_RE.sub(" ", text)

    # Prefixes can stack ("PAIEMENT CB POS ...")
    previous = None
    while previous != text:
        previous = text
        text = _PREFIX_RE.sub("", text.strip())

    text = _DATE_RE.sub(" ", text)
    text = _REFERENCE_RE.sub(" ", text)
    return normalize_description(text)


@dataclass
class MerchantMatch:
    """Result of a merchant lookup."""

    merchant_pattern: str
    payee_id: str
    payee_name: str | None
    match_type: str  # 'exact' or 'substring'
    alias_pattern: str

    def to_dict(self) -> dict:
        return {
            "payeeId": self.payee_id,
            "payeeName": self.payee_name,
            "matchType": self.match_type,
            "aliasPattern": self.alias_pattern,
        }


class MerchantResolver:
    """Merchant pattern to payee lookup backed by learned aliases."""

    def __init__(self, payees: PayeeRepository, min_substring_length: int = 4):
        """Initialize the resolver.

        Args:
            payees: Payee and alias repository
            min_substring_length: Shortest pattern eligible for substring matching
        """
        self.payees = payees
        self.min_substring_length = min_substring_length

    def resolve(self, user_id: str, merchant_pattern: str) -> MerchantMatch | None:
        """Look up the payee learned for a merchant pattern.

        Tries an exact alias first, then aliases contained in the pattern (or
        containing it), most used first. The resolver never invents a payee.

        Args:
            user_id: Alias owner
            merchant_pattern: Pattern from extract_merchant_pattern

        Returns:
            MerchantMatch if an alias applies, None otherwise
        """
        if not merchant_pattern:
            return None

        alias = self.payees.find_alias_by_pattern(user_id, merchant_pattern)
        if alias:
            return MerchantMatch(
                merchant_pattern=merchant_pattern,
                payee_id=alias.payee_id,
                payee_name=alias.payee_name,
                match_type="exact",
                alias_pattern=alias.pattern,
            )

        if len(merchant_pattern) < self.min_substring_length:
            return None

        for alias in self.payees.find_aliases(user_id):
            if len(alias.pattern) < self.min_substring_length:
                continue
            if alias.pattern in merchant_pattern or merchant_pattern in alias.pattern:
                return MerchantMatch(
                    merchant_pattern=merchant_pattern,
                    payee_id=alias.payee_id,
                    payee_name=alias.payee_name,
                    match_type="substring",
                    alias_pattern=alias.pattern,
                )

        return None

    def resolve_batch(
        self,
        user_id: str,
        patterns: list[str],
    ) -> dict[str, MerchantMatch | None]:
        """Resolve several patterns, looking each distinct one up once.

        A lookup failure leaves that pattern unresolved.
        """
        results: dict[str, MerchantMatch | None] = {}
        for pattern in patterns:
            if pattern in results:
                continue
            try:
                results[pattern] = self.resolve(user_id, pattern)
            except Exception as e:
                logger.warning(f"Merchant lookup failed for {pattern!r}: {e}")
                results[pattern] = None
        return results

    def learn(
        self,
        user_id: str,
        merchant_pattern: str,
        payee_id: str,
        bank_description: str = "",
    ) -> bool:
        """Record that a merchant pattern belongs to a payee.

        Args:
            user_id: Alias owner
            merchant_pattern: Pattern to learn
            payee_id: Payee accepted by the user
            bank_description: Original description, kept for reference

        Returns:
            True if the pattern was new or now points at a different payee
        """
        if not merchant_pattern or not payee_id:
            return False

        alias, changed = self.payees.upsert_alias(
            user_id, merchant_pattern, payee_id, bank_description
        )
        if changed:
            logger.info(f"Learned merchant alias: {alias.pattern!r} -> {payee_id}")
        return changed
