"""
Candidate Enrichment Tests

Tests for credit card detection and merchant pattern / payee resolution.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger import CreditCard, InMemoryCreditCardRepository, InMemoryPayeeRepository, Payee
from statement_import import (
    CreditCardDetector,
    ImportCandidate,
    MerchantResolver,
    extract_merchant_pattern,
    extract_purchase_date,
)


def _candidate(index: int, description: str) -> ImportCandidate:
    return ImportCandidate(
        index=index,
        date=date(2025, 1, 5),
        description=description,
        amount=Decimal("-10.00"),
        import_hash=f"hash-{index}",
    )


class TestPurchaseDate:
    """Tests for CARTE dd/mm/yy extraction."""

    def test_two_digit_year(self):
        assert extract_purchase_date("CARTE 28/12/24 BOULANGERIE") == date(2024, 12, 28)

    def test_two_digit_year_before_1970(self):
        assert extract_purchase_date("CARTE 01/02/85 OLD SHOP") == date(1985, 2, 1)

    def test_four_digit_year(self):
        assert extract_purchase_date("carte 04/01/2025 amazon") == date(2025, 1, 4)

    def test_invalid_or_missing(self):
        assert extract_purchase_date("CARTE 31/02/25 X") is None
        assert extract_purchase_date("VIR SEPA SALAIRE") is None


class TestCreditCardDetector:
    """Tests for card marker detection and grouping."""

    @pytest.fixture
    def detector(self, credit_cards):
        return CreditCardDetector(credit_cards)

    @pytest.mark.parametrize("description,last4", [
        ("CARREFOUR MARKET CB*1234", "1234"),
        ("AMAZON EU CB *9876", "9876"),
        ("SHELL CB* 4321  ", "4321"),
        ("POS PURCHASE CARD ****5555 JOLLIBEE", "5555"),
        ("VIR SEPA SALAIRE", None),
        ("CB*1234 IN THE MIDDLE", None),
    ])
    def test_scan(self, detector, description, last4):
        assert detector.scan(description).last4 == last4

    def test_groups_by_last4_in_first_seen_order(self, detector, account_id):
        candidates = [
            _candidate(0, "AMAZON EU CB*9876"),
            _candidate(1, "CARTE 04/01/25 CARREFOUR CB*1234"),
            _candidate(2, "VIR SEPA LOYER"),
            _candidate(3, "FNAC CB*1234"),
        ]

        groups = detector.annotate(account_id, candidates)

        assert [g.last4 for g in groups] == ["9876", "1234"]
        unassociated, visa = groups
        assert unassociated.count == 1
        assert unassociated.credit_card_name is None
        assert unassociated.credit_card_id is None
        assert visa.count == 2
        assert visa.credit_card_name == "Visa Premier"

        assert candidates[1].credit_card_id == "card-visa"
        assert candidates[1].detected_last4 == "1234"
        assert candidates[1].purchase_date == date(2025, 1, 4)
        assert candidates[1].is_card_payment is True
        assert candidates[2].detected_last4 is None
        assert candidates[2].is_card_payment is False
        assert candidates[0].credit_card_id is None

    def test_card_on_other_account_is_not_matched(self, account_id):
        cards = InMemoryCreditCardRepository([
            CreditCard(id="card-x", account_id="acc-other", name="Other", last4="1234"),
        ])
        groups = CreditCardDetector(cards).annotate(account_id, [_candidate(0, "SHOP CB*1234")])
        assert groups[0].credit_card_name is None

    def test_each_last4_resolved_once(self, account_id):
        class CountingCards(InMemoryCreditCardRepository):
            calls = 0

            def find_by_last4(self, account_id, last4):
                CountingCards.calls += 1
                return super().find_by_last4(account_id, last4)

        detector = CreditCardDetector(CountingCards())
        detector.annotate(account_id, [_candidate(i, f"SHOP {i} CB*1234") for i in range(5)])
        assert CountingCards.calls == 1

    def test_custom_pattern(self, credit_cards, account_id):
        detector = CreditCardDetector(credit_cards, patterns=[r"VISA\s+X+(\d{4})"])
        assert detector.scan("PAYMENT VISA XXXX1234").last4 == "1234"


class TestExtractMerchantPattern:
    """Tests for stripping volatile tokens from descriptions."""

    @pytest.mark.parametrize("description,expected", [
        ("PAIEMENT PAR CARTE CARTE 04/01/25 CARREFOUR MARKET CB*1234", "carrefour market"),
        ("CARTE 06/01/25 AMAZON EU CB*9876", "amazon eu"),
        ("PRLV SEPA EDF CLIENTS 0012345678", "edf clients"),
        ("VIR SEPA SALAIRE ACME", "salaire acme"),
        ("POS PURCHASE - SHELL BGC - 12345", "shell bgc 12345"),
        ("BILLS PAYMENT - MERALCO", "meralco"),
        ("Boulangerie Café du Coin 15/01", "boulangerie cafe du coin"),
        ("", ""),
    ])
    def test_patterns(self, description, expected):
        assert extract_merchant_pattern(description) == expected

    def test_same_merchant_different_dates_share_pattern(self):
        a = extract_merchant_pattern("CARTE 04/01/25 CARREFOUR MARKET CB*1234")
        b = extract_merchant_pattern("CARTE 19/02/25 CARREFOUR MARKET CB*1234")
        assert a == b


class TestMerchantResolver:
    """Tests for alias lookup and learning."""

    @pytest.fixture
    def resolver(self, payees):
        return MerchantResolver(payees, min_substring_length=4)

    def test_unknown_pattern_has_no_suggestion(self, resolver, user_id):
        assert resolver.resolve(user_id, "carrefour market") is None

    def test_learn_then_resolve(self, resolver, user_id):
        assert resolver.learn(user_id, "carrefour market", "payee-carrefour") is True

        match = resolver.resolve(user_id, "carrefour market")
        assert match.payee_id == "payee-carrefour"
        assert match.payee_name == "Carrefour"
        assert match.match_type == "exact"

    def test_relearning_same_payee_is_not_a_change(self, resolver, user_id):
        resolver.learn(user_id, "edf", "payee-edf")
        assert resolver.learn(user_id, "edf", "payee-edf") is False

    def test_last_write_wins(self, resolver, user_id):
        resolver.learn(user_id, "carrefour market", "payee-edf")
        assert resolver.learn(user_id, "carrefour market", "payee-carrefour") is True
        assert resolver.resolve(user_id, "carrefour market").payee_id == "payee-carrefour"

    def test_substring_match(self, resolver, user_id):
        resolver.learn(user_id, "carrefour", "payee-carrefour")

        match = resolver.resolve(user_id, "carrefour city paris")
        assert match.payee_id == "payee-carrefour"
        assert match.match_type == "substring"

    def test_short_patterns_do_not_substring_match(self, resolver, user_id):
        resolver.learn(user_id, "edf", "payee-edf")
        assert resolver.resolve(user_id, "edf clients") is None

    def test_aliases_are_per_user(self, resolver, user_id):
        resolver.learn(user_id, "carrefour market", "payee-carrefour")
        assert resolver.resolve("someone-else", "carrefour market") is None

    def test_lookup_failure_leaves_pattern_unresolved(self, user_id):
        class BrokenPayees(InMemoryPayeeRepository):
            def find_alias_by_pattern(self, user_id, pattern):
                raise RuntimeError("database unavailable")

        resolver = MerchantResolver(BrokenPayees([Payee(id="p", name="P")]))
        assert resolver.resolve_batch(user_id, ["carrefour"]) == {"carrefour": None}
