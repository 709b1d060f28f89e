"""
Import Orchestrator Tests

End-to-end analyze/confirm tests over in-memory repositories.
"""

import pytest
from datetime import date
from decimal import Decimal

from ledger.errors import ConflictError, NotFoundError, ValidationError
from statement_import import ImportAction, MatchType


def _csv(*lines: str) -> bytes:
    return ("Date;Libelle;Montant\n" + "\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def analyzed(orchestrator, user_id, account_id, sample_csv):
    return orchestrator.analyze(user_id, account_id, "csv", sample_csv, filename="releve.csv")


class TestAnalyze:
    """Tests for the analyze phase."""

    def test_summary(self, analyzed):
        assert analyzed.summary == {
            "total": 5,
            "new": 4,
            "matches": 1,
            "duplicates": 0,
            "skippedRows": 0,
        }

    def test_candidates_are_annotated(self, analyzed):
        rent, carrefour, edf, amazon, salary = analyzed.candidates

        assert rent.match_type == MatchType.PROBABLE
        assert rent.matched_transaction_id == "txn-rent"
        assert rent.default_action == ImportAction.MATCH

        assert carrefour.match_type == MatchType.NEW
        assert carrefour.merchant_pattern == "carrefour market"
        assert carrefour.credit_card_id == "card-visa"
        assert carrefour.detected_last4 == "1234"
        assert carrefour.purchase_date == date(2025, 1, 4)

        assert edf.merchant_pattern == "edf clients"
        assert amazon.detected_last4 == "9876"
        assert amazon.credit_card_id is None
        assert salary.amount == Decimal("2450.00")

    def test_cards_detected(self, analyzed):
        groups = [g.to_dict() for g in analyzed.credit_cards_detected]
        assert groups == [
            {"last4": "1234", "count": 1, "creditCardId": "card-visa", "creditCardName": "Visa Premier"},
            {"last4": "9876", "count": 1, "creditCardId": None, "creditCardName": None},
        ]

    def test_analyze_never_writes_to_ledger(self, analyzed, ledger):
        assert len(ledger.transactions) == 2
        assert ledger.get("txn-rent").is_reconciled is False

    def test_session_view(self, analyzed):
        view = analyzed.to_dict()
        assert view["importId"] == analyzed.import_id
        assert view["filename"] == "releve.csv"
        assert len(view["transactions"]) == 5
        assert view["transactions"][1]["defaultAction"] == "create"
        assert view["transactions"][1]["amount"] == -54.2

    def test_get_session(self, orchestrator, analyzed, user_id):
        assert orchestrator.get_session(user_id, analyzed.import_id) is analyzed

    def test_parse_failure_aborts(self, orchestrator, user_id, account_id, store):
        with pytest.raises(ValidationError):
            orchestrator.analyze(user_id, account_id, "csv", _csv("garbage;row;"))
        assert len(store) == 0

    def test_preview_does_not_create_session(self, orchestrator, sample_csv, store):
        preview = orchestrator.preview("csv", sample_csv, limit=2)

        assert preview["totalRows"] == 5
        assert len(preview["preview"]) == 2
        assert preview["preview"][0]["description"] == "VIR SEPA LOYER JANVIER"
        assert len(store) == 0


class TestConfirm:
    """Tests for the confirm phase."""

    def test_default_actions(self, orchestrator, analyzed, ledger, user_id):
        result = orchestrator.confirm(user_id, analyzed.import_id)

        assert result.to_dict() == {
            "imported": 4,
            "matched": 1,
            "skipped": 0,
            "aliasesLearned": 0,
            "errors": 0,
            "errorDetails": [],
        }
        assert len(ledger.transactions) == 6

    def test_imported_equals_new_candidates(self, orchestrator, analyzed, user_id):
        new_count = sum(1 for c in analyzed.candidates if c.match_type == MatchType.NEW)
        result = orchestrator.confirm(user_id, analyzed.import_id)
        assert result.imported == new_count

    def test_match_reconciles_existing_row(self, orchestrator, analyzed, ledger, user_id):
        orchestrator.confirm(user_id, analyzed.import_id)

        rent = ledger.get("txn-rent")
        assert rent.is_reconciled is True
        assert rent.import_id == analyzed.import_id
        assert rent.import_hash == analyzed.candidates[0].import_hash
        assert rent.description == "January rent"

    def test_created_rows(self, orchestrator, analyzed, ledger, user_id, account_id):
        orchestrator.confirm(user_id, analyzed.import_id)

        created = [t for t in ledger.transactions if t.import_id == analyzed.import_id and t.id != "txn-rent"]
        by_description = {t.description: t for t in created}

        carrefour = by_description["PAIEMENT PAR CARTE CARTE 04/01/25 CARREFOUR MARKET CB*1234"]
        assert carrefour.account_id == account_id
        assert carrefour.type == "expense"
        assert carrefour.status == "cleared"
        assert carrefour.is_reconciled is True
        assert carrefour.credit_card_id == "card-visa"
        assert carrefour.purchase_date == date(2025, 1, 4)
        assert carrefour.import_hash == analyzed.candidates[1].import_hash

        salary = by_description["VIR SEPA SALAIRE ACME"]
        assert salary.type == "income"
        assert salary.amount == Decimal("2450.00")

    def test_reimport_is_all_duplicates(self, orchestrator, analyzed, ledger, user_id, account_id, sample_csv):
        orchestrator.confirm(user_id, analyzed.import_id)
        before = len(ledger.transactions)

        second = orchestrator.analyze(user_id, account_id, "csv", sample_csv)
        assert all(c.match_type == MatchType.DUPLICATE for c in second.candidates)

        result = orchestrator.confirm(user_id, second.import_id)

        assert result.skipped == 5
        assert result.imported == 0
        assert len(ledger.transactions) == before

    def test_duplicate_created_only_with_explicit_override(
        self, orchestrator, analyzed, ledger, user_id, account_id, sample_csv
    ):
        orchestrator.confirm(user_id, analyzed.import_id)
        before = len(ledger.transactions)

        second = orchestrator.analyze(user_id, account_id, "csv", sample_csv)
        result = orchestrator.confirm(user_id, second.import_id, {"4": {"action": "create"}})

        assert result.imported == 1
        assert result.skipped == 4
        assert len(ledger.transactions) == before + 1

    def test_skip_override(self, orchestrator, analyzed, ledger, user_id):
        result = orchestrator.confirm(
            user_id, analyzed.import_id, {0: {"action": "skip"}, 2: {"action": "skip"}}
        )

        assert result.skipped == 2
        assert result.imported == 3
        assert result.matched == 0
        assert ledger.get("txn-rent").is_reconciled is False

    def test_hash_imported_since_analyze_becomes_skip(self, orchestrator, analyzed, ledger, user_id, account_id):
        carrefour = analyzed.candidates[1]
        ledger.create_transaction(
            account_id=account_id,
            date=carrefour.date,
            amount=carrefour.amount,
            description=carrefour.description,
            import_hash=carrefour.import_hash,
            is_reconciled=True,
        )

        result = orchestrator.confirm(user_id, analyzed.import_id)

        assert result.skipped == 1
        assert result.imported == 3

    def test_alias_learning_and_reuse(self, orchestrator, analyzed, user_id, account_id):
        result = orchestrator.confirm(
            user_id,
            analyzed.import_id,
            {"1": {"action": "create", "payeeId": "payee-carrefour"}},
            auto_categories=True,
        )
        assert result.aliases_learned == 1

        again = orchestrator.analyze(
            user_id, account_id, "csv", _csv("19/01/2025;CARTE 18/01/25 CARREFOUR MARKET CB*1234;-23,10")
        )
        candidate = again.candidates[0]
        assert candidate.suggested_payee_id == "payee-carrefour"
        assert candidate.suggested_payee_name == "Carrefour"

        # Accepting the suggestion again does not count as a new alias
        result = orchestrator.confirm(user_id, again.import_id)
        assert result.aliases_learned == 0

    def test_no_alias_learning_without_auto_categories(self, orchestrator, analyzed, payees, user_id):
        result = orchestrator.confirm(
            user_id,
            analyzed.import_id,
            {"1": {"action": "create", "payeeId": "payee-carrefour"}},
            auto_categories=False,
        )

        assert result.aliases_learned == 0
        assert payees.find_alias_by_pattern(user_id, "carrefour market") is None

    def test_rules_categorize_created_rows(
        self, orchestrator, rule_repository, make_rule, ledger, user_id, account_id
    ):
        rule_repository.create(make_rule(
            [("description", "contains", "shop")], category_id="cat-groceries", priority=10,
        ))
        winner = rule_repository.create(make_rule(
            [("description", "contains", "shop")],
            category_id="cat-shopping",
            priority=90,
            action_tags=["shopping", "auto"],
        ))

        session = orchestrator.analyze(user_id, account_id, "csv", _csv("12/01/2025;Online shop purchase;-30,00"))
        result = orchestrator.confirm(user_id, session.import_id, auto_categories=True)

        assert result.imported == 1
        created = next(t for t in ledger.transactions if t.import_id == session.import_id)
        assert created.category_id == "cat-shopping"
        assert {"shopping", "auto"} <= set(created.tags)
        assert created.type == "expense"
        assert winner.times_applied == 1

    def test_rules_not_run_without_auto_categories(
        self, orchestrator, rule_repository, make_rule, ledger, user_id, account_id
    ):
        rule_repository.create(make_rule([("description", "contains", "shop")]))

        session = orchestrator.analyze(user_id, account_id, "csv", _csv("12/01/2025;Online shop purchase;-30,00"))
        orchestrator.confirm(user_id, session.import_id, auto_categories=False)

        created = next(t for t in ledger.transactions if t.import_id == session.import_id)
        assert created.category_id is None
        assert created.tags == []

    def test_category_override_beats_rules(
        self, orchestrator, rule_repository, make_rule, ledger, user_id, account_id
    ):
        rule_repository.create(make_rule([("description", "contains", "shop")], category_id="cat-shopping"))

        session = orchestrator.analyze(user_id, account_id, "csv", _csv("12/01/2025;Online shop purchase;-30,00"))
        orchestrator.confirm(
            user_id, session.import_id, {0: {"action": "create", "categoryId": "cat-utilities"}}
        )

        created = next(t for t in ledger.transactions if t.import_id == session.import_id)
        assert created.category_id == "cat-utilities"

    def test_row_failure_does_not_abort_batch(self, orchestrator, analyzed, user_id):
        result = orchestrator.confirm(
            user_id,
            analyzed.import_id,
            {
                "2": {"action": "create", "categoryId": "cat-missing"},
                "3": {"action": "match", "matchedTransactionId": "txn-nope"},
            },
        )

        assert result.errors == 2
        assert [d["index"] for d in result.error_details] == [2, 3]
        assert "cat-missing" in result.error_details[0]["error"]
        assert result.imported == 2
        assert result.matched == 1

        with pytest.raises(ConflictError):
            orchestrator.confirm(user_id, analyzed.import_id)

    def test_unknown_payee_override_is_a_row_error(self, orchestrator, analyzed, user_id):
        result = orchestrator.confirm(
            user_id, analyzed.import_id, {"1": {"action": "create", "payeeId": "payee-ghost"}}
        )
        assert result.errors == 1
        assert result.imported == 3

    def test_second_confirm_conflicts(self, orchestrator, analyzed, ledger, user_id):
        orchestrator.confirm(user_id, analyzed.import_id)
        count = len(ledger.transactions)

        with pytest.raises(ConflictError):
            orchestrator.confirm(user_id, analyzed.import_id)
        assert len(ledger.transactions) == count

    def test_unknown_session(self, orchestrator, user_id):
        with pytest.raises(NotFoundError):
            orchestrator.confirm(user_id, "does-not-exist")

    def test_expired_session(self, orchestrator, analyzed, user_id, clock, settings):
        clock.advance(seconds=settings.session_ttl_seconds + 1)
        with pytest.raises(NotFoundError):
            orchestrator.confirm(user_id, analyzed.import_id)

    def test_other_users_session(self, orchestrator, analyzed):
        with pytest.raises(NotFoundError):
            orchestrator.confirm("bob", analyzed.import_id)

    def test_identical_rows_in_one_file_are_all_imported(self, orchestrator, ledger, user_id, account_id):
        session = orchestrator.analyze(
            user_id,
            account_id,
            "csv",
            _csv("10/02/2025;COFFEE SHOP;-3,50", "10/02/2025;COFFEE SHOP;-3,50"),
        )
        first, second = session.candidates
        assert first.import_hash == second.import_hash
        new_count = sum(1 for c in session.candidates if c.match_type == MatchType.NEW)
        assert new_count == 2

        result = orchestrator.confirm(user_id, session.import_id, {}, auto_categories=False)

        assert result.imported == new_count
        assert result.skipped == 0
        created = [t for t in ledger.transactions if t.import_id == session.import_id]
        assert len(created) == 2

    def test_identical_rows_are_duplicates_on_reimport(self, orchestrator, ledger, user_id, account_id):
        content = _csv("10/02/2025;COFFEE SHOP;-3,50", "10/02/2025;COFFEE SHOP;-3,50")
        first = orchestrator.analyze(user_id, account_id, "csv", content)
        orchestrator.confirm(user_id, first.import_id)
        count = len(ledger.transactions)

        second = orchestrator.analyze(user_id, account_id, "csv", content)
        result = orchestrator.confirm(user_id, second.import_id)

        assert all(c.match_type == MatchType.DUPLICATE for c in second.candidates)
        assert result.skipped == 2
        assert len(ledger.transactions) == count

    def test_match_target_reconciled_since_analyze(self, orchestrator, analyzed, ledger, user_id):
        ledger.update_transaction("txn-rent", {"is_reconciled": True, "import_id": "another-import"})

        result = orchestrator.confirm(user_id, analyzed.import_id)

        assert result.matched == 0
        assert result.errors == 1
        assert result.error_details[0]["index"] == 0
        assert "already reconciled" in result.error_details[0]["error"]
        assert result.imported == 4
        assert ledger.get("txn-rent").import_id == "another-import"

    def test_invalid_actions_keep_session(self, orchestrator, analyzed, user_id):
        with pytest.raises(ValidationError):
            orchestrator.confirm(user_id, analyzed.import_id, {"1": {"action": "delete"}})

        assert orchestrator.get_session(user_id, analyzed.import_id) is analyzed
