"""
Import Orchestrator

Two-phase statement import: analyze builds a reviewable session without
touching the ledger, confirm commits the reviewed candidates row by row.
"""

import logging
import uuid
from typing import Any

from categorization.engine import RuleEngine
from categorization.rules import Rule
from ledger.errors import BudgetError, ImportRowError, ValidationError
from ledger.repositories import (
    CategoryRepository,
    CreditCardRepository,
    LedgerRepository,
    PayeeRepository,
)

from .card_detector import CreditCardDetector
from .duplicate_detector import MatchClassifier
from .merchant_lookup import MerchantResolver, extract_merchant_pattern
from .models import (
    CandidateAction,
    ConfirmResult,
    ImportAction,
    ImportCandidate,
    ImportSession,
)
from .parsers import parse_statement
from .session_store import ImportSessionStore
from .settings import ImportSettings

logger = logging.getLogger(__name__)

# camelCase request keys -> CandidateAction fields
_ACTION_FIELDS = {
    "matchedTransactionId": "matched_transaction_id",
    "payeeId": "payee_id",
    "creditCardId": "credit_card_id",
    "merchantPattern": "merchant_pattern",
    "categoryId": "category_id",
    "description": "description",
}


def parse_actions(actions: dict | None) -> dict[int, CandidateAction]:
    """Normalize client overrides keyed by candidate index.

    Accepts CandidateAction values or dicts with camelCase or snake_case keys.

    Raises:
        ValidationError: On a non-numeric index or unknown action
    """
    parsed = {}
    details = []

    for key, value in (actions or {}).items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            details.append({"field": f"actions.{key}", "message": "Index must be an integer"})
            continue

        if isinstance(value, CandidateAction):
            parsed[index] = value
            continue

        try:
            action = ImportAction(value.get("action"))
        except (AttributeError, ValueError):
            details.append({
                "field": f"actions.{key}.action",
                "message": "Action must be one of create, match, skip",
            })
            continue

        overrides = {}
        for camel, snake in _ACTION_FIELDS.items():
            field_value = value.get(camel, value.get(snake))
            if field_value is not None:
                overrides[snake] = field_value
        parsed[index] = CandidateAction(action=action, **overrides)

    if details:
        raise ValidationError("Invalid import actions", details=details)
    return parsed


class ImportOrchestrator:
    """Owns the analyze/confirm protocol and the session lifecycle."""

    def __init__(
        self,
        ledger: LedgerRepository,
        payees: PayeeRepository,
        credit_cards: CreditCardRepository,
        categories: CategoryRepository,
        rule_engine: RuleEngine,
        settings: ImportSettings | None = None,
        store: ImportSessionStore | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            ledger: Ledger repository
            payees: Payee and alias repository
            credit_cards: Credit card repository
            categories: Category repository
            rule_engine: Engine used for auto-categorization at confirm
            settings: Import settings (defaults when omitted)
            store: Session store (built from settings when omitted)
        """
        self.settings = settings or ImportSettings()
        self.ledger = ledger
        self.payees = payees
        self.categories = categories
        self.rule_engine = rule_engine
        self.store = store or ImportSessionStore(self.settings.session_ttl_seconds)

        self.card_detector = CreditCardDetector(credit_cards, self.settings.card_marker_patterns)
        self.merchant_resolver = MerchantResolver(payees, self.settings.min_substring_pattern_length)
        self.classifier = MatchClassifier(
            ledger,
            date_tolerance_days=self.settings.date_tolerance_days,
            exact_description_similarity=self.settings.exact_description_similarity,
        )

    def analyze(
        self,
        user_id: str,
        account_id: str,
        file_type: str,
        content: bytes,
        parse_config: dict | None = None,
        filename: str | None = None,
    ) -> ImportSession:
        """Parse and annotate a statement, then hold it for review.

        Args:
            user_id: Importing user
            account_id: Target account
            file_type: csv, excel, qif or qfx
            content: Raw file bytes
            parse_config: Format-specific parse configuration
            filename: Original upload name

        Returns:
            The stored ImportSession

        Raises:
            ValidationError: If the file cannot be parsed
        """
        parsed = parse_statement(
            content,
            file_type,
            parse_config,
            max_rows=self.settings.max_rows,
            max_bytes=self.settings.max_file_bytes,
        )

        candidates = [
            ImportCandidate(
                index=index,
                date=row.date,
                description=row.description,
                amount=row.amount,
                import_hash=row.import_hash,
                row_number=row.row_number,
                reference=row.reference,
                value_date=row.value_date,
            )
            for index, row in enumerate(parsed.rows)
        ]

        cards_detected = self.card_detector.annotate(account_id, candidates)
        self._resolve_merchants(user_id, candidates)
        self.classifier.classify_batch(account_id, candidates)

        created_at = self.store.now()
        session = ImportSession(
            import_id=uuid.uuid4().hex,
            user_id=user_id,
            account_id=account_id,
            file_type=file_type.lower(),
            parse_config=dict(parse_config or {}),
            created_at=created_at,
            expires_at=self.store.expiry_from(created_at),
            candidates=candidates,
            credit_cards_detected=cards_detected,
            filename=filename,
            skipped_rows=parsed.skipped_rows,
            warnings=parsed.warnings,
        )
        self.store.put(session)

        logger.info(
            f"Analyzed {filename or file_type} for account {account_id}: {session.summary}"
        )
        return session

    def _resolve_merchants(self, user_id: str, candidates: list[ImportCandidate]) -> None:
        for candidate in candidates:
            candidate.merchant_pattern = extract_merchant_pattern(candidate.description)

        matches = self.merchant_resolver.resolve_batch(
            user_id, [c.merchant_pattern for c in candidates]
        )
        for candidate in candidates:
            match = matches.get(candidate.merchant_pattern)
            if match:
                candidate.suggested_payee_id = match.payee_id
                candidate.suggested_payee_name = match.payee_name

    def get_session(self, user_id: str, import_id: str) -> ImportSession:
        """Return a session still awaiting confirmation."""
        return self.store.get(user_id, import_id)

    def preview(
        self,
        file_type: str,
        content: bytes,
        parse_config: dict | None = None,
        limit: int = 10,
    ) -> dict:
        """Parse a file to check its configuration, without creating a session."""
        parsed = parse_statement(
            content,
            file_type,
            parse_config,
            max_rows=self.settings.max_rows,
            max_bytes=self.settings.max_file_bytes,
        )
        return {
            "preview": [
                {
                    "rowNumber": row.row_number,
                    "date": row.date.isoformat(),
                    "description": row.description,
                    "amount": float(row.amount),
                    "reference": row.reference,
                }
                for row in parsed.rows[:limit]
            ],
            "totalRows": parsed.row_count,
            "skippedRows": parsed.skipped_rows,
            "warnings": parsed.warnings[:limit],
        }

    def confirm(
        self,
        user_id: str,
        import_id: str,
        actions: dict[Any, Any] | None = None,
        auto_categories: bool = True,
    ) -> ConfirmResult:
        """Commit a reviewed session.

        Candidates are processed sequentially in file order. A failing row is
        counted in the result and the batch continues. The session is removed
        once processing completes.

        Args:
            user_id: Session owner
            import_id: Session to confirm
            actions: Overrides keyed by candidate index
            auto_categories: Run the rule engine and learn merchant aliases

        Returns:
            ConfirmResult with per-outcome counts

        Raises:
            ValidationError: If the overrides are malformed
            NotFoundError: If the session is unknown or expired
            ConflictError: If the session is confirmed or being confirmed
        """
        overrides = parse_actions(actions)

        with self.store.checkout(user_id, import_id) as session:
            unknown = set(overrides) - {c.index for c in session.candidates}
            if unknown:
                logger.warning(f"Ignoring actions for unknown rows {sorted(unknown)} in import {import_id}")

            rules = self.rule_engine.rules.list(user_id, is_active=True) if auto_categories else []
            result = ConfirmResult()

            for candidate in session.candidates:
                try:
                    self._confirm_candidate(
                        session, candidate, overrides.get(candidate.index), rules, auto_categories, result
                    )
                except BudgetError as e:
                    logger.warning(f"Import {import_id} row {candidate.index} failed: {e.message}")
                    result.record_error(candidate.index, e.message)
                except Exception as e:
                    logger.exception(f"Import {import_id} row {candidate.index} failed")
                    result.record_error(candidate.index, str(e))

        logger.info(f"Confirmed import {import_id}: {result.to_dict()}")
        return result

    def _confirm_candidate(
        self,
        session: ImportSession,
        candidate: ImportCandidate,
        override: CandidateAction | None,
        rules: list[Rule],
        auto_categories: bool,
        result: ConfirmResult,
    ) -> None:
        action = override.action if override else candidate.default_action

        if action == ImportAction.SKIP:
            result.skipped += 1
            return

        payee_id = (override and override.payee_id) or candidate.suggested_payee_id
        credit_card_id = (override and override.credit_card_id) or candidate.credit_card_id
        merchant_pattern = (override and override.merchant_pattern) or candidate.merchant_pattern

        if override and override.payee_id and self.payees.get_payee(override.payee_id) is None:
            raise ImportRowError(candidate.index, f"Unknown payee: {override.payee_id}")

        if action == ImportAction.MATCH:
            self._match(session, candidate, override, payee_id, credit_card_id)
            result.matched += 1
        else:
            if override is None and self.ledger.find_by_import_hash(
                session.account_id, candidate.import_hash, exclude_import_id=session.import_id
            ):
                # Imported by another session since analyze
                result.skipped += 1
                return
            self._create(session, candidate, override, payee_id, credit_card_id, rules, auto_categories)
            result.imported += 1

        if auto_categories and payee_id and merchant_pattern:
            try:
                if self.merchant_resolver.learn(
                    session.user_id, merchant_pattern, payee_id, candidate.description
                ):
                    result.aliases_learned += 1
            except Exception as e:
                logger.warning(f"Could not learn alias {merchant_pattern!r}: {e}")

    def _match(
        self,
        session: ImportSession,
        candidate: ImportCandidate,
        override: CandidateAction | None,
        payee_id: str | None,
        credit_card_id: str | None,
    ) -> None:
        target_id = (override and override.matched_transaction_id) or candidate.matched_transaction_id
        if not target_id:
            raise ImportRowError(candidate.index, "No transaction to match")

        existing = self.ledger.get(target_id)
        if existing is None or existing.account_id != session.account_id:
            raise ImportRowError(candidate.index, f"Matched transaction not found: {target_id}")
        if existing.is_reconciled and existing.import_id != session.import_id:
            # Reconciled elsewhere since analyze
            raise ImportRowError(candidate.index, f"Transaction {target_id} is already reconciled")

        patch = {
            "is_reconciled": True,
            "import_id": session.import_id,
            "import_hash": candidate.import_hash,
        }
        if payee_id and not existing.payee_id:
            patch["payee_id"] = payee_id
        if credit_card_id and not existing.credit_card_id:
            patch["credit_card_id"] = credit_card_id
        if candidate.purchase_date and not existing.purchase_date:
            patch["purchase_date"] = candidate.purchase_date

        self.ledger.update_transaction(target_id, patch)

    def _create(
        self,
        session: ImportSession,
        candidate: ImportCandidate,
        override: CandidateAction | None,
        payee_id: str | None,
        credit_card_id: str | None,
        rules: list[Rule],
        auto_categories: bool,
    ) -> None:
        description = (override and override.description) or candidate.description
        category_id = override.category_id if override else None
        tags: list[str] = []
        notes = None
        rule = None

        if not category_id and auto_categories:
            rule = self.rule_engine.first_match(
                rules, {"description": description, "amount": candidate.amount}
            )
            if rule:
                patch = self.rule_engine.action_patch(rule)
                category_id = patch["category_id"]
                tags = patch["tags"]
                notes = patch.get("notes")

        if category_id and not self.categories.exists(category_id):
            raise ImportRowError(candidate.index, f"Unknown category: {category_id}")

        self.ledger.create_transaction(
            user_id=session.user_id,
            account_id=session.account_id,
            date=candidate.date,
            amount=candidate.amount,
            description=description,
            type="income" if candidate.amount > 0 else "expense",
            status="cleared",
            category_id=category_id,
            payee_id=payee_id,
            credit_card_id=credit_card_id,
            tags=tags,
            notes=notes,
            value_date=candidate.value_date,
            purchase_date=candidate.purchase_date,
            is_reconciled=True,
            import_id=session.import_id,
            import_hash=candidate.import_hash,
        )

        if rule:
            self.rule_engine.record_application(rule)
