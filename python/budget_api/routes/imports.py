"""
Statement Import API Routes

Two-phase import: analyze an uploaded statement, review it, then confirm.
"""

import json
import logging
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_snake

from ledger.errors import ValidationError
from statement_import import ImportOrchestrator

from ..dependencies import User, get_orchestrator, require_import, require_view
from ..schemas import CamelModel, to_validation_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/import", tags=["import"])


class ParseConfig(CamelModel):
    """Parse configuration sent as a JSON string with the upload."""

    delimiter: str | None = None
    encoding: Literal["utf-8", "iso-8859-1", "windows-1252"] | None = None
    has_header: bool | None = None
    date_format: str | None = None
    decimal_separator: Literal[".", ","] | None = None
    columns: dict[str, int | str] | None = None
    skip_rows: int | None = None
    invert_amounts: bool | None = None
    sheet_index: int | None = None


class ActionOverride(CamelModel):
    """Client decision for one candidate."""

    action: Literal["create", "match", "skip"]
    matched_transaction_id: str | None = None
    payee_id: str | None = None
    credit_card_id: str | None = None
    merchant_pattern: str | None = None
    category_id: str | None = None
    description: str | None = None


class ConfirmRequest(CamelModel):
    """Confirm request body."""

    import_id: str
    actions: dict[str, ActionOverride] = {}
    auto_categories: bool = True


def _parse_config(raw: str | None) -> dict:
    """Decode the config form field into parser keyword settings."""
    if not raw:
        return {}

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"config is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ValidationError("config must be a JSON object")

    try:
        config = ParseConfig.model_validate(data)
    except PydanticValidationError as e:
        raise to_validation_error(e, "Invalid parse configuration", prefix="config.")

    parsed = config.model_dump(exclude_none=True)
    if "columns" in parsed:
        parsed["columns"] = {to_snake(name): col for name, col in parsed["columns"].items()}
    return parsed


@router.post("/analyze")
async def analyze_statement(
    file: UploadFile = File(...),
    account_id: str = Form(..., alias="accountId"),
    file_type: str = Form(..., alias="fileType"),
    config: str | None = Form(None),
    user: User = Depends(require_import),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Parse a statement and hold the annotated rows for review.

    Args:
        file: Uploaded statement
        account_id: Target account
        file_type: csv, excel, qif or qfx
        config: Parse configuration as a JSON string
        user: Authenticated user
        orchestrator: Import orchestrator

    Returns:
        Session view with candidates, summary and detected cards
    """
    parse_config = _parse_config(config)
    content = await file.read()

    session = orchestrator.analyze(
        user.user_id,
        account_id,
        file_type,
        content,
        parse_config,
        filename=file.filename,
    )
    return {"data": session.to_dict()}


@router.post("/preview")
async def preview_statement(
    file: UploadFile = File(...),
    file_type: str = Form(..., alias="fileType"),
    config: str | None = Form(None),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(require_import),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Parse the first rows of a statement to check the configuration."""
    content = await file.read()
    return {"data": orchestrator.preview(file_type, content, _parse_config(config), limit)}


@router.post("/confirm")
async def confirm_import(
    request: ConfirmRequest,
    user: User = Depends(require_import),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Commit a reviewed import.

    Per-row failures are reported in the result, never as a request error.
    """
    actions = {
        index: override.model_dump(exclude_none=True)
        for index, override in request.actions.items()
    }
    result = orchestrator.confirm(
        user.user_id,
        request.import_id,
        actions,
        auto_categories=request.auto_categories,
    )
    return {"data": result.to_dict()}


@router.get("/{import_id}")
async def get_import(
    import_id: str,
    user: User = Depends(require_view),
    orchestrator: ImportOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Return an import session still awaiting confirmation."""
    session = orchestrator.get_session(user.user_id, import_id)
    return {"data": session.to_dict()}
