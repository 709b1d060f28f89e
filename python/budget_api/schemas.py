"""
Shared API Schema Helpers
"""

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ledger.errors import ValidationError


class CamelModel(BaseModel):
    """Request model accepting camelCase (and snake_case) keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def validation_details(error: PydanticValidationError, prefix: str = "") -> list[dict]:
    """Flatten pydantic errors into field/message details."""
    details = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"])
        details.append({"field": f"{prefix}{loc}" if prefix else loc, "message": item["msg"]})
    return details


def to_validation_error(error: PydanticValidationError, message: str, prefix: str = "") -> ValidationError:
    return ValidationError(message, details=validation_details(error, prefix))
