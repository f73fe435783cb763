from typing import Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_command(model: Type[BaseModel], payload) -> BaseModel:
    """Validate a raw JSON body into ``model`` or raise ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid request: {_describe(exc)}")
