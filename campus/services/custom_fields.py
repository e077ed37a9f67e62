"""Per-tenant custom field schemas.

Tenants extend entities with their own attributes through
``config["custom_fields"][<entity_type>]``, a mapping of field name to
definition. Values are validated against that schema with a pydantic model
built per schema; unknown keys are rejected.
"""

import logging
import re
from datetime import date
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model, model_validator

from campus.core.exceptions import CustomFieldValidationError, TenantValidationError

logger = logging.getLogger(__name__)

CUSTOM_FIELDS_KEY = "custom_fields"

FIELD_NAME_PATTERN = r"^[a-z][a-z0-9_]{0,62}$"

_PYTHON_TYPES = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "date": date,
}


class CustomFieldDefinition(BaseModel):
    """Definition of one tenant custom field."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["string", "integer", "number", "boolean", "date", "choice"]
    required: bool = False
    max_length: Optional[int] = Field(None, ge=1, le=10000)
    choices: Optional[List[str]] = None
    label: Optional[str] = None

    @model_validator(mode="after")
    def check_type_options(self) -> "CustomFieldDefinition":
        if self.type == "choice" and not self.choices:
            raise ValueError("choice fields require a non-empty 'choices' list")
        if self.type != "choice" and self.choices is not None:
            raise ValueError("'choices' is only valid for choice fields")
        if self.type != "string" and self.max_length is not None:
            raise ValueError("'max_length' is only valid for string fields")
        return self


def parse_schema(raw: Mapping[str, Any]) -> Dict[str, Dict[str, CustomFieldDefinition]]:
    """
    Parse and validate a full custom field schema.

    Args:
        raw: Mapping of entity type to mapping of field name to definition

    Returns:
        Parsed schema

    Raises:
        TenantValidationError: If any definition is invalid
    """
    if not isinstance(raw, Mapping):
        raise TenantValidationError(
            "custom_fields must be an object keyed by entity type",
            [{"field": CUSTOM_FIELDS_KEY, "code": "INVALID_CUSTOM_FIELD_SCHEMA"}],
        )

    errors = []
    parsed: Dict[str, Dict[str, CustomFieldDefinition]] = {}
    for entity_type, fields in raw.items():
        if not isinstance(fields, Mapping):
            errors.append({
                "field": f"{CUSTOM_FIELDS_KEY}.{entity_type}",
                "code": "INVALID_CUSTOM_FIELD_SCHEMA",
                "message": "Field definitions must be an object",
            })
            continue
        parsed[entity_type] = {}
        for name, definition in fields.items():
            pointer = f"{CUSTOM_FIELDS_KEY}.{entity_type}.{name}"
            if not isinstance(name, str) or not _valid_field_name(name):
                errors.append({
                    "field": pointer,
                    "code": "INVALID_CUSTOM_FIELD_NAME",
                    "message": "Field names must be lowercase identifiers",
                })
                continue
            try:
                parsed[entity_type][name] = CustomFieldDefinition.model_validate(definition)
            except ValidationError as e:
                errors.append({
                    "field": pointer,
                    "code": "INVALID_CUSTOM_FIELD_DEFINITION",
                    "message": str(e.errors()[0]["msg"]),
                })

    if errors:
        raise TenantValidationError("Invalid custom field schema", errors)
    return parsed


def _valid_field_name(name: str) -> bool:
    # Names may not shadow pydantic model attributes of the generated model
    if name.startswith("model_") or hasattr(BaseModel, name):
        return False
    return re.match(FIELD_NAME_PATTERN, name) is not None


def _field_spec(definition: CustomFieldDefinition) -> Tuple[Any, Any]:
    if definition.type == "choice":
        annotation: Any = Literal[tuple(definition.choices)]
    else:
        annotation = _PYTHON_TYPES[definition.type]

    if definition.type == "string" and definition.max_length:
        field_info = Field(... if definition.required else None, max_length=definition.max_length)
    else:
        field_info = Field(... if definition.required else None)

    if not definition.required:
        annotation = Optional[annotation]
    return annotation, field_info


def build_model(entity_type: str, fields: Dict[str, CustomFieldDefinition]):
    """Build a pydantic model validating one entity type's custom fields."""
    return create_model(
        f"{entity_type.title()}CustomFields",
        __config__=ConfigDict(extra="forbid"),
        **{name: _field_spec(definition) for name, definition in fields.items()},
    )


def validate_custom_fields(
    entity_type: str,
    values: Optional[Mapping[str, Any]],
    tenant_config: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Validate an entity's custom field values against the tenant schema.

    Args:
        entity_type: Entity type key, e.g. ``student``
        values: Submitted custom field values
        tenant_config: Configuration snapshot of the current tenant

    Returns:
        JSON-serialisable validated values, omitting unset optional fields

    Raises:
        CustomFieldValidationError: If values do not match the schema
    """
    values = dict(values or {})
    schema = parse_schema(tenant_config.get(CUSTOM_FIELDS_KEY) or {})
    fields = schema.get(entity_type, {})

    if not fields and not values:
        return {}

    model = build_model(entity_type, fields)
    try:
        validated = model.model_validate(values)
    except ValidationError as e:
        errors = [
            {
                "field": ".".join(str(part) for part in error["loc"]),
                "code": error["type"],
                "message": error["msg"],
            }
            for error in e.errors()
        ]
        logger.info(f"Rejected custom fields for {entity_type}: {errors}")
        raise CustomFieldValidationError(entity_type, errors)

    return validated.model_dump(mode="json", exclude_none=True)
