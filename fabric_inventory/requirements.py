"""
Parsing of the `custom.fabric_requirements` product metafield.

The metafield holds JSON such as::

    {"fabrics": {"cotton": 2.5, "lining": 0.5}, "is_printed": true}

Anything that cannot be read is treated as "no fabric cost" rather than an
error, so a bad metafield never blocks product listings or order processing.
"""
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

# Meters per unit must be finite and positive.
Meters = Annotated[float, Field(gt=0, allow_inf_nan=False)]


class FabricRequirement(BaseModel):
    """Meters of each fabric used per unit of product, plus the print flag."""
    fabrics: Dict[str, Meters]
    is_printed: bool = False


class RequirementStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ParsedRequirement:
    status: RequirementStatus
    requirement: Optional[FabricRequirement] = None

    @property
    def is_present(self) -> bool:
        return self.status is RequirementStatus.PRESENT


ABSENT = ParsedRequirement(RequirementStatus.ABSENT)
MALFORMED = ParsedRequirement(RequirementStatus.MALFORMED)


def parse_requirement(raw: Optional[str]) -> ParsedRequirement:
    """Decode a raw metafield value. Never raises."""
    if raw is None or not str(raw).strip():
        return ABSENT

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("Unparseable fabric requirements %r: %s", raw, e)
        return MALFORMED

    if not isinstance(data, dict):
        logger.warning("Fabric requirements must be a JSON object, got %r", raw)
        return MALFORMED

    try:
        requirement = FabricRequirement.model_validate(data)
    except ValidationError as e:
        logger.warning("Invalid fabric requirements %r: %s", raw, e)
        return MALFORMED

    return ParsedRequirement(RequirementStatus.PRESENT, requirement)
