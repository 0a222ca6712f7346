"""
Fabric cost arithmetic.

Everything here is pure: callers pass in the fabric snapshot and the print
surcharge, nothing is read from the database or from settings.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Union

from .models import normalize_fabric_name
from .requirements import FabricRequirement, ParsedRequirement, parse_requirement

RequirementInput = Union[ParsedRequirement, FabricRequirement, None]


@dataclass(frozen=True)
class FabricCostLine:
    fabric_name: str
    meters: float
    cost_per_meter: float
    print_cost: float
    total_cost: float

    def to_dict(self):
        return {
            "fabric_name": self.fabric_name,
            "meters": self.meters,
            "cost_per_meter": self.cost_per_meter,
            "print_cost": self.print_cost,
            "total_cost": self.total_cost,
        }


@dataclass(frozen=True)
class FabricCost:
    total_cost: float = 0.0
    breakdown: List[FabricCostLine] = field(default_factory=list)


def _unwrap(requirement: RequirementInput) -> Optional[FabricRequirement]:
    if isinstance(requirement, ParsedRequirement):
        return requirement.requirement
    return requirement


def _cost_lookup(fabrics) -> Dict[str, float]:
    # First fabric wins when two share a name.
    lookup = {}
    for fabric in fabrics:
        lookup.setdefault(normalize_fabric_name(fabric.name), fabric.cost_per_meter or 0.0)
    return lookup


def calculate_fabric_cost(requirement: RequirementInput, fabrics: Iterable,
                          print_cost_per_meter: float) -> FabricCost:
    """
    Per-unit fabric cost of a product.

    `fabrics` is any iterable of objects with `name` and `cost_per_meter`.
    Fabrics missing from the snapshot cost 0 per meter; the print surcharge
    still applies to them when the product is printed.
    """
    requirement = _unwrap(requirement)
    if requirement is None:
        return FabricCost()

    costs = _cost_lookup(fabrics)
    print_cost = print_cost_per_meter if requirement.is_printed else 0.0

    breakdown = []
    total_cost = 0.0
    for fabric_name, meters in requirement.fabrics.items():
        cost_per_meter = costs.get(normalize_fabric_name(fabric_name), 0.0)
        line_total = meters * (cost_per_meter + print_cost)
        breakdown.append(FabricCostLine(
            fabric_name=fabric_name,
            meters=meters,
            cost_per_meter=cost_per_meter,
            print_cost=print_cost,
            total_cost=line_total,
        ))
        total_cost += line_total

    return FabricCost(total_cost=total_cost, breakdown=breakdown)


def summarize_order(line_items, fabrics, print_cost_per_meter: float):
    """
    Fabric cost and usage of an order for the orders view.

    `line_items` are dicts with `title`, `quantity` and the raw `metafield`
    value of the product. Returns the per-item rows, the order total and the
    meters of each fabric consumed.
    """
    fabrics = list(fabrics)
    items = []
    fabric_usage: Dict[str, float] = {}
    total_fabric_cost = 0.0

    for item in line_items:
        quantity = item.get("quantity") or 1
        parsed = parse_requirement(item.get("metafield"))
        unit_cost = calculate_fabric_cost(parsed, fabrics, print_cost_per_meter).total_cost
        item_cost = unit_cost * quantity
        total_fabric_cost += item_cost

        if parsed.is_present:
            for fabric_name, meters in parsed.requirement.fabrics.items():
                key = normalize_fabric_name(fabric_name)
                fabric_usage[key] = fabric_usage.get(key, 0.0) + meters * quantity

        items.append({
            "title": item.get("title"),
            "quantity": quantity,
            "fabric_requirements": parsed.requirement.model_dump() if parsed.is_present else None,
            "fabric_cost_per_unit": unit_cost,
            "total_fabric_cost": item_cost,
        })

    return {
        "items": items,
        "total_fabric_cost": total_fabric_cost,
        "fabric_usage": fabric_usage,
    }
