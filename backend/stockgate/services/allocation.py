"""
Allocation Algorithm

Turns a customer request (kg and/or whole boxes) into concrete deductions
from loose-kg and boxed stock. Pure: no database access, no side effects.

RULES (in order):
1. A request must ask for some kg or some boxes.
2. Total needed kg (kg + boxes * ratio) must not exceed total available kg
   (loose_kg + boxes * ratio). No partial fulfilment.
3. Direct box requests come out of box stock one-for-one, never from loose kg.
4. Kg comes from loose stock first. Any remainder is covered by converting
   ceil(remaining / ratio) boxes; the full converted weight joins the loose
   pool and only the remainder leaves it, so rounding surplus stays as
   loose kg.

MASS CONSERVATION:
    (loose_kg + boxes * ratio) before
  - (requested_kg + requested_boxes * ratio)
  == (new_loose_kg + new_boxes * ratio) after
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING

from stockgate.errors import InsufficientStockError, ValidationError
from stockgate.validation import quantize_kg

ZERO = Decimal("0")


def _fmt(value: Decimal) -> str:
    return f"{Decimal(value).normalize():f}"


@dataclass(frozen=True)
class AllocationPlan:
    requested_kg: Decimal
    requested_boxes: int
    ratio: Decimal
    loose_kg_before: Decimal
    boxes_before: int
    loose_kg_used: Decimal
    boxes_direct: int
    boxes_converted: int
    kg_from_conversion: Decimal
    excess_kg_returned: Decimal
    new_loose_kg: Decimal
    new_boxes: int
    steps: tuple[str, ...]

    @property
    def loose_kg_consumed(self) -> Decimal:
        """Kg handed to the customer, whether it came from loose stock or converted boxes."""
        return self.requested_kg

    @property
    def boxes_consumed(self) -> int:
        return self.boxes_direct + self.boxes_converted

    @property
    def box_delta(self) -> int:
        return self.new_boxes - self.boxes_before

    @property
    def kg_delta(self) -> Decimal:
        return self.new_loose_kg - self.loose_kg_before

    def to_dict(self) -> dict:
        return {
            "requested_kg": str(self.requested_kg),
            "requested_boxes": self.requested_boxes,
            "loose_kg_used": str(self.loose_kg_used),
            "boxes_direct": self.boxes_direct,
            "boxes_converted": self.boxes_converted,
            "kg_from_conversion": str(self.kg_from_conversion),
            "excess_kg_returned": str(self.excess_kg_returned),
            "loose_kg_consumed": str(self.loose_kg_consumed),
            "boxes_consumed": self.boxes_consumed,
            "new_loose_kg": str(self.new_loose_kg),
            "new_boxes": self.new_boxes,
            "steps": list(self.steps),
        }


def allocate(
    requested_kg=ZERO,
    requested_boxes: int = 0,
    *,
    loose_kg,
    boxes: int,
    box_to_kg_ratio,
) -> AllocationPlan:
    """
    Compute the deduction plan for a request against the given stock.

    Args:
        requested_kg: Loose weight the customer wants (Decimal-compatible)
        requested_boxes: Whole boxes the customer wants
        loose_kg / boxes / box_to_kg_ratio: Current stock of the product

    Returns:
        AllocationPlan with the resulting quantities and a receipt trace

    Raises:
        ValidationError: Nothing requested, negative inputs, or a ratio <= 0
        InsufficientStockError: Stock can't cover the request (carries the shortage)
    """
    kg = quantize_kg(Decimal(requested_kg or 0))
    box_count = int(requested_boxes or 0)
    loose = quantize_kg(Decimal(loose_kg))
    ratio = quantize_kg(Decimal(box_to_kg_ratio))

    if kg < 0 or box_count < 0:
        raise ValidationError("Requested quantities cannot be negative")
    if kg <= 0 and box_count <= 0:
        raise ValidationError("Request must include kg or boxes greater than zero")
    if ratio <= 0:
        raise ValidationError("box_to_kg_ratio must be greater than zero")
    if loose < 0 or boxes < 0:
        raise ValidationError("Stock quantities cannot be negative")

    needed_kg = kg + box_count * ratio
    available_kg = loose + boxes * ratio
    if needed_kg > available_kg:
        raise InsufficientStockError(
            f"Insufficient stock. Needed: {_fmt(needed_kg)}kg, Available: {_fmt(available_kg)}kg",
            shortage_kg=needed_kg - available_kg,
            details={"needed_kg": str(needed_kg), "available_kg": str(available_kg)},
        )

    steps: list[str] = []
    remaining_boxes = boxes

    if box_count > 0:
        if box_count > remaining_boxes:
            raise InsufficientStockError(
                f"Not enough box stock. Requested: {box_count}, Available: {remaining_boxes}",
                shortage_boxes=box_count - remaining_boxes,
            )
        remaining_boxes -= box_count
        steps.append(f"Deducted {box_count} box(es) from box stock")

    loose_used = ZERO
    converted = 0
    converted_kg = ZERO
    excess = ZERO

    if kg > 0:
        if loose >= kg:
            loose_used = kg
            loose -= kg
            steps.append(f"Deducted {_fmt(kg)}kg from loose stock")
        else:
            loose_used = loose
            still_needed = kg - loose
            if loose_used > 0:
                steps.append(f"Used all {_fmt(loose_used)}kg of loose stock")

            converted = int((still_needed / ratio).to_integral_value(rounding=ROUND_CEILING))
            if converted > remaining_boxes:
                raise InsufficientStockError(
                    f"Not enough boxes to convert. Needed: {converted}, Available: {remaining_boxes}",
                    shortage_kg=still_needed - remaining_boxes * ratio,
                    shortage_boxes=converted - remaining_boxes,
                )
            converted_kg = converted * ratio
            remaining_boxes -= converted
            steps.append(f"Converted {converted} box(es) to {_fmt(converted_kg)}kg loose stock")

            loose = converted_kg - still_needed
            steps.append(f"Deducted {_fmt(still_needed)}kg from converted stock")
            excess = loose
            if excess > 0:
                steps.append(f"Returned {_fmt(excess)}kg excess to loose stock")

    return AllocationPlan(
        requested_kg=kg,
        requested_boxes=box_count,
        ratio=ratio,
        loose_kg_before=quantize_kg(Decimal(loose_kg)),
        boxes_before=boxes,
        loose_kg_used=loose_used,
        boxes_direct=box_count,
        boxes_converted=converted,
        kg_from_conversion=converted_kg,
        excess_kg_returned=excess,
        new_loose_kg=quantize_kg(loose),
        new_boxes=remaining_boxes,
        steps=tuple(steps),
    )
