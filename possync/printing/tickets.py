# possync/printing/tickets.py
# Plain-text receipt and kitchen ticket bodies for a captured order.

from typing import Dict, List

from possync.schemas import CatalogEntry, Order

RECEIPT_HEADER = "=== Food Truck ==="
KITCHEN_HEADER = "=== KITCHEN ==="

RECEIPT_PRIORITY = 1
KITCHEN_PRIORITY = 2


def order_lines(order: Order, dishes: Dict[str, CatalogEntry], currency: str = "₹") -> List[str]:
    lines = []
    for item in order.items:
        dish = dishes.get(item.dish_id)
        name = dish.name if dish else item.dish_id
        price = dish.price if dish else 0
        lines.append(f"{name} x{item.qty} - {currency}{price * item.qty:g}")
    return lines


def receipt_text(lines: List[str]) -> str:
    return "\n".join([RECEIPT_HEADER, "Dishes:", *lines])


def kitchen_text(lines: List[str]) -> str:
    return "\n".join([KITCHEN_HEADER, *lines])
