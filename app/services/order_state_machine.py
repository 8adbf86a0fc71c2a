"""Order State Machine
This module is the SINGLE SOURCE OF TRUTH for order status transitions.
All status changes must be validated here before they are written.
Transitions are keyed by actor role: the same (from, to) edge can be legal
for one role and illegal for another. Edges are strict; asking for the
status an order already has is an invalid transition, not a no-op.
"""
from typing import List, Dict, Tuple, FrozenSet
from app.core.enum_utils import get_enum_value
from app.core.errors import InvalidTransitionError
from app.models.order import OrderStatus
from app.models.user import UserRole
# =============================================================================
# STATUS GROUPS
# =============================================================================
TERMINAL_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.DELIVERED.value,
    OrderStatus.CANCELLED.value,
})
# Statuses in which a shopkeeper may attach a rider to an unassigned order
ASSIGNABLE_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
})
# Statuses a rider can pick up an order from
PICKUP_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.CONFIRMED.value,
    OrderStatus.READY.value,
})
# Non-terminal statuses that count against a rider's active load
RIDER_ACTIVE_STATUSES: FrozenSet[str] = frozenset({
    OrderStatus.CONFIRMED.value,
    OrderStatus.PREPARING.value,
    OrderStatus.READY.value,
    OrderStatus.SHIPPED.value,
})
# =============================================================================
# TRANSITION RULES
# =============================================================================
# Format: role -> current_status -> [allowed next statuses]
ORDER_TRANSITIONS: Dict[str, Dict[str, List[str]]] = {
    UserRole.SHOPKEEPER.value: {
        OrderStatus.PENDING.value: [
            OrderStatus.CONFIRMED.value,    # Accept
            OrderStatus.PREPARING.value,    # Accept and start packing
            OrderStatus.READY.value,        # Accept, already packed
            OrderStatus.CANCELLED.value,    # Reject
        ],
    },
    UserRole.DELIVERY_BOY.value: {
        OrderStatus.CONFIRMED.value: [
            OrderStatus.SHIPPED.value,      # Picked up
            OrderStatus.CANCELLED.value,    # Rider cancels
        ],
        OrderStatus.READY.value: [
            OrderStatus.SHIPPED.value,      # Picked up
        ],
        OrderStatus.SHIPPED.value: [
            OrderStatus.DELIVERED.value,    # OTP verified
            OrderStatus.CANCELLED.value,    # Rider cancels
        ],
    },
    UserRole.CUSTOMER.value: {
        OrderStatus.PENDING.value: [
            OrderStatus.CANCELLED.value,
        ],
        OrderStatus.CONFIRMED.value: [
            OrderStatus.CANCELLED.value,
        ],
    },
}
# Human-readable action names used as default history notes
TRANSITION_ACTIONS: Dict[Tuple[str, str], str] = {
    (OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value): "Order accepted by shop",
    (OrderStatus.PENDING.value, OrderStatus.PREPARING.value): "Order accepted, preparing",
    (OrderStatus.PENDING.value, OrderStatus.READY.value): "Order accepted, ready for pickup",
    (OrderStatus.PENDING.value, OrderStatus.CANCELLED.value): "Order cancelled",
    (OrderStatus.CONFIRMED.value, OrderStatus.SHIPPED.value): "Order picked up by rider",
    (OrderStatus.READY.value, OrderStatus.SHIPPED.value): "Order picked up by rider",
    (OrderStatus.CONFIRMED.value, OrderStatus.CANCELLED.value): "Order cancelled",
    (OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value): "Order delivered",
    (OrderStatus.SHIPPED.value, OrderStatus.CANCELLED.value): "Delivery cancelled by rider",
}
# =============================================================================
# HELPER FUNCTIONS
# =============================================================================
def can_transition(role, current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed for the given actor role."""
    allowed = ORDER_TRANSITIONS.get(get_enum_value(role), {}).get(current_status, [])
    return new_status in allowed
def get_allowed_transitions(role, current_status: str) -> List[str]:
    """Get statuses the given role can move an order to from current status."""
    return list(ORDER_TRANSITIONS.get(get_enum_value(role), {}).get(current_status, []))
def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")
def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in TERMINAL_STATUSES
def validate_transition(role, current_status: str, new_status: str) -> None:
    """
    Validate a status transition. Raises InvalidTransitionError if invalid.
    Unlike a plain status setter, a request for the current status is
    rejected as well.
    """
    if can_transition(role, current_status, new_status):
        return
    role_name = get_enum_value(role)
    if is_terminal(current_status):
        raise InvalidTransitionError(
            f"Order in '{current_status}' status cannot be modified. This is a terminal state.",
            current_status=current_status,
        )
    allowed = get_allowed_transitions(role_name, current_status)
    if not allowed:
        raise InvalidTransitionError(
            f"{role_name} cannot change an order in '{current_status}' status",
            current_status=current_status,
        )
    raise InvalidTransitionError(
        f"Cannot change order from '{current_status}' to '{new_status}'. "
        f"Allowed transitions: {', '.join(allowed)}",
        current_status=current_status,
    )
