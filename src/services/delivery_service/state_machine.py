from src.common.constants import DeliveryStatus, OrderStatus
from src.common.exceptions import InvalidTransition


class DeliveryStateMachine:
    ALLOWED_TRANSITIONS = {
        DeliveryStatus.PENDING_ASSIGNMENT: [DeliveryStatus.ASSIGNED],
        DeliveryStatus.ASSIGNED: [DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED],
        DeliveryStatus.PICKED_UP: [DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED],
        DeliveryStatus.IN_TRANSIT: [DeliveryStatus.DELIVERED, DeliveryStatus.FAILED],
        DeliveryStatus.DELIVERED: [],
        DeliveryStatus.CANCELLED: [],
        DeliveryStatus.FAILED: [],
    }

    # Delivery status -> order status pushed to the order service
    ORDER_STATUS_MIRROR = {
        DeliveryStatus.PICKED_UP: OrderStatus.OUT_FOR_DELIVERY,
        DeliveryStatus.DELIVERED: OrderStatus.DELIVERED,
        DeliveryStatus.CANCELLED: OrderStatus.CANCELLED,
        DeliveryStatus.FAILED: OrderStatus.CANCELLED,
    }

    TIMESTAMP_FIELDS = {
        DeliveryStatus.ASSIGNED: "assigned_at",
        DeliveryStatus.PICKED_UP: "picked_up_at",
        DeliveryStatus.DELIVERED: "delivered_at",
        DeliveryStatus.CANCELLED: "cancelled_at",
        DeliveryStatus.FAILED: "failed_at",
    }

    # Transitions that free the courier
    RELEASING = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED, DeliveryStatus.FAILED})

    @staticmethod
    def allowed_next(current_status: str) -> list[DeliveryStatus]:
        try:
            return list(DeliveryStateMachine.ALLOWED_TRANSITIONS.get(DeliveryStatus(current_status), []))
        except ValueError:
            return []

    @staticmethod
    def can_transition(current_status: str, new_status: str) -> bool:
        try:
            new = DeliveryStatus(new_status)
        except ValueError:
            return False
        return new in DeliveryStateMachine.allowed_next(current_status)

    @staticmethod
    def is_terminal(status: str) -> bool:
        return not DeliveryStateMachine.allowed_next(status)

    @staticmethod
    def ensure_transition(current_status: str, new_status: str) -> None:
        if not DeliveryStateMachine.can_transition(current_status, new_status):
            raise InvalidTransition(
                current_status=str(current_status),
                requested_status=str(new_status),
                allowed=[s.value for s in DeliveryStateMachine.allowed_next(current_status)],
            )
