"""
Order Notification Service

Sends order and return lifecycle notifications to customers, shops and riders.

This is a placeholder implementation that logs notifications.
In production, integrate with the push / SMS providers. Notifications are
fire-and-forget: a failure is logged and never affects the order workflow.
"""
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
from enum import Enum
from uuid import uuid4

from app.models.order import Order
from app.models.return_request import ReturnRequest


logger = logging.getLogger(__name__)


class NotificationChannel(str, Enum):
    """Notification delivery channels."""
    SMS = "sms"
    PUSH = "push"


class NotificationRecipient(str, Enum):
    """Who receives a notification."""
    CUSTOMER = "customer"
    SHOP = "shop"
    RIDER = "rider"


class NotificationType(str, Enum):
    """Types of notifications."""
    # Order related
    ORDER_PLACED = "order_placed"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PREPARING = "order_preparing"
    ORDER_READY = "order_ready"
    RIDER_ASSIGNED = "rider_assigned"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"

    # Return related
    RETURN_REQUESTED = "return_requested"
    RETURN_UPDATED = "return_updated"


# Message templates
TEMPLATES = {
    NotificationType.ORDER_PLACED: "New order #{order_number} received. Amount: Rs.{amount}",
    NotificationType.ORDER_CONFIRMED: "Your order #{order_number} has been accepted by the shop.",
    NotificationType.ORDER_PREPARING: "Your order #{order_number} is being packed.",
    NotificationType.ORDER_READY: "Order #{order_number} is packed and ready for pickup.",
    NotificationType.RIDER_ASSIGNED: "Order #{order_number} has been assigned to you for delivery.",
    NotificationType.ORDER_SHIPPED: (
        "Your order #{order_number} is out for delivery. "
        "Share your delivery code with the rider on arrival."
    ),
    NotificationType.ORDER_DELIVERED: "Your order #{order_number} has been delivered. Thank you!",
    NotificationType.ORDER_CANCELLED: "Order #{order_number} has been cancelled. Reason: {reason}",
    NotificationType.RETURN_REQUESTED: "A return was requested for {product_name} on order #{order_number}.",
    NotificationType.RETURN_UPDATED: "Your return for {product_name} is now {status}.",
}

# Who hears about each order event
ORDER_EVENT_RECIPIENTS: Dict[NotificationType, List[NotificationRecipient]] = {
    NotificationType.ORDER_PLACED: [NotificationRecipient.SHOP],
    NotificationType.ORDER_CONFIRMED: [NotificationRecipient.CUSTOMER],
    NotificationType.ORDER_PREPARING: [NotificationRecipient.CUSTOMER],
    NotificationType.ORDER_READY: [NotificationRecipient.CUSTOMER, NotificationRecipient.RIDER],
    NotificationType.RIDER_ASSIGNED: [NotificationRecipient.RIDER],
    NotificationType.ORDER_SHIPPED: [NotificationRecipient.CUSTOMER],
    NotificationType.ORDER_DELIVERED: [NotificationRecipient.CUSTOMER, NotificationRecipient.SHOP],
    NotificationType.ORDER_CANCELLED: [
        NotificationRecipient.CUSTOMER,
        NotificationRecipient.SHOP,
        NotificationRecipient.RIDER,
    ],
}

STATUS_EVENTS: Dict[str, NotificationType] = {
    "CONFIRMED": NotificationType.ORDER_CONFIRMED,
    "PREPARING": NotificationType.ORDER_PREPARING,
    "READY": NotificationType.ORDER_READY,
    "SHIPPED": NotificationType.ORDER_SHIPPED,
    "DELIVERED": NotificationType.ORDER_DELIVERED,
    "CANCELLED": NotificationType.ORDER_CANCELLED,
}


class NotificationService:
    """
    Service for sending workflow notifications.

    In production, this would integrate with:
    - An SMS gateway for customers without the app
    - A push provider for the customer, shop and rider apps
    """

    def __init__(self, channel: NotificationChannel = NotificationChannel.PUSH):
        self.channel = channel
        self.sent: List[Dict[str, Any]] = []

    def _render(self, notification_type: NotificationType, template_data: Dict[str, Any]) -> str:
        template = TEMPLATES.get(notification_type, "")
        try:
            return template.format(**template_data)
        except KeyError as e:
            logger.warning(f"Missing template variable: {e}")
            return template

    async def send_notification(
        self,
        recipient: NotificationRecipient,
        recipient_id: Optional[str],
        notification_type: NotificationType,
        template_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Send one notification.

        Returns:
            Dict with send status and message ID
        """
        notification_id = str(uuid4())
        message = self._render(notification_type, template_data)

        log_entry = {
            "notification_id": notification_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "channel": self.channel.value,
            "type": notification_type.value,
            "recipient": recipient.value,
            "recipient_id": recipient_id,
            "message": message,
        }
        self.sent.append(log_entry)

        logger.info(
            f"[NOTIFICATION] {self.channel.value.upper()} to {recipient.value}:{recipient_id}: {message[:100]}"
        )

        return {
            "success": True,
            "notification_id": notification_id,
            "channel": self.channel.value,
            "message": message,
        }

    async def notify_order_event(
        self,
        order: Order,
        event: NotificationType,
        reason: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Notify every party interested in an order event.
        Never raises; failures are logged.
        """
        results = []
        try:
            template_data = {
                "order_number": order.order_number,
                "amount": order.total_amount,
                "reason": reason or "-",
            }
            recipient_ids = {
                NotificationRecipient.CUSTOMER: order.customer_id,
                NotificationRecipient.SHOP: order.shop_id,
                NotificationRecipient.RIDER: order.delivery_boy_id,
            }
            for recipient in ORDER_EVENT_RECIPIENTS.get(event, []):
                recipient_id = recipient_ids[recipient]
                if recipient_id is None:
                    continue
                results.append(await self.send_notification(
                    recipient=recipient,
                    recipient_id=str(recipient_id),
                    notification_type=event,
                    template_data=template_data,
                ))
        except Exception as e:
            logger.warning(f"Failed to send {event.value} notification for order {order.id}: {e}")
        return results

    async def notify_status_change(self, order: Order, reason: Optional[str] = None) -> List[Dict[str, Any]]:
        """Notify the event matching the order's current status, if any."""
        event = STATUS_EVENTS.get(order.status)
        if event is None:
            return []
        return await self.notify_order_event(order, event, reason=reason)

    async def notify_return_event(
        self,
        return_request: ReturnRequest,
        event: NotificationType,
        product_name: str,
        order_number: str,
    ) -> Optional[Dict[str, Any]]:
        """Notify the shop of a new return, or the customer of a return update."""
        try:
            if event == NotificationType.RETURN_REQUESTED:
                recipient = NotificationRecipient.SHOP
                recipient_id = return_request.shop_id
            else:
                recipient = NotificationRecipient.CUSTOMER
                recipient_id = return_request.customer_id
            return await self.send_notification(
                recipient=recipient,
                recipient_id=str(recipient_id),
                notification_type=event,
                template_data={
                    "product_name": product_name,
                    "order_number": order_number,
                    "status": return_request.status,
                },
            )
        except Exception as e:
            logger.warning(f"Failed to send {event.value} notification for return {return_request.id}: {e}")
            return None
