# Services module
from app.services.order_service import OrderService
from app.services.rider_assignment_service import RiderAssignmentService
from app.services.returns_service import ReturnsService
from app.services.stock_service import StockService
from app.services.delivery_otp_service import DeliveryOtpService
from app.services.ownership_service import OwnershipService, ActorContext
from app.services.notification_service import NotificationService

__all__ = [
    "OrderService",
    "RiderAssignmentService",
    "ReturnsService",
    "StockService",
    "DeliveryOtpService",
    "OwnershipService",
    "ActorContext",
    "NotificationService",
]
