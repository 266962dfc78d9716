"""
Stripe webhook handling.

Signed events move orders through payment states. A completed checkout also
draws down stock and queues the affected products for a catalog sync so the
Meta availability follows.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

import stripe
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from primepickz.config import Config
from primepickz.models import Order, Product
from primepickz.observability import increment_counter, record_event
from primepickz.services.catalog_sync_processor import CatalogSyncProcessor

EVENT_CHECKOUT_COMPLETED = "checkout.session.completed"
EVENT_CHECKOUT_EXPIRED = "checkout.session.expired"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_CHARGE_REFUNDED = "charge.refunded"


class PaymentWebhookService:
    def __init__(
        self,
        db_session: Session,
        config: type[Config] = Config,
        construct_event: Optional[Callable[[bytes, str, str], Any]] = None,
        sync_processor: Optional[CatalogSyncProcessor] = None,
    ) -> None:
        self.db = db_session
        self.config = config
        self.construct_event = construct_event or stripe.Webhook.construct_event
        self._sync_processor = sync_processor
        self.logger = logging.getLogger(__name__)

    @property
    def sync_processor(self) -> CatalogSyncProcessor:
        if self._sync_processor is None:
            self._sync_processor = CatalogSyncProcessor(self.db, config=self.config)
        return self._sync_processor

    def handle(self, payload: bytes, signature: Optional[str]) -> Tuple[bool, str, Optional[Dict[str, Any]]]:
        if not signature:
            return False, "Missing stripe-signature header", None

        try:
            event = self.construct_event(payload, signature, self.config.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            self.logger.warning("Invalid webhook payload")
            increment_counter("payment_webhook_rejected_total", labels={"reason": "payload"})
            return False, "Invalid payload", None
        except stripe.SignatureVerificationError:
            self.logger.warning("Webhook signature verification failed")
            increment_counter("payment_webhook_rejected_total", labels={"reason": "signature"})
            return False, "Invalid signature", None

        event_type = event["type"]
        data_object = event["data"]["object"]
        increment_counter("payment_webhook_events_total", labels={"type": event_type})

        try:
            if event_type == EVENT_CHECKOUT_COMPLETED:
                self._handle_checkout_completed(data_object)
            elif event_type == EVENT_CHECKOUT_EXPIRED:
                self._handle_checkout_expired(data_object)
            elif event_type == EVENT_PAYMENT_FAILED:
                self.logger.info("Payment failed", extra={"payment_intent": data_object.get("id")})
            elif event_type == EVENT_CHARGE_REFUNDED:
                self.logger.info("Charge refunded", extra={"charge_id": data_object.get("id")})
            else:
                self.logger.debug("Unhandled webhook event", extra={"event_type": event_type})
        except SQLAlchemyError:
            self.db.rollback()
            self.logger.exception("Failed to apply webhook event", extra={"event_type": event_type})
            raise

        return True, "Webhook processed", {"received": True}

    def _order_from_session(self, session_object: Dict[str, Any]) -> Optional[Order]:
        order_id = (session_object.get("metadata") or {}).get("orderId")
        if not order_id:
            self.logger.warning("Checkout session without orderId metadata", extra={"session_id": session_object.get("id")})
            return None
        try:
            order = self.db.get(Order, int(order_id))
        except (TypeError, ValueError):
            order = None
        if order is None:
            self.logger.warning("Webhook references unknown order", extra={"order_id": order_id})
        return order

    def _handle_checkout_completed(self, session_object: Dict[str, Any]) -> None:
        order = self._order_from_session(session_object)
        if order is None:
            return

        order.mark_paid(f"stripe:{session_object.get('id')}")
        touched = []
        for item in order.items:
            product = self.db.get(Product, item.productID)
            if product is None:
                continue
            product.decrement_stock(item.quantity)
            touched.append(product.productID)
        self.db.commit()

        for product_id in touched:
            self.sync_processor.mark_pending(product_id)

        increment_counter("orders_paid_total")
        record_event("order_paid", {"order_id": order.orderID, "products": touched})
        self.logger.info("Order payment confirmed", extra={"order_id": order.orderID})

    def _handle_checkout_expired(self, session_object: Dict[str, Any]) -> None:
        order = self._order_from_session(session_object)
        if order is None:
            return
        order.mark_expired()
        self.db.commit()
        increment_counter("orders_expired_total")
        self.logger.info("Checkout session expired", extra={"order_id": order.orderID})
