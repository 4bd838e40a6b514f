"""
Stripe webhook handler
"""
from datetime import datetime, timezone

import stripe
from flask import Blueprint, current_app, jsonify, request

from studyflow import db, limiter
from studyflow.models import SubscriptionEvent, SubscriptionStatus, SubscriptionTier, User

webhook_bp = Blueprint('webhook', __name__)

STATUS_MAP = {
    'trialing': SubscriptionStatus.TRIAL,
    'active': SubscriptionStatus.ACTIVE,
    'past_due': SubscriptionStatus.PAST_DUE,
    'canceled': SubscriptionStatus.CANCELED,
    'unpaid': SubscriptionStatus.EXPIRED,
    'incomplete_expired': SubscriptionStatus.EXPIRED,
}


@webhook_bp.route('/stripe-webhook', methods=['POST'])
@limiter.exempt
def stripe_webhook():
    """Handle Stripe webhook events"""
    payload = request.data
    sig_header = request.headers.get('Stripe-Signature')
    webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not webhook_secret:
        return jsonify({'ok': False, 'error': 'Webhook secret not configured'}), 500

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError:
        return jsonify({'ok': False, 'error': 'Invalid payload'}), 400
    except stripe.SignatureVerificationError:
        return jsonify({'ok': False, 'error': 'Invalid signature'}), 400

    event_type = event['type']
    data = event['data']['object']

    handlers = {
        'customer.subscription.created': handle_subscription_created,
        'customer.subscription.updated': handle_subscription_updated,
        'customer.subscription.deleted': handle_subscription_deleted,
        'invoice.payment_succeeded': handle_payment_succeeded,
        'invoice.payment_failed': handle_payment_failed,
    }

    try:
        handler = handlers.get(event_type)
        if handler:
            handler(data)
        else:
            current_app.logger.info("Ignoring Stripe event %s", event_type)
        log_subscription_event(event)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Webhook error for %s", event_type)
        return jsonify({'ok': False, 'error': str(e)}), 500

    return jsonify({'ok': True, 'status': 'success'}), 200


def _period_end(subscription):
    end = subscription.get('current_period_end')
    if not end:
        # newer API versions carry the period on the subscription item
        items = (subscription.get('items') or {}).get('data') or []
        end = items[0].get('current_period_end') if items else None
    return datetime.fromtimestamp(end, tz=timezone.utc) if end else None


def get_tier_from_subscription(subscription):
    """Map Stripe subscription to tier"""
    items = (subscription.get('items') or {}).get('data') or []
    if not items:
        return SubscriptionTier.FREE
    price_id = (items[0].get('price') or {}).get('id', '')
    if price_id == current_app.config.get('STRIPE_PRICE_ID'):
        return SubscriptionTier.PREMIUM
    return SubscriptionTier.FREE


def handle_subscription_created(subscription):
    """Handle subscription created"""
    user = User.query.filter_by(stripe_customer_id=subscription['customer']).first()
    if not user:
        current_app.logger.warning("Subscription %s for unknown customer %s", subscription['id'], subscription['customer'])
        return

    user.stripe_subscription_id = subscription['id']
    user.subscription_status = STATUS_MAP.get(subscription.get('status'), SubscriptionStatus.ACTIVE)
    user.subscription_tier = get_tier_from_subscription(subscription)
    end = _period_end(subscription)
    if end:
        user.subscription_end_date = end
    db.session.commit()


def handle_subscription_updated(subscription):
    """Handle subscription updated"""
    user = User.query.filter_by(stripe_subscription_id=subscription['id']).first()
    if not user:
        return

    stripe_status = subscription.get('status')
    if stripe_status in STATUS_MAP:
        user.subscription_status = STATUS_MAP[stripe_status]
    user.subscription_tier = get_tier_from_subscription(subscription)
    end = _period_end(subscription)
    if end:
        user.subscription_end_date = end
    db.session.commit()


def handle_subscription_deleted(subscription):
    """Handle subscription deleted"""
    user = User.query.filter_by(stripe_subscription_id=subscription['id']).first()
    if user:
        user.subscription_status = SubscriptionStatus.CANCELED
        user.subscription_tier = SubscriptionTier.FREE
        db.session.commit()


def handle_payment_succeeded(invoice):
    """Handle successful payment"""
    user = User.query.filter_by(stripe_customer_id=invoice['customer']).first()
    if user and user.subscription_status == SubscriptionStatus.PAST_DUE:
        user.subscription_status = SubscriptionStatus.ACTIVE
        db.session.commit()


def handle_payment_failed(invoice):
    """Handle failed payment"""
    user = User.query.filter_by(stripe_customer_id=invoice['customer']).first()
    if user:
        user.subscription_status = SubscriptionStatus.PAST_DUE
        db.session.commit()


def log_subscription_event(event):
    """Log subscription event to database"""
    event_data = event['data']['object']
    user = User.query.filter_by(stripe_customer_id=event_data.get('customer')).first()
    if not user:
        return
    if SubscriptionEvent.query.filter_by(stripe_event_id=event['id']).first():
        return  # Stripe retries deliveries

    db.session.add(SubscriptionEvent(
        user_id=user.id,
        stripe_event_id=event['id'],
        stripe_subscription_id=event_data.get('id'),
        event_type=event['type'],
        event_data=dict(event_data),
    ))
    db.session.commit()
