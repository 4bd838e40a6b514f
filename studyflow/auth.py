"""
Authentication and subscription routes (JSON)
"""
import secrets
from datetime import datetime, timezone
from functools import wraps

import stripe
from flask import Blueprint, current_app, jsonify, request, url_for
from flask_login import current_user, login_required, login_user, logout_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from studyflow import db, limiter, login_manager
from studyflow.models import AuditLog, SubscriptionStatus, SubscriptionTier, User

auth_bp = Blueprint('auth', __name__)

RESET_SALT = "studyflow-password-reset"
LOGIN_LINK_SALT = "studyflow-login-link"
MIN_PASSWORD_LENGTH = 8


@login_manager.user_loader
def load_user(user_id):
    """Load user by ID"""
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"ok": False, "error": "Authentication required"}), 401


def stripe_ready():
    key = (current_app.config.get("STRIPE_SECRET_KEY") or "").strip()
    if not key:
        return False
    stripe.api_key = key
    return True


def _serializer(salt):
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=salt)


def _payload():
    return request.get_json(silent=True) or request.form.to_dict() or {}


def usage_limit_check(f):
    """Decorator enforcing the free-tier monthly transformation limit.

    Anonymous callers pass through when guest mode is on; they are covered by
    the per-IP rate limit on the route instead.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if current_user.is_authenticated:
            limit = int(current_app.config.get("FREE_MONTHLY_TRANSFORMS") or 0)
            if not current_user.can_transform(limit):
                return jsonify({
                    "ok": False,
                    "error": "Monthly transformation limit reached. Please upgrade your plan.",
                }), 402
        elif not current_app.config.get("GUEST_MODE_ENABLED", True):
            return unauthorized()
        return f(*args, **kwargs)
    return decorated_function


def record_transform_use():
    if current_user.is_authenticated:
        current_user.increment_transform_count()
        db.session.commit()


def log_audit_event(event_type, description, user=None):
    """Log audit event"""
    user = user or (current_user if current_user.is_authenticated else None)
    if user is None:
        return
    db.session.add(AuditLog(
        user_id=user.id,
        event_type=event_type,
        event_description=description,
        ip_address=request.remote_addr,
    ))
    db.session.commit()


def _create_stripe_customer(user):
    if not stripe_ready():
        return
    try:
        customer = stripe.Customer.create(
            email=user.email,
            name=f"{user.first_name or ''} {user.last_name or ''}".strip() or user.email,
        )
        user.stripe_customer_id = customer.id
    except stripe.StripeError as e:
        # the customer is created again at checkout time
        current_app.logger.warning("Stripe customer creation failed for %s: %s", user.email, e)


@auth_bp.route('/register', methods=['POST'])
@limiter.limit("10 per hour")
def register():
    """User registration"""
    data = _payload()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    first_name = (data.get('first_name') or '').strip()
    last_name = (data.get('last_name') or '').strip()

    if not email or not password:
        return jsonify({"ok": False, "error": "Email and password are required."}), 400
    if "@" not in email:
        return jsonify({"ok": False, "error": "Invalid email address."}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"ok": False, "error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}), 400
    if User.query.filter_by(email=email).first():
        return jsonify({"ok": False, "error": "Email already registered."}), 409

    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        subscription_status=SubscriptionStatus.TRIAL,
        subscription_tier=SubscriptionTier.FREE,
    )
    user.set_password(password)
    _create_stripe_customer(user)

    try:
        db.session.add(user)
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Registration failed")
        return jsonify({"ok": False, "error": "Registration failed"}), 500

    log_audit_event('user_registered', f'User {email} registered', user=user)
    login_user(user)
    return jsonify({"ok": True, "user": user.to_dict()}), 201


@auth_bp.route('/login', methods=['POST'])
@limiter.limit("20 per hour")
def login():
    """User login"""
    data = _payload()
    email = (data.get('email') or '').strip().lower()
    password = data.get('password') or ''
    remember = str(data.get('remember') or '').lower() in ('1', 'true', 'yes', 'on')

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return jsonify({"ok": False, "error": "Invalid email or password."}), 401
    if not user.is_active:
        return jsonify({"ok": False, "error": "Account is disabled. Please contact support."}), 403

    login_user(user, remember=remember)
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    log_audit_event('user_login', f'User {email} logged in', user=user)
    return jsonify({"ok": True, "user": user.to_dict()}), 200


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    """User logout"""
    log_audit_event('user_logout', f'User {current_user.email} logged out')
    logout_user()
    return jsonify({"ok": True}), 200


@auth_bp.route('/account', methods=['GET'])
@login_required
def account():
    return jsonify({"ok": True, "user": current_user.to_dict()}), 200


@auth_bp.route('/account/update', methods=['POST'])
@login_required
def update_account():
    """Update account details"""
    data = _payload()
    try:
        if 'first_name' in data:
            current_user.first_name = (data.get('first_name') or '').strip()
        if 'last_name' in data:
            current_user.last_name = (data.get('last_name') or '').strip()
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Account update failed")
        return jsonify({"ok": False, "error": "Update failed"}), 500

    log_audit_event('account_updated', 'User updated account details')
    return jsonify({"ok": True, "user": current_user.to_dict()}), 200


@auth_bp.route('/password/reset', methods=['POST'])
@limiter.limit("5 per hour")
def password_reset_request():
    """Issue a password reset token.

    The response is the same whether or not the email exists. The token is
    only echoed back in testing/debug; otherwise it is logged for delivery.
    """
    email = (_payload().get('email') or '').strip().lower()
    if not email:
        return jsonify({"ok": False, "error": "Email is required."}), 400

    response = {"ok": True, "message": "If that account exists, a reset link has been sent."}
    user = User.query.filter_by(email=email).first()
    if user:
        # binding the hash tail makes the token single-use
        token = _serializer(RESET_SALT).dumps({"uid": user.id, "ph": user.password_hash[-12:]})
        log_audit_event('password_reset_requested', 'Password reset requested', user=user)
        if current_app.testing or current_app.debug:
            response["reset_token"] = token
        else:
            current_app.logger.info("Password reset token issued for user %s", user.id)
    return jsonify(response), 200


@auth_bp.route('/password/reset/confirm', methods=['POST'])
def password_reset_confirm():
    data = _payload()
    token = (data.get('token') or '').strip()
    password = data.get('password') or ''
    if not token or not password:
        return jsonify({"ok": False, "error": "Token and password are required."}), 400
    if len(password) < MIN_PASSWORD_LENGTH:
        return jsonify({"ok": False, "error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}), 400

    try:
        claims = _serializer(RESET_SALT).loads(token, max_age=current_app.config["PASSWORD_RESET_MAX_AGE"])
    except SignatureExpired:
        return jsonify({"ok": False, "error": "Reset link has expired."}), 400
    except BadSignature:
        return jsonify({"ok": False, "error": "Invalid reset link."}), 400

    user = db.session.get(User, claims.get("uid"))
    if not user or user.password_hash[-12:] != claims.get("ph"):
        return jsonify({"ok": False, "error": "Invalid reset link."}), 400

    user.set_password(password)
    db.session.commit()
    log_audit_event('password_reset', 'Password was reset', user=user)
    return jsonify({"ok": True}), 200


@auth_bp.route('/subscribe', methods=['POST'])
@login_required
def subscribe():
    """Create Stripe checkout session"""
    if not stripe_ready():
        return jsonify({"ok": False, "error": "Payments are not configured"}), 500
    try:
        if not current_user.stripe_customer_id:
            customer = stripe.Customer.create(email=current_user.email)
            current_user.stripe_customer_id = customer.id
            db.session.commit()

        checkout_session = stripe.checkout.Session.create(
            customer=current_user.stripe_customer_id,
            mode='subscription',
            line_items=[{'price': current_app.config["STRIPE_PRICE_ID"], 'quantity': 1}],
            success_url=url_for('auth.check_subscription', _external=True) + "?session_id={CHECKOUT_SESSION_ID}",
            cancel_url=url_for('auth.account', _external=True),
            metadata={'user_id': current_user.id, 'tier': SubscriptionTier.PREMIUM.value},
        )
    except stripe.StripeError as e:
        current_app.logger.warning("Checkout session failed: %s", e)
        return jsonify({"ok": False, "error": str(e)}), 500

    log_audit_event('checkout_started', 'User started checkout')
    return jsonify({"ok": True, "checkout_url": checkout_session.url}), 200


@auth_bp.route('/check-subscription', methods=['GET'])
@login_required
def check_subscription():
    end = current_user.subscription_end_date
    return jsonify({
        "ok": True,
        "subscribed": current_user.is_subscribed,
        "tier": current_user.subscription_tier.value if current_user.subscription_tier else None,
        "status": current_user.subscription_status.value if current_user.subscription_status else None,
        "subscription_end": end.isoformat() if end else None,
    }), 200


@auth_bp.route('/account/cancel-subscription', methods=['POST'])
@login_required
def cancel_subscription():
    """Cancel subscription"""
    if not current_user.stripe_subscription_id:
        return jsonify({"ok": False, "error": "No active subscription"}), 400
    if not stripe_ready():
        return jsonify({"ok": False, "error": "Payments are not configured"}), 500
    try:
        stripe.Subscription.delete(current_user.stripe_subscription_id)
    except stripe.StripeError as e:
        current_app.logger.warning("Cancellation failed: %s", e)
        return jsonify({"ok": False, "error": f"Cancellation failed: {e}"}), 500

    current_user.subscription_status = SubscriptionStatus.CANCELED
    db.session.commit()
    log_audit_event('subscription_canceled', 'User canceled subscription')
    return jsonify({"ok": True, "message": "Subscription canceled."}), 200


def make_login_token(user):
    stamp = user.last_login_at.isoformat() if user.last_login_at else ""
    return _serializer(LOGIN_LINK_SALT).dumps({"uid": user.id, "ll": stamp})


@auth_bp.route('/create-user-from-checkout', methods=['POST'])
@limiter.limit("10 per hour")
def create_user_from_checkout():
    """Create (or find) the account behind a completed Stripe checkout.

    The email comes from the checkout session itself, never from the
    request body. Returns a one-time login link.
    """
    session_id = (_payload().get('session_id') or '').strip()
    if not session_id:
        return jsonify({"ok": False, "error": "session_id is required"}), 400
    if not stripe_ready():
        return jsonify({"ok": False, "error": "Payments are not configured"}), 500

    try:
        checkout = stripe.checkout.Session.retrieve(session_id)
    except stripe.StripeError as e:
        return jsonify({"ok": False, "error": f"Could not verify checkout: {e}"}), 400

    if checkout.get("status") != "complete":
        return jsonify({"ok": False, "error": "Checkout is not complete"}), 400
    details = checkout.get("customer_details") or {}
    email = (details.get("email") or checkout.get("customer_email") or "").strip().lower()
    if not email:
        return jsonify({"ok": False, "error": "Checkout has no customer email"}), 400

    user = User.query.filter_by(email=email).first()
    created = user is None
    if created:
        user = User(
            email=email,
            subscription_status=SubscriptionStatus.TRIAL,
            subscription_tier=SubscriptionTier.FREE,
        )
        user.set_password(secrets.token_urlsafe(24))
        db.session.add(user)
    if checkout.get("customer") and not user.stripe_customer_id:
        user.stripe_customer_id = checkout.get("customer")
    db.session.commit()
    log_audit_event('user_created_from_checkout' if created else 'login_link_issued',
                    f'Login link issued for {email}', user=user)

    token = make_login_token(user)
    return jsonify({
        "ok": True,
        "message": "User created successfully" if created else "Login link generated for existing user",
        "user_id": user.id,
        "link": url_for('auth.login_link', token=token, _external=True),
    }), 201 if created else 200


@auth_bp.route('/login/link/<token>', methods=['GET'])
def login_link(token):
    try:
        claims = _serializer(LOGIN_LINK_SALT).loads(token, max_age=current_app.config["LOGIN_LINK_MAX_AGE"])
    except SignatureExpired:
        return jsonify({"ok": False, "error": "Login link has expired."}), 400
    except BadSignature:
        return jsonify({"ok": False, "error": "Invalid login link."}), 400

    user = db.session.get(User, claims.get("uid"))
    stamp = user.last_login_at.isoformat() if (user and user.last_login_at) else ""
    # a login since the link was issued invalidates it
    if not user or stamp != claims.get("ll") or not user.is_active:
        return jsonify({"ok": False, "error": "Invalid login link."}), 400

    login_user(user)
    user.last_login_at = datetime.now(timezone.utc)
    db.session.commit()
    log_audit_event('user_login', 'User logged in with a login link', user=user)
    return jsonify({"ok": True, "user": user.to_dict()}), 200
