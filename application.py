from flask import Flask, Blueprint, request, redirect, jsonify, session, url_for, current_app, g
from functools import wraps
import logging
from datetime import datetime
from pymongo import MongoClient
from pymongo.errors import PyMongoError

from config import Config
from errors import SurveyMarketError, NotFoundError, ValidationError
from earnings import EarningsEngine
from gemini import GeminiClient
from identity import IdentityManager, hash_password
from models import FAQS, SUPPORT_WHATSAPP, TOUR_STEPS, public_user
from otp import VerificationManager
from payments import PaymentVerifier
from storage import Storage
from survey import SurveyFlow
import util

logger = logging.getLogger(__name__)

bp = Blueprint("market", __name__)


def create_app(config_object=Config, mongo_client=None, provider=None, clock=None):
    application = Flask(__name__)
    application.config.from_object(config_object)
    logging.basicConfig(level=application.config["LOG_LEVEL"],
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # MongoDB setup
    if mongo_client is None:
        try:
            mongo_client = MongoClient(application.config["MONGO_URI"],
                                       serverSelectionTimeoutMS=application.config["MONGO_TIMEOUT_MS"])
            # Test the connection
            mongo_client.server_info()
            logger.info("Successfully connected to MongoDB")
        except PyMongoError as e:
            logger.error(f"Error connecting to MongoDB: {e}")
            raise
    storage = Storage(mongo_client, application.config["MONGO_DB"], application.config["MAX_RECORD_BYTES"])

    if provider is None:
        provider = GeminiClient(application.config["GEMINI_API_KEY"],
                                application.config["GEMINI_MODEL"],
                                application.config["GEMINI_API_URL"])
        if not application.config["GEMINI_API_KEY"]:
            logger.warning("GEMINI_API_KEY not set, all generated text will use local fallbacks")

    clock = clock or datetime.now
    engine = EarningsEngine(storage, application.config["GLOBAL_DAILY_CAP"], clock=clock)
    application.extensions["survey_market"] = {
        "storage": storage,
        "provider": provider,
        "clock": clock,
        "engine": engine,
        "surveys": SurveyFlow(storage, engine, provider,
                              survey_timeout=application.config["SURVEY_TIMEOUT"],
                              submit_delay=application.config["SUBMIT_DELAY"]),
        "payments": PaymentVerifier(application.config["PAYMENT_DELAY"]),
    }

    application.register_blueprint(bp)

    @application.errorhandler(SurveyMarketError)
    def handle_market_error(e):
        if e.status_code >= 500:
            logger.warning(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @application.errorhandler(404)
    def page_not_found(e):
        return jsonify({'success': False, 'error': 'Not found', 'path': request.path}), 404

    @application.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({'success': False, 'error': 'Method not allowed', 'path': request.path}), 405

    return application


def _services():
    return current_app.extensions["survey_market"]


def _identity():
    services = _services()
    return IdentityManager(services["storage"], session, clock=services["clock"])


def _verification():
    services = _services()
    return VerificationManager(services["storage"], services["provider"], session,
                               otp_timeout=current_app.config["OTP_TIMEOUT"],
                               message_timeout=current_app.config["MESSAGE_TIMEOUT"])


def _payload():
    data = request.get_json(silent=True)
    if data is None:
        return request.form.to_dict()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object.")
    return data


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = _identity().current_user()
        if not user:
            return jsonify({'success': False, 'error': 'Not authenticated'}), 401
        g.user = user
        return view(*args, **kwargs)
    return wrapped


#home page
@bp.route("/")
def home():
    # A referral link lands here once; keep the code and drop it from the address
    ref = request.args.get('ref')
    if ref:
        session['referral'] = ref.strip()
        return redirect(url_for('market.home'))
    user = _identity().current_user()
    return jsonify({
        'view': 'dashboard' if user else 'login',
        'referral': session.get('referral')
    })


@bp.route("/health")
def health():
    return jsonify({'status': 'ok', 'users': _services()["storage"].count_users()})


# ---- Registration ----

@bp.route("/signup", methods=['POST'])
def signup():
    data = _payload()
    identity = _identity()
    username = util.clean_username(data.get('username'))
    password = data.get('password') or ''
    mpesa_code = (data.get('mpesa_code') or '').strip()

    if not username:
        raise ValidationError("Enter your email or phone number.", field='username')
    identity.check_available(username)
    pwd_error = util.validate_password(password)
    if pwd_error:
        raise ValidationError(pwd_error, field='password')
    if not util.is_valid_transaction_code(mpesa_code):
        raise ValidationError("Transaction code must be exactly 10 alphanumeric characters.", field='mpesa_code')

    notification = _verification().issue('register', username, {
        'password_hash': hash_password(password),
        'mpesa_code': mpesa_code
    })
    return jsonify({'success': True, 'step': 'otp', 'notification': notification})


@bp.route("/signup/verify", methods=['POST'])
def signup_verify():
    data = _payload()
    verification = _verification()
    verification.verify(data.get('otp'), 'register')
    challenge = verification.consume('register')
    payload = challenge['payload']
    user = _identity().register(challenge['username'], payload['password_hash'], payload['mpesa_code'],
                                referral=session.pop('referral', None))
    return jsonify({'success': True, 'user': public_user(user)})


# ---- Login and password recovery ----

@bp.route("/login", methods=['POST'])
def login():
    data = _payload()
    user = _identity().login(data.get('username'), data.get('password'))
    notification = _verification().issue('login', user['username'], {'user_id': str(user['_id'])})
    return jsonify({'success': True, 'step': 'otp', 'notification': notification})


@bp.route("/login/verify", methods=['POST'])
def login_verify():
    data = _payload()
    verification = _verification()
    verification.verify(data.get('otp'), 'login')
    challenge = verification.consume('login')
    identity = _identity()
    user = _services()["storage"].get_user(challenge['payload']['user_id'])
    if not user:
        raise NotFoundError("Account not found. Please register first.")
    identity.start_session(user)
    return jsonify({'success': True, 'user': public_user(user)})


@bp.route("/otp/resend", methods=['POST'])
def resend_otp():
    notification = _verification().resend()
    return jsonify({'success': True, 'notification': notification})


@bp.route("/forgot-password", methods=['POST'])
def forgot_password():
    data = _payload()
    user = _services()["storage"].find_user(util.clean_username(data.get('username')))
    if not user:
        raise NotFoundError("Account not found.")
    notification = _verification().issue('reset', user['username'])
    return jsonify({'success': True, 'step': 'verify', 'notification': notification})


@bp.route("/forgot-password/verify", methods=['POST'])
def forgot_password_verify():
    data = _payload()
    _verification().verify(data.get('otp'), 'reset')
    return jsonify({'success': True, 'step': 'reset'})


@bp.route("/reset-password", methods=['POST'])
def reset_password():
    data = _payload()
    new_password = data.get('new_password') or ''
    pwd_error = util.validate_password(new_password)
    if pwd_error:
        raise ValidationError(pwd_error, field='new_password')
    if new_password != data.get('confirm_password'):
        raise ValidationError("Passwords do not match.", field='confirm_password')
    challenge = _verification().consume('reset')
    _identity().reset_password(challenge['username'], new_password)
    return jsonify({'success': True, 'message': 'Password reset successfully. Please login.'})


@bp.route("/logout", methods=['GET', 'POST'])
def logout():
    _identity().logout()
    _verification().discard()
    return jsonify({'success': True})


# ---- Dashboard ----

@bp.route("/dashboard")
@login_required
def dashboard():
    engine = _services()["engine"]
    user = engine.refresh(g.user)
    summary = engine.dashboard(user)
    return jsonify({
        'user': public_user(user),
        'survey_count': len(_services()["surveys"].catalog()),
        **summary
    })


@bp.route("/get_user_stats")
@login_required
def get_user_stats():
    user = _services()["engine"].refresh(g.user)
    return jsonify({
        'stats': user['stats'],
        'earnings_history': user['earnings_history']
    })


@bp.route("/history")
@login_required
def history():
    user = _services()["engine"].refresh(g.user)
    entries = user['earnings_history']
    return jsonify({
        'total': sum(item['amount'] for item in entries),
        'entries': entries
    })


@bp.route("/withdraw", methods=['POST'])
@login_required
def withdraw():
    message = _services()["engine"].request_withdrawal(g.user)
    return jsonify({'success': True, 'message': message})


# ---- Profile and settings ----

@bp.route("/profile", methods=['GET', 'POST'])
@login_required
def profile():
    identity = _identity()
    if request.method == 'POST':
        saved = identity.update_profile(g.user, _payload())
        return jsonify({'success': True, 'profile': saved})
    return jsonify({
        'profile': g.user.get('profile') or {},
        'locked': sorted(identity.locked_profile_fields(g.user))
    })


@bp.route("/settings", methods=['GET', 'POST'])
@login_required
def settings():
    identity = _identity()
    if request.method == 'POST':
        data = _payload()
        saved = identity.update_settings(g.user, data.get('notifications'), data.get('language'))
        return jsonify({'success': True, 'settings': saved})
    return jsonify(public_user(_services()["engine"].refresh(g.user))['settings'])


@bp.route("/settings/password", methods=['POST'])
@login_required
def change_password():
    data = _payload()
    _identity().change_password(g.user, data.get('current_password'), data.get('new_password'),
                                data.get('confirm_password'))
    return jsonify({'success': True})


@bp.route("/account/delete", methods=['POST'])
@login_required
def delete_account():
    message = _identity().request_account_deletion(g.user)
    return jsonify({'success': True, 'message': message})


@bp.route("/onboarding", methods=['GET', 'POST'])
@login_required
def onboarding():
    if request.method == 'POST':
        _identity().complete_onboarding(g.user)
        return jsonify({'success': True})
    completed = bool(g.user.get('onboarding_completed'))
    return jsonify({'completed': completed, 'steps': [] if completed else TOUR_STEPS})


@bp.route("/help")
def help_view():
    return jsonify({
        'faqs': FAQS,
        'whatsapp': f"https://wa.me/{SUPPORT_WHATSAPP}?text="
                    "Hello%2C%20I%20need%20help%20with%20Global%20Online%20Survey%20Market"
    })


@bp.route("/invite")
@login_required
def invite():
    link = util.referral_link(current_app.config["PUBLIC_URL"], g.user['username'])
    message = util.invitation_message(link)
    return jsonify({'link': link, 'message': message, 'share': util.share_links(message)})


# ---- Surveys ----

@bp.route("/surveys")
@login_required
def surveys():
    services = _services()
    eligibility = services["engine"].can_start_survey(g.user)
    return jsonify({
        'surveys': services["surveys"].catalog(),
        'can_start': eligibility.allowed,
        'reason': eligibility.reason,
        'message': eligibility.message,
        'upgrade': eligibility.upgrade
    })


@bp.route("/surveys/<survey_id>/start", methods=['POST'])
@login_required
def start_survey(survey_id):
    attempt = _services()["surveys"].start(g.user, survey_id)
    return jsonify({'success': True, 'survey': attempt})


@bp.route("/survey")
@login_required
def current_survey():
    attempt = _services()["surveys"].current(g.user)
    if attempt is None:
        return jsonify({'state': 'idle'})
    return jsonify(attempt)


@bp.route("/survey/answer", methods=['POST'])
@login_required
def answer_question():
    attempt = _services()["surveys"].select(g.user, _payload().get('option'))
    return jsonify({'success': True, 'survey': attempt})


@bp.route("/survey/next", methods=['POST'])
@login_required
def next_question():
    result = _services()["surveys"].advance(g.user)
    return jsonify({'success': True, 'survey': result})


@bp.route("/survey/resume", methods=['POST'])
@login_required
def resume_survey():
    attempt = _services()["surveys"].resume(g.user)
    return jsonify({'success': True, 'survey': attempt})


@bp.route("/survey/cancel", methods=['POST'])
@login_required
def cancel_survey():
    _services()["surveys"].cancel(g.user)
    return jsonify({'success': True})


# ---- Limit upgrades ----

@bp.route("/upgrade", methods=['GET', 'POST'])
@login_required
def upgrade_limit():
    engine = _services()["engine"]
    user = engine.refresh(g.user)
    current_limit = user['stats']['daily_limit']
    if request.method == 'GET':
        return jsonify({'current_limit': current_limit, 'tiers': engine.available_tiers(user)})

    data = _payload()
    try:
        tier_limit = int(data.get('tier'))
    except (TypeError, ValueError):
        raise ValidationError("Select an available upgrade tier.", field='tier')
    tier = _services()["payments"].verify(tier_limit, (data.get('mpesa_code') or '').strip(), current_limit)
    stats = engine.upgrade_limit(user, tier['limit'])
    return jsonify({
        'success': True,
        'stats': stats,
        'message': f"Successfully upgraded! Your new daily earning limit is KES {tier['limit']}."
    })


if __name__ == "__main__":
    application = create_app()
    application.run()
