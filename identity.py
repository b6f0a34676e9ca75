"""Registered users and the per-client session"""
import logging
from datetime import datetime

from werkzeug.security import check_password_hash, generate_password_hash

from errors import (DuplicateError, InvalidCredentialError, NotFoundError,
                    ValidationError)
from models import PROFILE_FIELDS, new_user, normalize_user
import util

logger = logging.getLogger(__name__)

REFERRAL_BONUS = 50
SESSION_KEY = 'user_id'


def hash_password(password):
    return generate_password_hash(password)


class IdentityManager:
    """Registration, credential checks and profile updates for one client session.

    The session only holds the user's id; the users collection is the single
    copy of every record, so updates are written straight through.
    """

    def __init__(self, storage, session, clock=None):
        self.storage = storage
        self.session = session
        self.clock = clock or datetime.now

    def _today(self):
        return self.clock().date()

    def _require(self, username):
        user = self.storage.find_user(username)
        if not user:
            raise NotFoundError("Account not found. Please register first.")
        return user

    def check_available(self, username):
        if self.storage.find_user(username):
            raise DuplicateError("Account already exists.")

    def register(self, username, password_hash, mpesa_code, referral=None):
        """Create the account, log it in and credit the referrer if there is one"""
        username = util.clean_username(username)
        if not username:
            raise ValidationError("Enter your email or phone number.", field='username')
        self.check_available(username)

        user = self.storage.insert_user(new_user(username, password_hash, mpesa_code, self._today()))
        logger.info(f"Registered {username}")
        self.start_session(user)

        if referral:
            self._credit_referrer(referral, user)
        return normalize_user(user, self._today())

    def _credit_referrer(self, referral, new_member):
        referrer = self.storage.find_user(referral)
        if not referrer or referrer['_id'] == new_member['_id']:
            logger.info(f"Ignoring unknown referral code {referral!r}")
            return
        referrer = normalize_user(referrer, self._today())
        now = self.clock()
        stats = dict(referrer['stats'], earnings=referrer['stats']['earnings'] + REFERRAL_BONUS)
        entry = {
            'id': int(now.timestamp() * 1000),
            'date': now.strftime('%d %b, %H:%M'),
            'amount': REFERRAL_BONUS,
            'title': f"Referral Bonus: {new_member['username']}"
        }
        self.storage.update_user(referrer['_id'], {
            'stats': stats,
            'earnings_history': [entry] + referrer['earnings_history']
        })
        logger.info(f"Credited referral bonus to {referrer['username']} for {new_member['username']}")

    def login(self, username, password):
        """Check credentials. The session starts only after OTP verification."""
        user = self._require(util.clean_username(username))
        if not check_password_hash(user.get('password') or '', password or ''):
            raise InvalidCredentialError("Invalid password.")
        return user

    def start_session(self, user):
        self.session[SESSION_KEY] = str(user['_id'])

    def current_user(self):
        if SESSION_KEY not in self.session:
            return None
        user = self.storage.get_user(self.session[SESSION_KEY])
        if not user:
            self.session.pop(SESSION_KEY, None)
            return None
        return user

    def logout(self):
        self.session.pop(SESSION_KEY, None)

    def reset_password(self, username, new_password):
        user = self._require(username)
        self.storage.update_user(user['_id'], {'password': hash_password(new_password)})
        logger.info(f"Password reset for {user['username']}")

    def change_password(self, user, current, new, confirm):
        if not check_password_hash(user.get('password') or '', current or ''):
            raise ValidationError("Current password is incorrect.", field='current_password')
        error = util.validate_password(new)
        if error:
            raise ValidationError(error, field='new_password')
        if new != confirm:
            raise ValidationError("New passwords do not match.", field='confirm_password')
        if new == current:
            raise ValidationError("New password cannot be the same as the old one.", field='new_password')
        self.update_user(user, {'password': hash_password(new)})

    def update_user(self, user, fields):
        return self.storage.update_user(user['_id'], fields)

    def locked_profile_fields(self, user):
        """Profile fields that were filled in before and may no longer change"""
        profile = user.get('profile') or {}
        locked = {f for f in PROFILE_FIELDS if f != 'avatar' and profile.get(f)}
        if util.is_email(user.get('username')) and not profile.get('email'):
            locked.add('email')
        return locked

    def update_profile(self, user, fields):
        avatar = fields.get('avatar')
        if avatar and util.data_url_size(avatar) > util.MAX_AVATAR_BYTES:
            raise ValidationError("Image size is too large. Please upload an image smaller than 500KB.",
                                  field='avatar')
        profile = dict(user.get('profile') or {})
        if util.is_email(user.get('username')) and not profile.get('email'):
            profile['email'] = user['username']
        locked = self.locked_profile_fields(user)
        for key, value in fields.items():
            if key in PROFILE_FIELDS and key not in locked:
                profile[key] = value
        self.update_user(user, {'profile': profile})
        return profile

    def update_settings(self, user, notifications=None, language=None):
        settings = normalize_user(user, self._today())['settings']
        if notifications:
            for key in ('email', 'sms', 'marketing'):
                if key in notifications:
                    settings['notifications'][key] = bool(notifications[key])
        if language:
            settings['language'] = language
        self.update_user(user, {'settings': settings})
        return settings

    def complete_onboarding(self, user):
        self.update_user(user, {'onboarding_completed': True})

    def request_account_deletion(self, user):
        # Acknowledged only; no account data is removed
        logger.info(f"Account deletion requested by {user['username']}")
        return "Account deletion request submitted."
