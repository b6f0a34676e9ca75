"""One-time passcodes for signup, login and password reset.

Codes and notification copy are requested from the AI text provider and fall
back to local generation whenever it fails or is slow. Delivery is simulated:
the notification is handed back to the client instead of being sent.
"""
import logging
import re
import secrets

from errors import ProviderError, ValidationError
import util

logger = logging.getLogger(__name__)

SESSION_KEY = 'verification'
CODE_LENGTH = 5

OTP_PROMPT = 'Generate a random 5-digit numeric One-Time Password (OTP). Return ONLY the 5 digits.'

MESSAGE_PROMPTS = {
    ('register', 'sms'): "Generate a warm welcome SMS for Global Survey Market with verification code: {code}. "
                         "Max 15 words.",
    ('register', 'email'): "Generate a professional welcome email for Global Online Survey Market. User: {username}. "
                           "Verification Code: {code}. Max 25 words.",
    ('login', 'sms'): "Generate a friendly, concise SMS verification message for Global Survey Market. Code: {code}. "
                      "Max 15 words.",
    ('login', 'email'): "Generate a professional short email verification message for Global Online Survey Market. "
                        "User: {username}. Code: {code}. Max 25 words.",
    ('reset', 'sms'): "Generate a secure password reset SMS for Global Survey Market. Code: {code}. Max 15 words.",
    ('reset', 'email'): "Generate a password reset email for Global Online Survey Market. User: {username}. "
                        "Code: {code}. Max 25 words.",
}

FALLBACK_MESSAGES = {
    'register': "Welcome to Global Surveys. Your verification code is {code}",
    'login': "Your Global Surveys verification code is {code}",
    'reset': "Your password reset code is {code}",
}


def fallback_code():
    return str(10000 + secrets.randbelow(90000))


def generate_code(provider, timeout):
    """Ask the provider for a 5-digit code, falling back to a local one"""
    try:
        text = provider.generate(OTP_PROMPT, timeout)
        digits = re.sub(r'\D', '', text.strip())[:CODE_LENGTH]
        if len(digits) == CODE_LENGTH:
            return digits
        logger.warning("AI OTP had an invalid format, using fallback")
    except ProviderError as e:
        logger.warning(f"AI OTP generation failed or timed out, using fallback: {e}")
    return fallback_code()


def channel_for(username):
    return 'email' if util.is_email(username) else 'sms'


def compose_message(provider, code, username, purpose, timeout):
    channel = channel_for(username)
    prompt = MESSAGE_PROMPTS[(purpose, channel)].format(code=code, username=username)
    try:
        return provider.generate(prompt, timeout).strip()
    except ProviderError as e:
        logger.info(f"AI notification copy unavailable, using canned message: {e}")
        return FALLBACK_MESSAGES[purpose].format(code=code)


class VerificationManager:
    """Tracks the single pending verification of one client session"""

    def __init__(self, storage, provider, session, otp_timeout=5, message_timeout=4):
        self.storage = storage
        self.provider = provider
        self.session = session
        self.otp_timeout = otp_timeout
        self.message_timeout = message_timeout

    def _notify(self, challenge):
        code = generate_code(self.provider, self.otp_timeout)
        challenge['code'] = code
        challenge['verified'] = False
        username = challenge['username']
        message = compose_message(self.provider, code, username, challenge['purpose'], self.message_timeout)
        channel = channel_for(username)
        logger.info(f"[Mock Service] Sending {challenge['purpose']} code by {channel} to {username}")
        return {
            'title': 'New Email' if channel == 'email' else 'New Message',
            'channel': channel,
            'message': message,
            'code': code
        }

    def issue(self, purpose, username, payload=None):
        """Start a new verification, replacing any pending one"""
        self.discard()
        token = secrets.token_urlsafe(16)
        challenge = {'purpose': purpose, 'username': username, 'payload': payload or {}}
        notification = self._notify(challenge)
        self.storage.save_verification(token, challenge)
        self.session[SESSION_KEY] = token
        return notification

    def pending(self, purpose=None):
        challenge = self.storage.get_verification(self.session.get(SESSION_KEY))
        if not challenge:
            return None
        if purpose and challenge.get('purpose') != purpose:
            return None
        return challenge

    def resend(self):
        """Issue a fresh code for the pending verification. The previous code stops working."""
        challenge = self.pending()
        if not challenge:
            raise ValidationError("No verification in progress.", field='otp')
        notification = self._notify(challenge)
        self.storage.save_verification(challenge['_id'], challenge)
        return notification

    def verify(self, code, purpose):
        challenge = self.pending(purpose)
        if not challenge:
            raise ValidationError("No verification in progress.", field='otp')
        if (code or '') != challenge['code']:
            raise ValidationError("Invalid verification code. Please try again.", field='otp')
        challenge['verified'] = True
        self.storage.save_verification(challenge['_id'], challenge)
        return challenge

    def consume(self, purpose):
        """Remove and return a verified challenge"""
        challenge = self.pending(purpose)
        if not challenge or not challenge.get('verified'):
            raise ValidationError("Verify your code first.", field='otp')
        self.discard()
        return challenge

    def discard(self):
        token = self.session.pop(SESSION_KEY, None)
        self.storage.delete_verification(token)
