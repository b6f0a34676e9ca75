import re
from urllib.parse import quote, urlencode

TRANSACTION_CODE_RE = re.compile(r'^[A-Za-z0-9]{10}$')
MAX_AVATAR_BYTES = 512000


def validate_password(pwd):
    """Return an error message, or None when the password is acceptable"""
    # 8 characters, no underscore, uppercase and lowercase
    if len(pwd or '') < 8:
        return "Password must be at least 8 characters."
    if '_' in pwd:
        return "Password cannot contain underscores."
    if not re.search(r'[A-Z]', pwd):
        return "Password must contain an uppercase letter."
    if not re.search(r'[a-z]', pwd):
        return "Password must contain a lowercase letter."
    return None


def is_valid_transaction_code(code):
    return bool(code) and TRANSACTION_CODE_RE.match(code) is not None


def clean_username(username):
    return (username or '').strip()


def is_email(username):
    return '@' in (username or '')


def referral_link(base_url, username):
    base = base_url.split('?')[0]
    return f"{base}?{urlencode({'ref': username})}"


def invitation_message(link):
    return f"Join me on Global Online Survey Market! Register using my link to start earning: {link}"


def share_links(message):
    """Pre-filled share intents for WhatsApp and the device's SMS app"""
    body = quote(message, safe='')
    return {
        'whatsapp': f"https://wa.me/?text={body}",
        # iOS wants "&body=", everything else "?body="
        'sms': f"sms:?body={body}",
        'sms_ios': f"sms:&body={body}"
    }


def data_url_size(data_url):
    """Approximate decoded size of a base64 data URL"""
    if not data_url:
        return 0
    payload = data_url.split(',', 1)[-1]
    return len(payload) * 3 // 4
