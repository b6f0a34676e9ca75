# models.py
# MongoDB User Schema (for documentation/reference) and static catalog data

user_schema = {
    'username': 'str',  # Email or phone number as typed at registration
    'username_key': 'str',  # Lower-cased username (unique), used for lookups
    'password': 'str',  # Salted password hash
    'mpesa_code': 'str',  # Registration payment transaction code
    'join_date': 'str',  # Date of registration (YYYY-MM-DD)
    'profile': {},  # Personal, location and payout details, see PROFILE_FIELDS
    'stats': {
        'earnings': 0,  # Cumulative earnings (KES), never decreases
        'performance': 65,  # 0-100, gates the 7 surveys/day tier
        'eligibility': 40,  # 0-100, cosmetic
        'surveys_completed': 0,  # Monotonic counter
        'daily_count': 0,  # Surveys completed today
        'daily_earnings': 0,  # KES earned today
        'last_activity_date': 'str',  # YYYY-MM-DD of the last access
        'daily_limit': 250  # KES daily earnings cap
    },
    'earnings_history': [  # Newest first
        {
            'id': 0,  # Creation timestamp in milliseconds
            'date': 'str',  # Display date, e.g. "19 Oct, 14:05"
            'amount': 0,  # KES credited
            'title': 'str'  # Survey title or bonus label
        }
    ],
    'settings': {
        'notifications': {'email': True, 'sms': True, 'marketing': False},
        'language': 'en'
    },
    'onboarding_completed': False
}

# Note: MongoDB is schemaless, readers go through normalize_user().

DEFAULT_PERFORMANCE = 65
DEFAULT_ELIGIBILITY = 40
DEFAULT_DAILY_LIMIT = 250

PROFILE_FIELDS = (
    'firstName', 'middleName', 'surname', 'dob', 'gender', 'email',
    'country', 'city', 'paymentMethod', 'mpesaNumber', 'airtelNumber',
    'paypalEmail', 'bankName', 'bankAccountNumber', 'avatar',
)

SURVEY_CATALOG = [
    {
        'id': 'tech-trends',
        'title': 'Digital Trends 2025',
        'category': 'Technology',
        'time_minutes': 5,
        'reward': 75,
        'description': 'Share your thoughts on AI, smart devices, and the future of tech.'
    },
    {
        'id': 'consumer-habits',
        'title': 'Global Shopping Preferences',
        'category': 'Retail',
        'time_minutes': 8,
        'reward': 120,
        'description': 'How do you shop? Compare online vs in-store experiences.'
    },
    {
        'id': 'lifestyle-wellness',
        'title': 'Modern Lifestyle & Wellness',
        'category': 'Health',
        'time_minutes': 4,
        'reward': 55,
        'description': 'Quick questions about diet, exercise, and daily routines.'
    },
    {
        'id': 'finance-banking',
        'title': 'Mobile Banking Usage',
        'category': 'Finance',
        'time_minutes': 6,
        'reward': 90,
        'description': 'Your experience with digital payments and mobile money.'
    }
]

FALLBACK_QUESTIONS = [
    {'id': 1, 'text': "How often do you use this service?",
     'options': ["Daily", "Weekly", "Monthly", "Rarely"]},
    {'id': 2, 'text': "How satisfied are you with current options?",
     'options': ["Very Satisfied", "Satisfied", "Neutral", "Dissatisfied"]},
    {'id': 3, 'text': "What factor matters most to you?",
     'options': ["Price", "Quality", "Convenience", "Brand"]},
    {'id': 4, 'text': "Would you recommend this to a friend?",
     'options': ["Definitely", "Probably", "Unlikely", "Never"]},
    {'id': 5, 'text': "How much do you spend on this monthly?",
     'options': ["< KES 1000", "KES 1000-5000", "KES 5000+", "Prefer not to say"]}
]

UPGRADE_TIERS = [
    {'limit': 800, 'cost': 100, 'label': 'Plus Tier'},
    {'limit': 1000, 'cost': 200, 'label': 'Pro Tier'}
]

TOUR_STEPS = [
    {
        'id': 'tour-earnings',
        'title': 'Track Your Cash',
        'description': 'See your total balance here. Once you hit KES 5,000, you can withdraw instantly to M-Pesa.'
    },
    {
        'id': 'tour-start-survey',
        'title': 'Start Earning',
        'description': 'Tap this button to see available surveys. New opportunities are added daily based on your profile.'
    },
    {
        'id': 'tour-menu',
        'title': 'Your Toolkit',
        'description': 'Access your profile, settings, history, and referral links from this menu.'
    }
]

FAQS = [
    {
        'question': "Why do I need to pay a registration fee?",
        'answer': "The KES 49 fee is a one-time verification charge. It ensures that all our members are real, "
                  "active users, which allows us to negotiate higher payout rates with our global survey partners. "
                  "This fee is non-refundable."
    },
    {
        'question': "I paid but can't login. What should I do?",
        'answer': "Please ensure you are entering the correct M-Pesa transaction code (10 characters, e.g., QK54...). "
                  "If the issue persists, contact our support team on WhatsApp with your payment details."
    },
    {
        'question': "How do I withdraw my earnings?",
        'answer': "Once you reach the minimum withdrawal threshold (KES 5,000), a 'Withdraw' button will become "
                  "active in your wallet section. Funds are sent to the M-Pesa number registered to your account."
    },
    {
        'question': "How often do new surveys appear?",
        'answer': "Surveys are matched to your profile (age, location, gender, etc.). On average, active members "
                  "receive 3-5 premium surveys per week. Complete your profile to qualify for more opportunities."
    },
    {
        'question': "How much can I earn per survey?",
        'answer': "Short surveys typically pay between KES 20 and KES 100, while longer, specialized surveys can "
                  "pay up to KES 500."
    },
    {
        'question': "Why was I disqualified from a survey?",
        'answer': "Some surveys look for very specific demographics. If your answers indicate you don't fit the "
                  "target group, the survey may end early. You will still be eligible for future surveys."
    },
    {
        'question': "Is my personal data safe?",
        'answer': "Yes. Your personal contact information is never sold to third parties. We only share anonymized "
                  "demographic data with survey partners to determine eligibility."
    }
]

SUPPORT_WHATSAPP = "254796335209"


def find_survey(survey_id):
    for survey in SURVEY_CATALOG:
        if survey['id'] == survey_id:
            return survey
    return None


def default_stats(today):
    return {
        'earnings': 0,
        'performance': DEFAULT_PERFORMANCE,
        'eligibility': DEFAULT_ELIGIBILITY,
        'surveys_completed': 0,
        'daily_count': 0,
        'daily_earnings': 0,
        'last_activity_date': today.isoformat(),
        'daily_limit': DEFAULT_DAILY_LIMIT
    }


def default_settings():
    return {
        'notifications': {'email': True, 'sms': True, 'marketing': False},
        'language': 'en'
    }


def new_user(username, password_hash, mpesa_code, today):
    """Build a freshly registered user document"""
    return {
        'username': username,
        'username_key': username.lower(),
        'password': password_hash,
        'mpesa_code': mpesa_code,
        'join_date': today.isoformat(),
        'profile': {},
        'stats': default_stats(today),
        'earnings_history': [],
        'settings': default_settings(),
        'onboarding_completed': False
    }


def normalize_stats(stats, today):
    """Default every stats field that is missing or empty"""
    stats = dict(stats or {})
    defaults = default_stats(today)
    for key in ('earnings', 'performance', 'eligibility', 'surveys_completed',
                'daily_count', 'daily_earnings', 'last_activity_date'):
        if stats.get(key) is None:
            stats[key] = defaults[key]
    # a zero limit is treated as unset, like a missing one
    if not stats.get('daily_limit'):
        stats['daily_limit'] = DEFAULT_DAILY_LIMIT
    return stats


def normalize_user(user, today):
    """Fill in fields that older or partial records may lack.

    Returns a new dict; the stored document is left untouched.
    """
    user = dict(user)
    user.setdefault('username_key', user.get('username', '').lower())
    user['profile'] = dict(user.get('profile') or {})
    user['stats'] = normalize_stats(user.get('stats'), today)
    user['earnings_history'] = list(user.get('earnings_history') or [])
    settings = default_settings()
    saved = user.get('settings') or {}
    settings['notifications'].update(saved.get('notifications') or {})
    if saved.get('language'):
        settings['language'] = saved['language']
    user['settings'] = settings
    user['onboarding_completed'] = bool(user.get('onboarding_completed', False))
    return user


def public_user(user):
    """User document safe to hand to the client"""
    return {
        'id': str(user['_id']) if user.get('_id') is not None else None,
        'username': user.get('username'),
        'join_date': user.get('join_date'),
        'profile': user.get('profile', {}),
        'stats': user.get('stats', {}),
        'settings': user.get('settings', {}),
        'onboarding_completed': user.get('onboarding_completed', False)
    }
