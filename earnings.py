"""Daily earnings caps, survey eligibility and reward calculation"""
import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from errors import EligibilityError, ValidationError
from models import UPGRADE_TIERS, normalize_user

logger = logging.getLogger(__name__)

GLOBAL_DAILY_CAP = 100000
HIGH_PERFORMER_THRESHOLD = 75
HIGH_PERFORMER_SURVEYS = 7
STANDARD_SURVEYS = 3
DEFAULT_REWARD = 50
REWARD_VARIANCE = (-5, 10)
MIN_REWARD = 10
PERFORMANCE_BOOST = (2, 9)
ELIGIBILITY_BOOST = (5, 16)
MAX_SCORE = 100
MIN_WITHDRAWAL = 5000
# Caps below this still get the upgrade offer
MAX_UPGRADE_LIMIT = 1000


@dataclass
class Eligibility:
    """Outcome of the survey gates"""
    allowed: bool
    reason: Optional[str] = None
    message: str = ""
    upgrade: bool = False


def roll_over(stats, today):
    """Reset the daily counters if stats were last touched on another day.

    Returns True when a reset happened. daily_limit is kept.
    """
    day = today.isoformat()
    if stats.get('last_activity_date') == day:
        return False
    stats['daily_count'] = 0
    stats['daily_earnings'] = 0
    stats['last_activity_date'] = day
    return True


def survey_count_limit(performance):
    if performance >= HIGH_PERFORMER_THRESHOLD:
        return HIGH_PERFORMER_SURVEYS
    return STANDARD_SURVEYS


def global_cap_reached(global_cap):
    return Eligibility(False, 'global_cap',
                       f"Global daily survey limit of {global_cap:,} has been reached. "
                       f"Please try again tomorrow.")


def check_eligibility(stats, global_count, global_cap=GLOBAL_DAILY_CAP):
    """Apply the global, earnings and survey-count gates in that order"""
    if global_count >= global_cap:
        return global_cap_reached(global_cap)

    daily_limit = stats['daily_limit']
    if stats['daily_earnings'] >= daily_limit:
        return Eligibility(False, 'earnings_cap',
                           f"You have reached your daily earnings limit of KES {daily_limit}.",
                           upgrade=daily_limit < MAX_UPGRADE_LIMIT)

    limit = survey_count_limit(stats['performance'])
    if stats['daily_count'] >= limit:
        if limit == STANDARD_SURVEYS:
            message = (f"You have reached your daily limit of {limit} surveys. "
                       f"Increase your performance to unlock up to {HIGH_PERFORMER_SURVEYS} surveys!")
        else:
            message = f"You have reached your extended limit of {limit} surveys."
        return Eligibility(False, 'survey_count', message)

    return Eligibility(True)


def compute_reward(base, daily_earnings, daily_limit, rng):
    """Nominal reward plus variance, floored, then fitted under the daily cap"""
    earned = max(MIN_REWARD, base + rng.randint(*REWARD_VARIANCE))
    if daily_earnings + earned > daily_limit:
        earned = max(0, daily_limit - daily_earnings)
    return earned


class EarningsEngine:
    """Per-user earnings bookkeeping on top of Storage"""

    def __init__(self, storage, global_cap=GLOBAL_DAILY_CAP, rng=None, clock=None):
        self.storage = storage
        self.global_cap = global_cap
        self.rng = rng or random.Random()
        self.clock = clock or datetime.now

    def today(self):
        return self.clock().date()

    def refresh(self, user):
        """Normalize the user and apply the daily rollover, persisting any change"""
        today = self.today()
        normalized = normalize_user(user, today)
        stats = normalized['stats']
        if roll_over(stats, today):
            logger.info(f"Daily counters reset for {normalized['username']}")
        if stats != user.get('stats') and normalized.get('_id') is not None:
            self.storage.update_user(normalized['_id'], {'stats': stats})
        return normalized

    def global_count(self):
        return self.storage.load_global_counter(self.today())['count']

    def can_start_survey(self, user):
        user = self.refresh(user)
        return check_eligibility(user['stats'], self.global_count(), self.global_cap)

    def start_survey(self, user):
        """Gate a new survey and spend one global slot for it"""
        eligibility = self.can_start_survey(user)
        if not eligibility.allowed:
            raise EligibilityError(eligibility.message, eligibility.reason, eligibility.upgrade)
        # The claim itself enforces the cap; the gate above may have read an older count
        count = self.storage.claim_global_slot(self.today(), self.global_cap)
        if count is None:
            blocked = global_cap_reached(self.global_cap)
            raise EligibilityError(blocked.message, blocked.reason)
        logger.info(f"Survey started by {user['username']}, global count now {count}")
        return count

    def process_reward(self, user, survey=None):
        """Credit a completed survey and return the realized reward"""
        user = self.refresh(user)
        stats = user['stats']
        now = self.clock()

        base = survey['reward'] if survey else DEFAULT_REWARD
        reward = compute_reward(base, stats['daily_earnings'], stats['daily_limit'], self.rng)
        perf_boost = self.rng.randint(*PERFORMANCE_BOOST)
        elig_boost = self.rng.randint(*ELIGIBILITY_BOOST)

        new_stats = dict(stats)
        new_stats.update({
            'earnings': stats['earnings'] + reward,
            'performance': min(MAX_SCORE, stats['performance'] + perf_boost),
            'eligibility': min(MAX_SCORE, stats['eligibility'] + elig_boost),
            'surveys_completed': stats['surveys_completed'] + 1,
            'daily_count': stats['daily_count'] + 1,
            'daily_earnings': stats['daily_earnings'] + reward,
            'last_activity_date': now.date().isoformat()
        })
        entry = {
            'id': int(now.timestamp() * 1000),
            'date': now.strftime('%d %b, %H:%M'),
            'amount': reward,
            'title': survey['title'] if survey else f"Premium Survey #{new_stats['surveys_completed']}"
        }
        history = [entry] + user['earnings_history']

        self.storage.update_user(user['_id'], {'stats': new_stats, 'earnings_history': history})
        logger.info(f"Credited KES {reward} to {user['username']}")
        return reward

    def available_tiers(self, user):
        current = normalize_user(user, self.today())['stats']['daily_limit']
        return [tier for tier in UPGRADE_TIERS if tier['limit'] > current]

    def upgrade_limit(self, user, new_cap):
        user = self.refresh(user)
        stats = dict(user['stats'], daily_limit=new_cap)
        self.storage.update_user(user['_id'], {'stats': stats})
        logger.info(f"Daily limit for {user['username']} raised to KES {new_cap}")
        return stats

    def request_withdrawal(self, user):
        earnings = normalize_user(user, self.today())['stats']['earnings']
        if earnings < MIN_WITHDRAWAL:
            raise ValidationError(f"Withdrawals unlock at KES {MIN_WITHDRAWAL:,}.")
        # Acknowledged only, balances are never debited
        logger.info(f"Withdrawal request for KES {earnings:.2f} from {user['username']}")
        return f"Withdrawal request for KES {earnings:.2f} received! Processing to M-Pesa."

    def dashboard(self, user):
        user = self.refresh(user)
        stats = user['stats']
        global_count = self.global_count()
        survey_limit = survey_count_limit(stats['performance'])
        eligibility = check_eligibility(stats, global_count, self.global_cap)
        return {
            'stats': stats,
            'high_performer': stats['performance'] >= HIGH_PERFORMER_THRESHOLD,
            'survey_limit': survey_limit,
            'remaining_surveys': max(0, survey_limit - stats['daily_count']),
            'remaining_global': max(0, self.global_cap - global_count),
            'remaining_earnings': max(0, stats['daily_limit'] - stats['daily_earnings']),
            'can_start': eligibility.allowed,
            'block_reason': eligibility.reason,
            'block_message': eligibility.message,
            'upgrade_available': stats['daily_limit'] < MAX_UPGRADE_LIMIT,
            'withdrawal_progress': min(100, round(stats['earnings'] / MIN_WITHDRAWAL * 100)),
            'withdrawal_unlocked': stats['earnings'] >= MIN_WITHDRAWAL,
            'recent_activity': user['earnings_history'][:3]
        }
