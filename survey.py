"""Running a survey attempt: question generation, per-question timer, submission"""
import copy
import json
import logging
import re
import time

from errors import NotFoundError, ProviderError, SurveyStateError, ValidationError
from models import FALLBACK_QUESTIONS, SURVEY_CATALOG, find_survey

logger = logging.getLogger(__name__)

GENERATING = 'generating'
ACTIVE = 'active'
PAUSED = 'paused'
SUBMITTING = 'submitting'
COMPLETED = 'completed'

QUESTION_SECONDS = 45
MAX_QUESTIONS = 10
OPTIONS_PER_QUESTION = 4

SURVEY_PROMPT = """Generate a JSON array of 5 to 10 interesting multiple-choice survey questions about "{title}" - {description}.
Each object in the array must have:
- "id" (number)
- "text" (the question string)
- "options" (an array of 4 distinct string options)
Return ONLY the raw JSON array, no markdown formatting."""


def parse_questions(text):
    """Parse provider output into validated questions.

    Raises ValueError when nothing usable is left.
    """
    cleaned = re.sub(r'```(?:json)?', '', text).strip()
    data = json.loads(cleaned)
    if not isinstance(data, list):
        raise ValueError("Invalid survey format received")

    questions = []
    for item in data:
        if not isinstance(item, dict):
            continue
        question_text = item.get('text')
        options = item.get('options')
        if not isinstance(question_text, str) or not question_text.strip():
            continue
        if not isinstance(options, list) or len(options) != OPTIONS_PER_QUESTION:
            continue
        if not all(isinstance(o, str) and o.strip() for o in options):
            continue
        options = [o.strip() for o in options]
        if len(set(options)) != OPTIONS_PER_QUESTION:
            continue
        questions.append({'id': len(questions) + 1, 'text': question_text.strip(), 'options': options})
        if len(questions) == MAX_QUESTIONS:
            break

    if not questions:
        raise ValueError("Invalid survey format received")
    return questions


def generate_questions(provider, survey, timeout):
    """Return (questions, source); source is 'ai' or 'fallback'"""
    prompt = SURVEY_PROMPT.format(title=survey['title'], description=survey['description'])
    try:
        text = provider.generate(prompt, timeout, json_output=True)
        return parse_questions(text), 'ai'
    except (ProviderError, ValueError) as e:
        logger.warning(f"Survey generation failed, using fallback questions: {e}")
        return copy.deepcopy(FALLBACK_QUESTIONS), 'fallback'


class SurveyFlow:
    """One survey attempt per user, kept in the active_surveys collection.

    The countdown is not a running timer: every call compares the clock with
    the time the current question was shown and pauses the attempt once
    QUESTION_SECONDS have passed.
    """

    def __init__(self, storage, engine, provider, survey_timeout=10, submit_delay=1.5,
                 clock=time.time, sleep=time.sleep):
        self.storage = storage
        self.engine = engine
        self.provider = provider
        self.survey_timeout = survey_timeout
        self.submit_delay = submit_delay
        self.clock = clock
        self.sleep = sleep

    def catalog(self):
        return SURVEY_CATALOG

    def _save(self, user, attempt):
        attempt = {k: v for k, v in attempt.items() if k != '_id'}
        self.storage.save_active_survey(user['_id'], attempt)
        return attempt

    def _transition(self, user, attempt, from_state):
        """Write the attempt back only if another request has not moved it on"""
        fields = {k: v for k, v in attempt.items() if k != '_id'}
        if not self.storage.transition_active_survey(user['_id'], from_state, fields):
            raise SurveyStateError("Survey was changed by another request. Reload it to continue.")
        return attempt

    def _tick(self, user, attempt):
        if attempt['state'] == ACTIVE and self.clock() - attempt['question_started_at'] >= QUESTION_SECONDS:
            attempt['state'] = PAUSED
            self._transition(user, attempt, ACTIVE)
        return attempt

    def _load(self, user):
        attempt = self.storage.get_active_survey(user['_id'])
        if not attempt:
            raise SurveyStateError("No survey in progress.")
        return self._tick(user, attempt)

    def _require_active(self, attempt):
        if attempt['state'] == PAUSED:
            raise SurveyStateError("Time is up for this question. Resume to continue.")
        if attempt['state'] != ACTIVE:
            raise SurveyStateError(f"Survey is {attempt['state']}.")

    def time_left(self, attempt):
        if attempt['state'] != ACTIVE:
            return 0
        return max(0, QUESTION_SECONDS - int(self.clock() - attempt['question_started_at']))

    def view(self, attempt):
        if attempt['state'] == GENERATING:
            return {
                'survey_id': attempt['survey_id'],
                'title': attempt['title'],
                'state': GENERATING,
                'index': 0,
                'total': 0,
                'question': None,
                'time_left': 0
            }
        question = attempt['questions'][attempt['index']]
        total = len(attempt['questions'])
        return {
            'survey_id': attempt['survey_id'],
            'title': attempt['title'],
            'state': attempt['state'],
            'index': attempt['index'],
            'total': total,
            'progress': round((attempt['index'] + 1) / total * 100),
            'question': question,
            'selected': attempt['answers'].get(str(question['id'])),
            'time_left': self.time_left(attempt),
            'is_last': attempt['index'] == total - 1
        }

    def current(self, user):
        attempt = self.storage.get_active_survey(user['_id'])
        if not attempt:
            return None
        return self.view(self._tick(user, attempt))

    def start(self, user, survey_id):
        survey = find_survey(survey_id)
        if not survey:
            raise NotFoundError("Survey not found.")
        # A stale attempt is simply replaced; its global slot stays spent
        self.storage.delete_active_survey(user['_id'])
        self.engine.start_survey(user)

        attempt = {
            'survey_id': survey['id'],
            'title': survey['title'],
            'state': GENERATING,
            'questions': [],
            'answers': {},
            'index': 0
        }
        self._save(user, attempt)

        questions, source = generate_questions(self.provider, survey, self.survey_timeout)
        activated = {
            'questions': questions,
            'source': source,
            'state': ACTIVE,
            'question_started_at': self.clock()
        }
        # Cancelled or replaced while the questions were being generated
        if not self.storage.transition_active_survey(user['_id'], GENERATING, activated):
            raise SurveyStateError("Survey was cancelled.")
        attempt.update(activated)
        return self.view(attempt)

    def select(self, user, option):
        attempt = self._load(user)
        self._require_active(attempt)
        question = attempt['questions'][attempt['index']]
        if option not in question['options']:
            raise ValidationError("Choose one of the listed options.", field='option')
        attempt['answers'][str(question['id'])] = option
        self._transition(user, attempt, ACTIVE)
        return self.view(attempt)

    def advance(self, user):
        """Move to the next question, or submit after the last one"""
        attempt = self._load(user)
        self._require_active(attempt)
        question = attempt['questions'][attempt['index']]
        if str(question['id']) not in attempt['answers']:
            raise ValidationError("Select an answer to continue.", field='option')
        if attempt['index'] < len(attempt['questions']) - 1:
            attempt['index'] += 1
            attempt['question_started_at'] = self.clock()
            self._transition(user, attempt, ACTIVE)
            return self.view(attempt)
        return self._submit(user, attempt)

    def resume(self, user):
        attempt = self._load(user)
        if attempt['state'] != PAUSED:
            raise SurveyStateError("Survey is not paused.")
        attempt['state'] = ACTIVE
        attempt['question_started_at'] = self.clock()
        self._transition(user, attempt, PAUSED)
        return self.view(attempt)

    def _submit(self, user, attempt):
        # Only the request that moves the attempt out of ACTIVE gets credited
        attempt['state'] = SUBMITTING
        self._transition(user, attempt, ACTIVE)
        if self.submit_delay:
            self.sleep(self.submit_delay)

        fresh = self.storage.get_user(user['_id'])
        reward = self.engine.process_reward(fresh, find_survey(attempt['survey_id']))
        self.storage.delete_active_survey(user['_id'])
        return {
            'survey_id': attempt['survey_id'],
            'title': attempt['title'],
            'state': COMPLETED,
            'reward': reward
        }

    def cancel(self, user):
        """Drop the attempt without any reward"""
        self._load(user)
        self.storage.delete_active_survey(user['_id'])
        logger.info(f"Survey cancelled by {user['username']}")
