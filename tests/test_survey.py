import copy
import json
import random

import pytest

from earnings import EarningsEngine
from errors import (EligibilityError, NotFoundError, ProviderError,
                    SurveyStateError, ValidationError)
from models import FALLBACK_QUESTIONS, find_survey
from survey import (ACTIVE, COMPLETED, GENERATING, PAUSED, QUESTION_SECONDS,
                    SurveyFlow, generate_questions, parse_questions)


class Ticker:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class HookedProvider:
    """Runs hook while questions are being generated, then fails"""

    def __init__(self, hook):
        self.hook = hook

    def generate(self, prompt, timeout, json_output=False):
        self.hook()
        raise ProviderError("offline")


def question(n, options=None):
    return {'id': n, 'text': f'Question {n}?', 'options': options or ['A', 'B', 'C', 'D']}


@pytest.fixture
def ticker():
    return Ticker()


@pytest.fixture
def flow(storage, provider, clock, ticker):
    engine = EarningsEngine(storage, rng=random.Random(3), clock=clock)
    return SurveyFlow(storage, engine, provider, submit_delay=0, clock=ticker)


def test_parse_questions_strips_fences_and_renumbers():
    text = "```json\n" + json.dumps([question(7), question(9)]) + "\n```"

    questions = parse_questions(text)

    assert [q['id'] for q in questions] == [1, 2]
    assert questions[0]['options'] == ['A', 'B', 'C', 'D']


def test_parse_questions_drops_malformed_entries_and_caps_length():
    data = [question(1, ['A', 'B', 'C']), {'text': '', 'options': ['A', 'B', 'C', 'D']},
            question(2, ['A', 'A', 'B', 'C']), 'junk'] + [question(n) for n in range(3, 20)]

    questions = parse_questions(json.dumps(data))

    assert len(questions) == 10
    assert questions[0]['text'] == 'Question 3?'


@pytest.mark.parametrize("text", ["not json", "{}", "[]", json.dumps([{'id': 1}])])
def test_parse_questions_rejects_unusable_output(text):
    with pytest.raises(ValueError):
        parse_questions(text)


def test_generate_questions_falls_back(provider):
    survey = find_survey('tech-trends')

    questions, source = generate_questions(provider, survey, 10)
    assert source == 'fallback'
    assert questions == FALLBACK_QUESTIONS
    assert 'Digital Trends 2025' in provider.prompts[0]

    provider.queue("Sorry, I can't do that")
    assert generate_questions(provider, survey, 10)[1] == 'fallback'


def test_generate_questions_uses_provider(provider):
    provider.queue(json.dumps([question(n) for n in range(1, 6)]))

    questions, source = generate_questions(provider, find_survey('finance-banking'), 10)

    assert source == 'ai'
    assert len(questions) == 5


def test_full_attempt_awards_reward(flow, make_user, storage):
    user = make_user('amy')

    view = flow.start(user, 'lifestyle-wellness')
    assert view['state'] == ACTIVE
    assert view['total'] == 5
    assert view['time_left'] == QUESTION_SECONDS
    assert storage.counters.find_one({'_id': 'global_daily'})['count'] == 1

    for _ in range(4):
        flow.select(user, view['question']['options'][0])
        view = flow.advance(user)
    flow.select(user, view['question']['options'][1])
    result = flow.advance(user)

    assert result['state'] == COMPLETED
    assert 45 <= result['reward'] <= 65
    stored = storage.get_user(user['_id'])
    assert stored['stats']['surveys_completed'] == 1
    assert stored['stats']['earnings'] == result['reward']
    assert flow.current(user) is None


def test_advance_requires_selection(flow, make_user):
    user = make_user('ben')
    flow.start(user, 'tech-trends')

    with pytest.raises(ValidationError):
        flow.advance(user)
    with pytest.raises(ValidationError):
        flow.select(user, 'Not an option')


def test_timer_expiry_pauses_and_resume_restarts_same_question(flow, make_user, ticker):
    user = make_user('cara')
    flow.start(user, 'tech-trends')
    flow.select(user, 'Daily')
    flow.advance(user)

    ticker.now += 30
    assert flow.current(user)['time_left'] == QUESTION_SECONDS - 30
    ticker.now += 15
    view = flow.current(user)
    assert view['state'] == PAUSED
    assert view['time_left'] == 0
    with pytest.raises(SurveyStateError):
        flow.select(user, 'Satisfied')

    view = flow.resume(user)
    assert view['state'] == ACTIVE
    assert view['index'] == 1
    assert view['time_left'] == QUESTION_SECONDS


def test_resume_requires_pause(flow, make_user):
    user = make_user('dina')
    flow.start(user, 'tech-trends')

    with pytest.raises(SurveyStateError):
        flow.resume(user)


def test_cancel_awards_nothing_and_keeps_global_slot(flow, make_user, storage):
    user = make_user('eli')
    flow.start(user, 'consumer-habits')
    flow.select(user, 'Weekly')

    flow.cancel(user)

    assert flow.current(user) is None
    assert storage.get_user(user['_id'])['stats']['earnings'] == 0
    assert storage.counters.find_one({'_id': 'global_daily'})['count'] == 1
    with pytest.raises(SurveyStateError):
        flow.cancel(user)


def test_blocked_user_cannot_start(flow, make_user, storage):
    user = make_user('fay', daily_count=3)

    with pytest.raises(EligibilityError) as excinfo:
        flow.start(user, 'tech-trends')

    assert excinfo.value.reason == 'survey_count'
    assert flow.current(user) is None
    assert storage.counters.find_one({'_id': 'global_daily'}) is None or \
        storage.counters.find_one({'_id': 'global_daily'})['count'] == 0


def test_unknown_survey(flow, make_user):
    with pytest.raises(NotFoundError):
        flow.start(make_user('gus'), 'nope')


def test_current_while_questions_are_generating(storage, clock, ticker, make_user):
    user = make_user('hana')
    seen = []
    engine = EarningsEngine(storage, rng=random.Random(3), clock=clock)
    flow = SurveyFlow(storage, engine, HookedProvider(lambda: seen.append(flow.current(user))),
                      submit_delay=0, clock=ticker)

    view = flow.start(user, 'tech-trends')

    assert seen[0]['state'] == GENERATING
    assert seen[0]['question'] is None
    assert view['state'] == ACTIVE


def test_cancel_during_generation_sticks(storage, clock, ticker, make_user):
    user = make_user('ivan')
    engine = EarningsEngine(storage, rng=random.Random(3), clock=clock)
    flow = SurveyFlow(storage, engine, HookedProvider(lambda: flow.cancel(user)),
                      submit_delay=0, clock=ticker)

    with pytest.raises(SurveyStateError):
        flow.start(user, 'tech-trends')

    assert storage.get_active_survey(user['_id']) is None
    assert flow.current(user) is None
    assert storage.counters.find_one({'_id': 'global_daily'})['count'] == 1


def test_only_one_submit_is_credited(storage, clock, ticker, provider, make_user, monkeypatch):
    user = make_user('jade')
    engine = EarningsEngine(storage, rng=random.Random(3), clock=clock)
    overlapping = []

    def sleep(seconds):
        # a second request that loaded the attempt before it was claimed
        monkeypatch.setattr(storage, 'get_active_survey', lambda user_id: copy.deepcopy(stale))
        with pytest.raises(SurveyStateError):
            flow.advance(user)
        with pytest.raises(SurveyStateError):
            flow.select(user, stale['questions'][-1]['options'][1])
        monkeypatch.undo()
        overlapping.append(seconds)

    flow = SurveyFlow(storage, engine, provider, submit_delay=1, clock=ticker, sleep=sleep)
    view = flow.start(user, 'tech-trends')
    for _ in range(4):
        flow.select(user, view['question']['options'][0])
        view = flow.advance(user)
    flow.select(user, view['question']['options'][0])
    stale = copy.deepcopy(storage.get_active_survey(user['_id']))

    result = flow.advance(user)

    assert result['state'] == COMPLETED
    assert overlapping == [1]
    stats = storage.get_user(user['_id'])['stats']
    assert stats['surveys_completed'] == 1
    assert stats['earnings'] == result['reward']
