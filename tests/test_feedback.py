import json

import pytest

from essaylab.errors import UpstreamError
from essaylab.main import app
from essaylab.models import AuthUser
from essaylab.routers.feedback import get_feedback_client, overall_band
from essaylab.settings import settings


class FakeGemini:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []
        self.closed = False

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply

    async def aclose(self):
        self.closed = True


MODEL_REPLY = json.dumps({
    'band_scores': [
        {'criterion': 'TR', 'score': 6, 'feedback': 'Position is clear.'},
        {'criterion': 'CC', 'score': 7, 'feedback': 'Logical paragraphs.'},
        {'criterion': 'lr', 'score': 6, 'feedback': 'Some repetition.'},
        {'criterion': 'GRA', 'score': 6, 'feedback': 'Frequent article errors.'},
        {'criterion': 'XX', 'score': 9},
    ],
    'strengths': ['Clear thesis'],
    'improvements': ['Vary linking words', ''],
})


@pytest.fixture
def fake_gemini():
    fake = FakeGemini(reply='```json\n' + MODEL_REPLY + '\n```')
    app.dependency_overrides[get_feedback_client] = lambda: lambda: fake
    yield fake
    app.dependency_overrides.pop(get_feedback_client, None)


@pytest.mark.parametrize('scores, expected', [
    ([6, 7, 6, 6], 6.5),
    ([5, 6, 6, 6], 6.0),
    ([6, 6, 6, 6.5], 6.0),
    ([7, 7, 7, 6], 7.0),
    ([5, 5, 5, 5], 5.0),
    ([], None),
])
def test_overall_band_rounds_to_half_bands(scores, expected):
    assert overall_band(scores) == expected


def test_feedback_for_draft(client, login_as, fake_gemini):
    login_as('alice')
    draft = client.post('/essay-drafts', json={'content': 'Cars pollute cities.'}).json()

    resp = client.post(f"/essay-drafts/{draft['id']}/feedback", json={'level': '5.5_to_6.5'})

    assert resp.status_code == 200
    body = resp.json()
    assert body['draft_id'] == draft['id']
    assert body['version'] == 1
    assert [s['criterion'] for s in body['band_scores']] == ['TR', 'CC', 'LR', 'GRA']
    assert body['overall_band'] == 6.5
    assert body['strengths'] == ['Clear thesis']
    assert body['improvements'] == ['Vary linking words']
    assert 'Cars pollute cities.' in fake_gemini.prompts[0]
    assert fake_gemini.closed is True
    assert '5.5_to_6.5' in fake_gemini.prompts[0]


def test_feedback_does_not_touch_the_draft(client, login_as, fake_gemini):
    login_as('alice')
    draft = client.post('/essay-drafts', json={'content': 'Original text'}).json()

    client.post(f"/essay-drafts/{draft['id']}/feedback")

    after = client.get(f"/essay-drafts/{draft['id']}").json()
    assert after == draft


def test_feedback_rejects_unknown_level(client, login_as, fake_gemini):
    login_as('alice')
    draft = client.post('/essay-drafts', json={'content': 'text'}).json()

    resp = client.post(f"/essay-drafts/{draft['id']}/feedback", json={'level': 'band 9'})

    assert resp.status_code == 422


def test_feedback_unknown_draft(client, login_as, fake_gemini):
    login_as('alice')

    resp = client.post('/essay-drafts/missing/feedback')

    assert resp.status_code == 404
    assert fake_gemini.prompts == []


def test_feedback_upstream_failure_is_502(client, login_as):
    fake = FakeGemini(error=UpstreamError('Gemini call failed: timeout'))
    app.dependency_overrides[get_feedback_client] = lambda: lambda: fake
    try:
        login_as('alice')
        draft = client.post('/essay-drafts', json={'content': 'text'}).json()

        resp = client.post(f"/essay-drafts/{draft['id']}/feedback")

        assert resp.status_code == 502
        assert resp.json() == {'error': 'Gemini call failed: timeout'}
    finally:
        app.dependency_overrides.pop(get_feedback_client, None)


def test_feedback_counts_against_request_limit(client, login_as, fake_gemini, db):
    db.add(AuthUser(username='alice', password_hash='x', requests_used=0, requests_limit=1))
    db.commit()
    login_as('alice')
    draft = client.post('/essay-drafts', json={'content': 'text'}).json()

    first = client.post(f"/essay-drafts/{draft['id']}/feedback")
    second = client.post(f"/essay-drafts/{draft['id']}/feedback")

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json() == {'error': 'request limit reached'}
    assert len(fake_gemini.prompts) == 1


def test_feedback_without_api_key_checks_the_draft_first(client, login_as, monkeypatch):
    monkeypatch.setattr(settings, 'gemini_api_key', None)
    login_as('alice')
    draft = client.post('/essay-drafts', json={'content': 'text'}).json()

    missing = client.post('/essay-drafts/missing/feedback')
    existing = client.post(f"/essay-drafts/{draft['id']}/feedback")

    assert missing.status_code == 404
    assert missing.json() == {'error': 'Draft not found'}
    assert existing.status_code == 502
    assert existing.json() == {'error': 'GEMINI_API_KEY is not configured'}
