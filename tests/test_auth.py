import pytest

from essaylab.models import AuthSession, AuthUser
from essaylab.routers import auth
from essaylab.settings import settings


def register(client, username='alice', password='s3cret-pass'):
    return client.post('/auth/register', json={'username': username, 'password': password, 'email': f'{username}@example.com'})


def login(client, username='alice', password='s3cret-pass'):
    return client.post('/auth/token', data={'username': username, 'password': password})


def test_register_login_and_me(client, db):
    assert register(client).status_code == 201

    resp = login(client)
    assert resp.status_code == 200
    token = resp.json()['access_token']

    me = client.get('/auth/me', headers={'Authorization': f'Bearer {token}'})
    assert me.json() == {'username': 'alice', 'role': 'student'}
    assert db.query(AuthSession).filter(AuthSession.username == 'alice').count() == 1


def test_duplicate_username(client):
    register(client)

    resp = register(client)

    assert resp.status_code == 409
    assert resp.json() == {'error': 'username already exists'}


def test_short_username_rejected(client):
    assert register(client, username='ab').status_code == 400


def test_wrong_password(client):
    register(client)

    resp = login(client, password='nope')

    assert resp.status_code == 401


def test_bad_token(client):
    resp = client.get('/auth/me', headers={'Authorization': 'Bearer not-a-jwt'})

    assert resp.status_code == 401
    assert resp.json() == {'error': 'Could not validate credentials'}


def test_logout_revokes_token(client):
    register(client)
    headers = {'Authorization': f"Bearer {login(client).json()['access_token']}"}

    assert client.post('/auth/logout', headers=headers).json() == {'ok': True}
    assert client.get('/auth/me', headers=headers).status_code == 401


def test_token_flow_reaches_drafts(client):
    register(client)
    headers = {'Authorization': f"Bearer {login(client).json()['access_token']}"}

    resp = client.post('/essay-drafts', json={'content': 'Hello'}, headers=headers)

    assert resp.status_code == 201
    assert resp.json()['user_id'] == 'alice'


def test_seed_user_is_admin(client, db, monkeypatch):
    monkeypatch.setattr(settings, 'seed_username', 'tutor')
    monkeypatch.setattr(settings, 'seed_password_plain', 'tutor-pass')

    resp = login(client, 'tutor', 'tutor-pass')

    assert resp.status_code == 200
    assert db.get(AuthUser, 'tutor').role == 'admin'


def test_bcrypt_long_password(client):
    long_password = 'x' * 100
    register(client, password=long_password)

    assert login(client, password=long_password).status_code == 200


def test_require_role_rejects_unknown_role():
    with pytest.raises(ValueError):
        auth.require_role('superuser')
