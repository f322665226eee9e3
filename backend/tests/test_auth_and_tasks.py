from conftest import CONVERSATION, LECTURE, READING, FakeLLM, FakeTTS


def test_register_login_and_protected_routes(client):
    r = client.post('/auth/register', json={'username': 'alice', 'password': 'secret'})
    assert r.status_code == 200
    dup = client.post('/auth/register', json={'username': 'alice', 'password': 'other'})
    assert dup.status_code == 409
    bad = client.post('/auth/login', json={'username': 'alice', 'password': 'wrong'})
    assert bad.status_code == 401
    r = client.get('/tasks')
    assert r.status_code in (401, 403)
    r = client.get('/flow', headers={'Authorization': 'Bearer invalid.token.here'})
    assert r.status_code == 401


def test_health_and_request_id(client):
    r = client.get('/health')
    assert r.status_code == 200
    assert r.json()['status'] == 'ok'
    assert 'X-Request-ID' in r.headers


def test_generate_lecture_with_audio(client, auth_headers, use_providers):
    tts = FakeTTS(audio=b'audio')
    use_providers(llm=FakeLLM(LECTURE), tts=tts)
    r = client.post('/tasks/generate', json={'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 200
    task = r.json()
    assert task['audio_url'] == 'data:audio/mpeg;base64,YXVkaW8='
    assert task['uses_browser_speech'] is False
    assert len(task['questions']) == 3
    assert len(tts.requests) == 1

    fetched = client.get(f"/tasks/{task['id']}", headers=auth_headers)
    assert fetched.status_code == 200
    assert fetched.json()['title'] == 'The Water Cycle'
    listed = client.get('/tasks', params={'task_type': 'lecture'}, headers=auth_headers).json()
    assert [t['id'] for t in listed] == [task['id']]


def test_tts_failure_falls_back_to_browser_speech(client, auth_headers, use_providers):
    use_providers(llm=FakeLLM(CONVERSATION), tts=FakeTTS(status=500))
    r = client.post('/tasks/generate', json={'task_type': 'conversation'}, headers=auth_headers)
    assert r.status_code == 200
    task = r.json()
    assert task['audio_url'] is None
    assert task['uses_browser_speech'] is True
    plan = client.get(f"/tasks/{task['id']}/speech", headers=auth_headers).json()
    assert plan['speakers'] == ['Student', 'Librarian']


def test_reading_task_skips_tts(client, auth_headers, use_providers):
    tts = FakeTTS()
    use_providers(llm=FakeLLM(READING), tts=tts)
    r = client.post('/tasks/generate', json={'task_type': 'reading'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['transcript'].startswith('Coral reefs')
    assert tts.requests == []


def test_missing_llm_key_is_http_500(client, auth_headers):
    r = client.post('/tasks/generate', json={'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 500
    assert 'not configured' in r.json()['detail']
    r = client.post('/audio/generate', json={'text': 'hello'}, headers=auth_headers)
    assert r.status_code == 500


def test_provider_failure_is_http_502(client, auth_headers, use_providers):
    use_providers(llm=FakeLLM({'title': 'No questions', 'transcript': 'text', 'questions': []}))
    r = client.post('/tasks/generate', json={'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 502


def test_raw_content_and_audio_endpoints(client, auth_headers, use_providers):
    use_providers(llm=FakeLLM(LECTURE), tts=FakeTTS(audio=b'abc'))
    r = client.post('/content/generate', json={'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['questions'][0]['correctAnswer'] == 0
    r = client.post('/audio/generate', json={'text': 'hello', 'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json() == {'audio_data': 'YWJj'}


def test_submit_results_and_history(client, auth_headers, use_providers):
    use_providers(llm=FakeLLM(LECTURE))
    task = client.post('/tasks/generate', json={'task_type': 'lecture'}, headers=auth_headers).json()
    r = client.post(f"/tasks/{task['id']}/results", json={'answers': [0, 1, 0]}, headers=auth_headers)
    assert r.status_code == 200
    body = r.json()
    assert body['score'] == 2
    assert body['total'] == 3
    assert body['percentage'] == 67
    assert body['badge'] == 'Good Job!'
    history = client.get('/results', headers=auth_headers).json()
    assert history[0]['task_id'] == task['id']
    assert history[0]['percentage'] == 67

    wrong_len = client.post(f"/tasks/{task['id']}/results", json={'answers': [0]}, headers=auth_headers)
    assert wrong_len.status_code == 400
    missing = client.post('/tasks/nope/results', json={'answers': []}, headers=auth_headers)
    assert missing.status_code == 404


def test_register_race_on_unique_username_is_conflict(client, monkeypatch):
    from toefl_practice import repositories
    assert client.post('/auth/register', json={'username': 'racer', 'password': 'pw'}).status_code == 200
    # the lookup misses, as when a concurrent request inserts between check and commit
    monkeypatch.setattr(repositories.UserRepository, 'get_by_username', lambda self, username: None)
    r = client.post('/auth/register', json={'username': 'racer', 'password': 'pw'})
    assert r.status_code == 409
    assert r.json()['detail'] == 'username already registered'


def test_login_returns_only_the_token(client):
    r = client.post('/auth/register', json={'username': 'token-shape', 'password': 'pw'})
    assert r.status_code == 200
    r = client.post('/auth/login', json={'username': 'token-shape', 'password': 'pw'})
    assert list(r.json()) == ['access_token']


def test_unconfigured_tts_is_not_called(client, auth_headers, use_providers):
    from toefl_practice import main
    tts = FakeTTS()
    use_providers(llm=FakeLLM(LECTURE))
    main.app.dependency_overrides[main.get_speech_client] = lambda: tts.client(api_key='')
    r = client.post('/tasks/generate', json={'task_type': 'lecture'}, headers=auth_headers)
    assert r.status_code == 200
    assert r.json()['uses_browser_speech'] is True
    assert tts.requests == []
