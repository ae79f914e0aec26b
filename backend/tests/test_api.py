def _create(client):
    res = client.post('/rooms')
    assert res.status_code == 201
    return res.get_json()


def test_health(client):
    res = client.get('/health')
    assert res.status_code == 200
    assert res.get_json() == {'status': 'ok'}


def test_create_room(client, rooms):
    data = _create(client)
    assert data['roomId'] in rooms
    assert data['adminPin'].isdigit()
    for judge in ('left', 'center', 'right'):
        assert data['joinQRCodes'][judge]['token']


def test_access_with_pin(client):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId']}/access", json={'adminPin': data['adminPin']})
    assert res.status_code == 200
    assert res.get_json() == data


def test_access_room_id_is_case_insensitive(client):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId'].lower()}/access", json={'adminPin': data['adminPin']})
    assert res.status_code == 200
    assert res.get_json()['roomId'] == data['roomId']


def test_access_bad_pin(client):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId']}/access", json={'adminPin': 'nope'})
    assert res.status_code == 403
    assert res.get_json() == {'error': 'invalid_pin'}


def test_access_missing_body(client):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId']}/access")
    assert res.status_code == 403
    assert res.get_json() == {'error': 'invalid_pin'}


def test_access_unknown_room(client):
    res = client.post('/rooms/ZZZZZZ/access', json={'adminPin': '1234'})
    assert res.status_code == 404
    assert res.get_json() == {'error': 'room_not_found'}


def test_refresh_ref_tokens(client, rooms):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId']}/refresh-ref-tokens", json={'adminPin': data['adminPin']})
    assert res.status_code == 200
    fresh = res.get_json()
    assert fresh['roomId'] == data['roomId']
    assert fresh['adminPin'] == data['adminPin']
    for judge in ('left', 'center', 'right'):
        old_token = data['joinQRCodes'][judge]['token']
        assert fresh['joinQRCodes'][judge]['token'] != old_token
        assert not rooms.is_valid_ref_token(data['roomId'], judge, old_token)


def test_refresh_ref_tokens_errors(client):
    data = _create(client)
    res = client.post(f"/rooms/{data['roomId']}/refresh-ref-tokens", json={'adminPin': '0'})
    assert res.status_code == 403
    assert res.get_json() == {'error': 'invalid_pin'}
    res = client.post('/rooms/ZZZZZZ/refresh-ref-tokens', json={'adminPin': data['adminPin']})
    assert res.status_code == 404
    assert res.get_json() == {'error': 'room_not_found'}


def test_room_state_snapshot(client, rooms):
    data = _create(client)
    rooms.get_room_state(data['roomId']).set_vote('center', 'white')
    res = client.get(f"/rooms/{data['roomId']}/state")
    assert res.status_code == 200
    snap = res.get_json()
    assert snap['phase'] == 'idle'
    assert snap['votes'] == {'left': None, 'center': 'white', 'right': None}
    assert client.get('/rooms/ZZZZZZ/state').status_code == 404


def test_close_room(client, rooms):
    data = _create(client)
    res = client.delete(f"/rooms/{data['roomId']}", json={'adminPin': 'bad'})
    assert res.status_code == 403
    res = client.delete(f"/rooms/{data['roomId']}", json={'adminPin': data['adminPin']})
    assert res.status_code == 200
    assert res.get_json() == {'ok': True}
    assert data['roomId'] not in rooms
    res = client.post(f"/rooms/{data['roomId']}/access", json={'adminPin': data['adminPin']})
    assert res.status_code == 404
