"""Tests for the HTTP and WebSocket API."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from api import create_app
from auth import JWTSessionVerifier, create_session_token
from database import MemoryDocumentStore

SECRET = 'test-secret'


def headers(user_id):
    return {'Authorization': f'Bearer {create_session_token(user_id, SECRET)}'}


@pytest.fixture
def client():
    app = create_app(store=MemoryDocumentStore(), session_verifier=JWTSessionVerifier(SECRET))
    with TestClient(app) as client:
        yield client


def create_swap(client, from_user='alice', to_user='bob'):
    response = client.post('/swaps', headers=headers(from_user), json={
        'to_user_id': to_user,
        'from_listing_id': 'listing-a',
        'to_listing_id': 'listing-b',
        'message': 'Swap?',
    })
    assert response.status_code == 201
    return response.json()


def test_root(client):
    assert client.get('/').json()['status'] == 'running'


def test_requests_need_a_valid_session(client):
    assert client.get('/notifications').status_code in (401, 403)
    assert client.get('/notifications', headers={'Authorization': 'Bearer nonsense'}).status_code == 401

    foreign = create_session_token('alice', 'other-secret')
    response = client.get('/notifications', headers={'Authorization': f'Bearer {foreign}'})
    assert response.status_code == 401


def test_expired_session_is_rejected(client):
    token = create_session_token('alice', SECRET, exp=1)
    response = client.get('/dashboard', headers={'Authorization': f'Bearer {token}'})
    assert response.status_code == 401
    assert response.json()['detail'] == 'Session has expired'


def test_swap_flow(client):
    swap = create_swap(client)

    received = client.get('/swaps/received', headers=headers('bob')).json()
    assert received['count'] == 1
    assert received['pending'] == 1

    response = client.post(f"/swaps/{swap['id']}/accept", headers=headers('bob'))
    assert response.status_code == 200
    body = response.json()
    assert body['entity']['status'] == 'accepted'
    assert body['previous_status'] == 'pending'
    assert body['notified'] is True
    assert body['warning'] is None

    notes = client.get('/notifications', headers=headers('alice')).json()
    assert notes['unread_count'] == 1
    assert notes['notifications'][0]['data']['status'] == 'accepted'


def test_conflict_reports_current_status(client):
    swap = create_swap(client)
    client.post(f"/swaps/{swap['id']}/reject", headers=headers('bob'))

    response = client.post(f"/swaps/{swap['id']}/accept", headers=headers('bob'))

    assert response.status_code == 409
    detail = response.json()['detail']
    assert detail['current_status'] == 'rejected'
    assert detail['requested_status'] == 'accepted'


def test_forbidden_and_not_found(client):
    swap = create_swap(client)

    assert client.post(f"/swaps/{swap['id']}/accept", headers=headers('alice')).status_code == 403
    assert client.get(f"/swaps/{swap['id']}", headers=headers('mallory')).status_code == 403
    assert client.post('/swaps/missing/accept', headers=headers('bob')).status_code == 404
    assert client.post(f"/swaps/{swap['id']}/explode", headers=headers('bob')).status_code == 422


def test_invalid_swap_is_bad_request(client):
    response = client.post('/swaps', headers=headers('alice'), json={
        'to_user_id': 'alice', 'from_listing_id': 'a', 'to_listing_id': 'b'
    })
    assert response.status_code == 400


def test_order_flow_and_dashboard(client):
    response = client.post('/orders', headers=headers('carol'), json={
        'items': [
            {'listing_id': 'mug', 'seller_id': 'sam', 'title': 'Mug', 'unit_price': '40', 'quantity': 2},
            {'listing_id': 'pen', 'seller_id': 'sam', 'title': 'Pen', 'unit_price': '20', 'quantity': 1},
        ],
        'delivery_method': 'delivery',
        'delivery_cost': '5',
        'payment_method': 'cash',
    })
    assert response.status_code == 201
    order = response.json()
    assert order['totalAmount'] == '105'

    assert client.post(
        f"/orders/{order['id']}/status", headers=headers('carol'), json={'status': 'cancelled'}
    ).status_code == 403
    moved = client.post(
        f"/orders/{order['id']}/status", headers=headers('sam'), json={'status': 'delivered'}
    )
    assert moved.json()['entity']['status'] == 'delivered'

    seller_orders = client.get('/orders?role=seller', headers=headers('sam')).json()
    assert seller_orders['count'] == 1
    assert client.get(f"/orders/{order['id']}", headers=headers('carol')).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=headers('dave')).status_code == 403

    dashboard = client.get('/dashboard', headers=headers('sam')).json()
    assert dashboard['stats']['totalRevenue'] == '100'
    assert dashboard['stats']['totalSold'] == 3
    assert len(dashboard['analytics']['salesByDay']) == 7


def test_rental_flow(client):
    response = client.post('/rentals', headers=headers('ryan'), json={
        'listing_id': 'bike-1',
        'owner_id': 'olivia',
        'start_date': '2024-01-01T00:00:00Z',
        'end_date': '2024-01-03T00:00:00Z',
        'daily_rate': '20',
    })
    assert response.status_code == 201
    rental = response.json()
    assert rental['totalCost'] == '40'

    owning = client.get('/rentals/owning', headers=headers('olivia')).json()
    assert owning['pending'] == 1

    assert client.post(f"/rentals/{rental['id']}/cancel", headers=headers('olivia')).status_code == 403
    assert client.post(f"/rentals/{rental['id']}/approve", headers=headers('olivia')).status_code == 200


def test_notification_endpoints(client):
    create_swap(client)
    bob = headers('bob')

    [note] = client.get('/notifications', headers=bob).json()['notifications']
    assert client.post(f"/notifications/{note['id']}/read", headers=headers('alice')).status_code == 403
    assert client.post(f"/notifications/{note['id']}/read", headers=bob).json()['read'] is True
    assert client.get('/notifications/unread-count', headers=bob).json() == {'unread_count': 0}

    create_swap(client)
    assert client.post('/notifications/read-all', headers=bob).json() == {'marked_read': 1}
    assert client.delete('/notifications', headers=bob).json() == {'cleared': 2}

    settings = client.put('/notifications/settings', headers=bob, json={'swap_updates': False}).json()
    assert settings['swapUpdates'] is False
    assert settings['orderUpdates'] is True
    assert client.get('/notifications/settings', headers=bob).json()['swapUpdates'] is False


def test_limited_page_keeps_full_unread_count(client):
    create_swap(client)
    create_swap(client)
    bob = headers('bob')

    page = client.get('/notifications?limit=1', headers=bob).json()
    assert len(page['notifications']) == 1
    assert page['unread_count'] == 2

    everything = client.get('/notifications', headers=bob).json()
    assert len(everything['notifications']) == 2
    assert everything['unread_count'] == 2


def test_notification_stream(client):
    token = create_session_token('bob', SECRET)
    with client.websocket_connect(f'/notifications/stream?token={token}') as websocket:
        initial = websocket.receive_json()
        assert initial == {'type': 'notifications', 'notifications': [], 'unread_count': 0}

        create_swap(client)
        update = websocket.receive_json()
        assert update['unread_count'] == 1
        assert update['notifications'][0]['title'] == 'New Swap Request'

        websocket.send_text('ping')
        assert websocket.receive_text() == 'pong'


def test_push_socket_receives_pushes(client):
    token = create_session_token('bob', SECRET)
    with client.websocket_connect(f'/ws/push?token={token}') as websocket:
        create_swap(client)
        message = websocket.receive_json()
        assert message['type'] == 'push'
        assert message['title'] == 'New Swap Request'
        assert message['data']['type'] == 'swap'

        websocket.send_json({'type': 'ping'})
        assert websocket.receive_json()['type'] == 'pong'


def test_websocket_without_token_is_closed(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect('/ws/push') as websocket:
            websocket.receive_json()
