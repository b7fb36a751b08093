import pytest
from fastapi.testclient import TestClient

from stratlab.config import Settings
from stratlab.main import create_app
from stratlab.store import InMemoryDocumentStore

CSV = "date,open,high,low,close,volume\n" + "".join(
    f"2024-02-{day:02d},{100 + day},{101 + day},{99 + day},{100 + day},1000\n" for day in range(1, 21)
)


def _rule(kind, operator, value):
    return {
        'type': kind,
        'conditionGroups': [{'conditions': [{
            'indicator': {'type': 'RSI', 'period': 5},
            'operator': operator,
            'target': {'kind': 'value', 'value': value},
        }]}],
    }


def _strategy(name='RSI swing', **fields):
    return {'name': name, 'buyRule': _rule('BUY', '<', 30), 'sellRule': _rule('SELL', '>', 70), **fields}


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def client(tmp_path, store):
    settings = Settings(default_csv_path=str(tmp_path / 'missing.csv'), batch_processes=1, page_size=2)
    return TestClient(create_app(settings=settings, store=store))


@pytest.fixture
def loaded(client):
    response = client.post('/upload-csv', files={'file': ('bars.csv', CSV, 'text/csv')})
    assert response.status_code == 200
    return client


def test_health(client):
    body = client.get('/').json()
    assert body['status'] == 'online'
    assert body['version'] == '1.0.0'


def test_status_and_upload(client):
    assert client.get('/status').json() == {'data_loaded': False, 'bars': 0}
    response = client.post('/upload-csv', files={'file': ('bars.csv', CSV, 'text/csv')})
    assert response.json()['bars'] == 20
    assert client.get('/status').json() == {'data_loaded': True, 'bars': 20}


def test_upload_missing_columns(client):
    response = client.post('/upload-csv', files={'file': ('bars.csv', 'date,close\n2024-01-01,1\n', 'text/csv')})
    assert response.status_code == 400


def test_indicator_catalogue(client):
    catalogue = client.get('/indicators').json()
    assert set(catalogue) == {'PRICE', 'VOLUME', 'MA', 'EMA', 'RSI', 'MACD', 'BOLLINGER', 'STOCHASTIC', 'OBV', 'ATR'}
    assert catalogue['OBV'] == []
    assert catalogue['RSI'] == [{'name': 'period', 'value': 14, 'min': 1, 'max': 100, 'step': 1}]


def test_indicator_needs_data(client):
    response = client.post('/indicator', json={'indicator': {'type': 'MA', 'period': 3}})
    assert response.status_code == 400


def test_indicator_series(loaded):
    body = loaded.post('/indicator', json={'indicator': {'type': 'MA', 'period': 3}}).json()
    assert body['warmup'] == 2
    assert body['values'][:2] == [None, None]
    assert body['values'][2] == pytest.approx(102.0)
    assert body['dates'][0] == '2024-02-01'


def test_indicator_with_inline_bars(client):
    bars = [
        {'date': f"2024-03-0{i}", 'open': 1, 'high': 2, 'low': 0, 'close': float(i), 'adjClose': float(i),
         'volume': 10}
        for i in range(1, 4)
    ]
    body = client.post('/indicator', json={'indicator': {'type': 'OBV'}, 'bars': bars}).json()
    assert body['values'] == [0.0, 10.0, 20.0]


def test_indicator_rejects_bad_parameters(loaded):
    response = loaded.post('/indicator', json={'indicator': {'type': 'MA', 'period': 0}})
    assert response.status_code == 422


def test_inline_bars_out_of_order(client):
    bars = [
        {'date': d, 'open': 1, 'high': 2, 'low': 0, 'close': 1, 'adjClose': 1, 'volume': 10}
        for d in ('2024-03-02', '2024-03-01')
    ]
    response = client.post('/indicator', json={'indicator': {'type': 'VOLUME'}, 'bars': bars})
    assert response.status_code == 400


def test_evaluate(loaded):
    body = loaded.post('/evaluate', json={'strategy': _strategy()}).json()
    assert body['bars'] == 20
    assert body['warmup'] == 5
    assert len(body['buy']) == 20
    # a steadily rising series never dips below RSI 30
    assert body['events'] == []


def test_evaluate_batch(loaded):
    strategies = [_strategy('a'), _strategy('b', sellRule=_rule('SELL', '>', 50))]
    body = loaded.post('/evaluate-batch', json={'strategies': strategies}).json()
    assert body['strategies'] == 2
    assert [r['warmup'] for r in body['results']] == [5, 5]


def test_strategy_lifecycle(loaded):
    headers = {'X-User-Id': 'alice'}
    created = loaded.post('/strategies', json=_strategy(), headers=headers)
    assert created.status_code == 201
    strategy = created.json()
    assert strategy['createdAt'] == strategy['updatedAt']

    fetched = loaded.get(f"/strategies/{strategy['id']}", headers=headers).json()
    assert fetched == strategy

    updated = loaded.put(f"/strategies/{strategy['id']}", json={'description': 'tuned'}, headers=headers).json()
    assert updated['description'] == 'tuned'
    assert updated['updatedAt'] > strategy['updatedAt']

    signals = loaded.post(f"/strategies/{strategy['id']}/evaluate", headers=headers).json()
    assert signals['bars'] == 20

    assert loaded.delete(f"/strategies/{strategy['id']}", headers=headers).status_code == 204
    assert loaded.get(f"/strategies/{strategy['id']}", headers=headers).status_code == 404


def test_strategy_errors(client):
    alice, bob = {'X-User-Id': 'alice'}, {'X-User-Id': 'bob'}

    invalid = client.post('/strategies', json={'name': ''}, headers=alice)
    assert invalid.status_code == 422
    assert len(invalid.json()['problems']) == 3

    strategy = client.post('/strategies', json=_strategy(), headers=alice).json()
    assert client.get(f"/strategies/{strategy['id']}", headers=bob).status_code == 403
    assert client.put(f"/strategies/{strategy['id']}", json={'userId': 'bob'}, headers=alice).status_code == 422
    assert client.delete(f"/strategies/{strategy['id']}", headers=bob).status_code == 403
    assert client.post('/strategies', json=_strategy()).status_code == 422


def test_visibility_and_clone(client):
    alice, bob = {'X-User-Id': 'alice'}, {'X-User-Id': 'bob'}
    strategy = client.post('/strategies', json=_strategy(), headers=alice).json()

    published = client.put(f"/strategies/{strategy['id']}/visibility", json={'isPublic': True}, headers=alice)
    assert published.json()['isPublic'] is True

    public = client.get('/strategies/public').json()
    assert [item['id'] for item in public['items']] == [strategy['id']]

    clone = client.post(f"/strategies/{strategy['id']}/clone", json={}, headers=bob)
    assert clone.status_code == 201
    assert clone.json()['userId'] == 'bob'
    assert clone.json()['name'] == 'RSI swing (copy)'


def test_list_pagination(client):
    alice = {'X-User-Id': 'alice'}
    for name in ('c', 'a', 'b'):
        client.post('/strategies', json=_strategy(name, tags=['x'] if name != 'b' else []), headers=alice)

    first = client.get('/strategies', params={'sortBy': 'name', 'sortOrder': 'asc'}, headers=alice).json()
    assert [item['name'] for item in first['items']] == ['a', 'b']
    second = client.get('/strategies', params={'sortBy': 'name', 'sortOrder': 'asc', 'cursor': first['cursor']},
                        headers=alice).json()
    assert [item['name'] for item in second['items']] == ['c']
    assert second['cursor'] is None

    tagged = client.get('/strategies', params={'tag': 'x', 'sortBy': 'name', 'sortOrder': 'asc'}, headers=alice).json()
    assert [item['name'] for item in tagged['items']] == ['a', 'c']

    assert client.get('/strategies', params={'sortBy': 'colour'}, headers=alice).status_code == 422
    assert client.get('/strategies', params={'cursor': 'nope'}, headers=alice).status_code == 422


def test_store_unavailable(client, store):
    store.close()
    response = client.get('/strategies/anything')
    assert response.status_code == 503
    assert response.json()['retryable'] is True


def test_upload_non_numeric_prices(client):
    text = "date,open,high,low,close,volume\n2024-01-01,1,2,0,1,5\n2024-01-02,1,2,0,abc,5\n"
    response = client.post('/upload-csv', files={'file': ('bars.csv', text, 'text/csv')})
    assert response.status_code == 400
    assert 'close' in response.json()['detail']
    assert client.get('/status').json()['data_loaded'] is False


def test_inline_bars_must_be_finite(client):
    bars = [{'date': '2024-03-01', 'open': 1, 'high': 2, 'low': 0, 'close': 'NaN', 'adjClose': 1, 'volume': 10}]
    response = client.post('/indicator', json={'indicator': {'type': 'VOLUME'}, 'bars': bars})
    assert response.status_code == 422


def test_startup_survives_bad_default_csv(tmp_path, store):
    path = tmp_path / 'default.csv'
    path.write_text("date,open,high,low,close,volume\n2024-01-01,1,2,0,abc,5\n")
    app = create_app(settings=Settings(default_csv_path=str(path)), store=store)
    with TestClient(app) as client:
        assert client.get('/status').json() == {'data_loaded': False, 'bars': 0}
