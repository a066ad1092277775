import pytest

from shipyard_proxy.config import Settings

TENANT_HOST = {'host': 'acme.shipyard.example'}


async def test_encoded_parent_segment_cannot_reach_other_tenant(gateway_client):
    resp = await gateway_client.get('/%2e%2e/globex/headers', headers=TENANT_HOST)

    assert resp.status_code == 400
    assert 'Invalid path' in resp.json()['detail']


async def test_encoded_slash_parent_segment_is_rejected(gateway_client):
    resp = await gateway_client.get('/docs/..%2F..%2Fglobex/headers', headers=TENANT_HOST)

    assert resp.status_code == 400


async def test_encoded_question_mark_stays_in_object_key(gateway_client):
    resp = await gateway_client.get('/raw/headers%3Fx=1', headers=TENANT_HOST)

    assert resp.status_code == 200
    data = resp.json()
    assert data['tenant'] == 'acme'
    assert data['raw_path'] == '/sites/acme/raw/headers%3Fx=1'
    assert data['query'] == {}


async def test_encoded_hash_and_real_query_are_both_forwarded(gateway_client):
    resp = await gateway_client.get('/raw/a%23b.html?v=2', headers=TENANT_HOST)

    data = resp.json()
    assert data['raw_path'] == '/sites/acme/raw/a%23b.html'
    assert data['query'] == {'v': '2'}


class TestPathMode:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(
            base_path='http://upstream/sites',
            resolution_mode='path',
            status_page=False,
        )

    async def test_encoded_parent_segment_cannot_reach_other_tenant(self, gateway_client):
        resp = await gateway_client.get('/acme/%2e%2e/globex/headers')

        assert resp.status_code == 400
        assert 'Invalid path' in resp.json()['detail']

    async def test_encoded_question_mark_stays_in_object_key(self, gateway_client):
        resp = await gateway_client.get('/acme/raw/headers%3Fx=1')

        data = resp.json()
        assert data['raw_path'] == '/sites/acme/raw/headers%3Fx=1'
        assert data['query'] == {}
