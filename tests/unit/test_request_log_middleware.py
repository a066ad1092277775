import logging


async def test_middleware_logs_incoming_request(gateway_client, caplog):
    """Every request is logged with its url (query included), method and host."""
    caplog.set_level(logging.DEBUG, logger='shipyard_proxy.middleware')

    await gateway_client.get('/style.css?v=3', headers={'host': 'acme.shipyard.example'})

    messages = [r.getMessage() for r in caplog.records if r.name == 'shipyard_proxy.middleware']
    assert messages == [
        'Request received: url=/style.css?v=3 method=GET host=acme.shipyard.example'
    ]


async def test_forward_outcome_is_logged(gateway_client, caplog):
    caplog.set_level(logging.INFO, logger='shipyard_proxy.forwarding')

    await gateway_client.get('/', headers={'host': 'acme.shipyard.example'})

    messages = [r.getMessage() for r in caplog.records if r.name == 'shipyard_proxy.forwarding']
    assert any('http://upstream/sites/acme/index.html' in m and 'outcome=completed' in m
               for m in messages)
