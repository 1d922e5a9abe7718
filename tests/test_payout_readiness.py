URL = "/ops/payouts/readiness"


def test_ready_when_fully_configured(client, opennode_env):
    r = client.get(URL)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["payoutReady"] is True
    assert body["providerMode"] == "opennode"
    assert body["reasons"] == []
    assert body["checks"]["hasOpenNodeApiKey"] is True
    assert body["checks"]["callbackUrl"]["valid"] is True
    # unset base URL falls back to the default and is not a problem
    assert body["checks"]["baseUrl"] == {"configured": False, "valid": True, "value": None}


def test_not_ready_without_key(client, no_opennode_env):
    body = client.get(URL).json()
    assert body["ok"] is True
    assert body["payoutReady"] is False
    assert body["providerMode"] == "mock"
    assert body["checks"]["hasOpenNodeApiKey"] is False
    assert "OPENNODE_API_KEY missing" in body["reasons"]
    assert "OPENNODE_WITHDRAWAL_CALLBACK_URL missing" in body["reasons"]


def test_api_key_is_never_echoed(client, opennode_env):
    assert opennode_env.OPENNODE_API_KEY not in client.get(URL).text


def test_invalid_callback_url(client, opennode_env, monkeypatch):
    monkeypatch.setattr(opennode_env, "OPENNODE_WITHDRAWAL_CALLBACK_URL", "not a url")
    body = client.get(URL).json()
    assert body["payoutReady"] is False
    assert body["reasons"] == ["OPENNODE_WITHDRAWAL_CALLBACK_URL invalid_url"]
    assert body["checks"]["callbackUrl"] == {"configured": True, "valid": False, "value": "not a url"}


def test_non_http_callback_url(client, opennode_env, monkeypatch):
    monkeypatch.setattr(opennode_env, "OPENNODE_WITHDRAWAL_CALLBACK_URL", "ftp://api.example.com/hook")
    body = client.get(URL).json()
    assert body["reasons"] == ["OPENNODE_WITHDRAWAL_CALLBACK_URL invalid_protocol"]


def test_invalid_base_url_when_set(client, opennode_env, monkeypatch):
    monkeypatch.setattr(opennode_env, "OPENNODE_BASE_URL", "dev-api.opennode.co")
    body = client.get(URL).json()
    assert body["payoutReady"] is False
    assert body["reasons"] == ["OPENNODE_BASE_URL invalid_url"]
    assert body["checks"]["baseUrl"]["configured"] is True
