def test_chat_rate_limit_rejects_after_ceiling(make_client, upstream) -> None:
    client = make_client(EDGE_CHAT_RATE_LIMIT="2")
    upstream.default = (200, {"id": "ok"})
    payload = {"messages": [{"role": "user", "content": "hello"}]}

    first = client.post("/api/ollama", json=payload)
    assert first.status_code == 200
    assert first.headers["X-RateLimit-Limit"] == "2"
    assert first.headers["X-RateLimit-Remaining"] == "1"
    assert client.post("/api/claude", json=payload).status_code == 200

    rejected = client.post("/api/ollama", json=payload)
    assert rejected.status_code == 429
    assert rejected.json()["message"] == "Too many requests"
    assert int(rejected.headers["Retry-After"]) >= 1
    assert rejected.headers["X-RateLimit-Remaining"] == "0"
    assert len(upstream.calls) == 2


def test_rotating_client_id_header_does_not_reset_window(make_client, upstream) -> None:
    client = make_client(EDGE_CHAT_RATE_LIMIT="2")
    upstream.default = (200, {"id": "ok"})
    payload = {"messages": [{"role": "user", "content": "hello"}]}

    statuses = []
    for i in range(5):
        response = client.post(
            "/api/ollama", json=payload, headers={"x-client-id": f"caller-{i}"}
        )
        statuses.append(response.status_code)
    assert statuses == [200, 200, 429, 429, 429]
    assert len(upstream.calls) == 2
    assert client.app.state.rate_limits.chat.remaining("testclient") == 0
    assert client.app.state.rate_limits.chat.remaining("caller-4") == 2


def test_trusted_identifier_header_separates_callers(make_client, upstream) -> None:
    client = make_client(
        EDGE_API_RATE_LIMIT="1",
        EDGE_RATE_LIMIT_TRUSTED_IDENTIFIER_HEADER="x-forwarded-client",
    )
    upstream.default = (200, {"documents": []})
    headers_a = {"x-forwarded-client": "a"}
    headers_b = {"x-forwarded-client": "b"}
    assert client.get("/api/brainsait/hospitals", headers=headers_a).status_code == 200
    assert client.get("/api/brainsait/hospitals", headers=headers_b).status_code == 200
    assert client.get("/api/brainsait/hospitals", headers=headers_a).status_code == 429


def test_health_endpoints_are_not_limited(make_client) -> None:
    client = make_client(EDGE_CHAT_RATE_LIMIT="1", EDGE_API_RATE_LIMIT="1")
    for _ in range(5):
        assert client.get("/healthz").status_code == 200


def test_rate_limiting_can_be_disabled(make_client, upstream) -> None:
    client = make_client(EDGE_API_RATE_LIMIT="1", EDGE_RATE_LIMIT_ENABLED="false")
    upstream.default = (200, {"documents": []})
    for _ in range(3):
        assert client.get("/api/brainsait/hospitals").status_code == 200
