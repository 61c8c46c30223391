import asyncio

from scorehub.gateway import ConnectionManager, SyncGateway

MATCH = {
    "scoreStringSide1": "6",
    "scoreStringSide2": "4",
    "side1PointScore": "0",
    "side2PointScore": "15",
    "sets": [{"setNumber": 1, "side1Score": 6, "side2Score": 4, "winningSide": 1}],
    "server": {"sideNumber": 1, "playerNumber": 1, "returningSide": "2"},
    "player1Name": "Alice",
    "player2Name": "Bea",
}


def _connect(client, key):
    ws = client.websocket_connect(f"/ws?apiKey={key}")
    sock = ws.__enter__()
    # one round trip guarantees the connection is registered for broadcasts
    sock.send_json({"event": "get:scoreboards", "requestId": "ping"})
    reply = sock.receive_json()
    assert reply["requestId"] == "ping"
    return ws, sock


def test_get_scoreboards(client, api_key):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "get:scoreboards", "requestId": "r1"})
        reply = ws.receive_json()

    assert reply["event"] == "scoreboards:response"
    assert reply["requestId"] == "r1"
    assert reply["success"] is True
    assert [s["name"] for s in reply["data"]] == ["Stadium Scoreboard", "Grandstand Scoreboard"]
    assert "timestamp" in reply


def test_header_credential_is_accepted(client, api_key):
    with client.websocket_connect("/ws", headers={"x-api-key": api_key}) as ws:
        ws.send_json({"event": "get:scoreboards", "requestId": "r1"})
        assert ws.receive_json()["success"] is True


def test_wrong_key_is_rejected_before_store_access(client, app):
    with client.websocket_connect("/ws?apiKey=wrong") as ws:
        ws.send_json({"event": "create:scoreboard", "requestId": "r1", "data": {"name": "Court 1"}})
        reply = ws.receive_json()

    assert reply["event"] == "error:response"
    assert reply["success"] is False
    assert reply["error"]["code"] == "UNAUTHORIZED"
    assert len(app.state.scoreboards.find_all()) == 2


def test_key_is_checked_on_every_message(client, api_key, monkeypatch):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "get:scoreboards", "requestId": "r1"})
        assert ws.receive_json()["success"] is True

        monkeypatch.setenv("API_KEY", "rotated")
        ws.send_json({"event": "get:scoreboards", "requestId": "r2"})
        reply = ws.receive_json()

    assert reply["error"]["code"] == "UNAUTHORIZED"


def test_create_scoreboard_replies_then_broadcasts_to_all(client, api_key):
    ctx_a, a = _connect(client, api_key)
    ctx_b, b = _connect(client, api_key)
    try:
        a.send_json({"event": "create:scoreboard", "requestId": "r1", "data": {"name": "Court 1"}})
        reply = a.receive_json()
        echoed = a.receive_json()
        other = b.receive_json()
    finally:
        ctx_b.__exit__(None, None, None)
        ctx_a.__exit__(None, None, None)

    assert reply["event"] == "scoreboards:response"
    assert reply["data"]["name"] == "Court 1"
    assert len(reply["data"]["id"]) == 8
    for message in (echoed, other):
        assert message["event"] == "scoreboard:created"
        assert message["data"] == reply["data"]
        assert "requestId" not in message


def test_delete_missing_scoreboard_still_broadcasts(client, api_key):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "delete:scoreboard", "requestId": "r1", "data": {"id": "nope"}})
        reply = ws.receive_json()
        broadcast = ws.receive_json()

    assert reply["success"] is True
    assert reply["data"] == {"success": False, "message": "Scoreboard not found"}
    assert broadcast["event"] == "scoreboard:deleted"
    assert broadcast["data"] == {"id": "nope"}


def test_delete_existing_scoreboard_broadcasts_once(client, api_key, app):
    target = app.state.scoreboards.find_all()[0]
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "delete:scoreboard", "requestId": "r1", "data": {"id": target.id}})
        reply = ws.receive_json()
        broadcast = ws.receive_json()
        ws.send_json({"event": "get:scoreboards", "requestId": "r2"})
        after = ws.receive_json()

    assert reply["data"] == {"success": True, "message": "Scoreboard deleted successfully"}
    assert broadcast["data"] == {"id": target.id}
    # the next message is the reply to r2, not a duplicate broadcast
    assert after["requestId"] == "r2"
    assert target.id not in [s["id"] for s in after["data"]]


def test_update_tennis_match_without_match_fails_and_creates_nothing(client, api_key, app):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({
            "event": "update:tennis:match",
            "requestId": "r1",
            "data": {"scoreboardId": "S1", "matchData": {"side1PointScore": "15"}},
        })
        reply = ws.receive_json()
        ws.send_json({"event": "get:tennis:match", "requestId": "r2", "data": {"scoreboardId": "S1"}})
        lookup = ws.receive_json()

    assert reply["event"] == "error:response"
    assert reply["requestId"] == "r1"
    assert reply["error"]["code"] == "UPDATE_TENNIS_MATCH_FAILED"
    assert reply["error"]["details"] == "No tennis match found for this scoreboard"
    # no broadcast followed the failure: the next frame is the lookup reply
    assert lookup["requestId"] == "r2"
    assert lookup["data"] is None
    assert app.state.matches.find_all() == []


def test_update_tennis_match_merges_and_broadcasts(client, api_key, headers, app):
    scoreboard = app.state.scoreboards.find_all()[0]
    created = client.post(f"/scoreboards/{scoreboard.id}/tennis", json=MATCH, headers=headers).json()

    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({
            "event": "update:tennis:match",
            "requestId": "r1",
            "data": {
                "scoreboardId": scoreboard.id,
                "matchData": {"side1PointScore": "30", "player2Name": None},
            },
        })
        reply = ws.receive_json()
        broadcast = ws.receive_json()

    assert reply["event"] == "tennis:match:response"
    updated = reply["data"]
    assert updated["id"] == created["id"]
    assert updated["side1PointScore"] == "30"
    # absent and null fields fall back to the stored values
    assert updated["side2PointScore"] == "15"
    assert updated["player2Name"] == "Bea"
    assert updated["sets"] == MATCH["sets"]
    assert broadcast["event"] == "tennis:match:updated"
    assert broadcast["data"] == updated


def test_get_tennis_match(client, api_key, headers, app):
    scoreboard = app.state.scoreboards.find_all()[0]
    created = client.post(f"/scoreboards/{scoreboard.id}/tennis", json=MATCH, headers=headers).json()

    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "get:tennis:match", "requestId": "r1", "data": {"scoreboardId": scoreboard.id}})
        reply = ws.receive_json()

    assert reply["event"] == "tennis:match:response"
    assert reply["data"] == created


def test_invalid_payload_reports_handler_error(client, api_key, app):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_json({"event": "create:scoreboard", "requestId": "r1", "data": {}})
        reply = ws.receive_json()

    assert reply["error"]["code"] == "CREATE_SCOREBOARD_FAILED"
    assert reply["error"]["message"] == "Failed to create scoreboard"
    assert len(app.state.scoreboards.find_all()) == 2


def test_protocol_errors(client, api_key):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_text("not json")
        bad_json = ws.receive_json()
        ws.send_json(["no", "event"])
        no_event = ws.receive_json()
        ws.send_json({"event": "launch:rocket", "requestId": "r9"})
        unknown = ws.receive_json()

    assert bad_json["error"]["code"] == "INVALID_MESSAGE"
    assert no_event["error"]["code"] == "INVALID_MESSAGE"
    assert unknown["error"]["code"] == "UNKNOWN_EVENT"
    assert unknown["requestId"] == "r9"


def test_http_mutations_reach_websocket_subscribers(client, api_key, headers):
    ctx, ws = _connect(client, api_key)
    try:
        created = client.post("/scoreboards", json={"name": "Court 7"}, headers=headers).json()
        sb_created = ws.receive_json()

        match = client.post("/tennis", json={**MATCH, "scoreboardId": created["id"]}, headers=headers).json()
        match_created = ws.receive_json()

        client.put(f"/tennis/{match['id']}", json={**MATCH, "scoreboardId": created["id"], "side1PointScore": "40"}, headers=headers)
        match_updated = ws.receive_json()

        client.delete(f"/tennis/{match['id']}", headers=headers)
        match_deleted = ws.receive_json()

        client.delete(f"/scoreboards/{created['id']}", headers=headers)
        sb_deleted = ws.receive_json()
    finally:
        ctx.__exit__(None, None, None)

    assert sb_created == {**sb_created, "event": "scoreboard:created", "data": created}
    assert match_created["event"] == "tennis:match:created"
    assert match_created["data"] == match
    assert match_created["data"]["sets"] == MATCH["sets"]
    assert match_updated["event"] == "tennis:match:updated"
    assert match_updated["data"]["side1PointScore"] == "40"
    assert match_deleted == {**match_deleted, "event": "tennis:match:deleted", "data": {"id": match["id"]}}
    assert sb_deleted["event"] == "scoreboard:deleted"
    assert sb_deleted["data"] == {"id": created["id"]}


def test_bulk_replace_broadcasts_full_list(client, api_key, headers):
    ctx, ws = _connect(client, api_key)
    try:
        client.put("/scoreboards", json=[{"id": "a1", "name": "A"}], headers=headers)
        message = ws.receive_json()
    finally:
        ctx.__exit__(None, None, None)

    assert message["event"] == "scoreboard:updated"
    assert message["data"] == [{"id": "a1", "name": "A"}]


class DummyWS:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def accept(self):
        return None

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("gone")
        self.sent.append(data)


def test_broadcast_drops_broken_connections():
    async def _inner():
        manager = ConnectionManager()
        good = DummyWS()
        bad = DummyWS(fail=True)
        good_id = await manager.connect(good)
        await manager.connect(bad)

        await manager.broadcast({"event": "x"})
        await manager.drain()
        return manager, good, good_id

    manager, good, good_id = asyncio.run(_inner())
    assert good.sent == [{"event": "x"}]
    assert list(manager.active_connections) == [good_id]


class StalledWS(DummyWS):
    async def send_json(self, data):
        await asyncio.sleep(3600)


async def _until_sent(ws, count=1):
    for _ in range(100):
        if len(ws.sent) >= count:
            return
        await asyncio.sleep(0)


def test_stalled_viewer_does_not_block_mutations(tmp_path):
    from scorehub.match_store import MatchStore
    from scorehub.models import MatchData
    from scorehub.scoreboard_store import ScoreboardStore

    async def _inner():
        scoreboards = ScoreboardStore(tmp_path / "s.json")
        matches = MatchStore(tmp_path / "m.json")
        gateway = SyncGateway(scoreboards, matches)
        await scoreboards.load()
        await matches.load()

        good = DummyWS()
        await gateway.connections.connect(StalledWS())
        await gateway.connections.connect(good)

        created = await asyncio.wait_for(scoreboards.create("Court 1"), timeout=1.0)
        await asyncio.wait_for(
            matches.create(MatchData(scoreboard_id=created.id)), timeout=1.0
        )
        await _until_sent(good, 2)
        return good

    good = asyncio.run(_inner())
    assert [m["event"] for m in good.sent] == ["scoreboard:created", "tennis:match:created"]


def test_full_outbox_drops_connection():
    async def _inner():
        manager = ConnectionManager(outbox_size=1)
        stalled_id = await manager.connect(StalledWS())
        for n in range(3):
            await manager.broadcast({"event": "x", "n": n})
            await asyncio.sleep(0)
        return manager, stalled_id

    manager, stalled_id = asyncio.run(_inner())
    assert stalled_id not in manager.active_connections


def test_binary_frame_is_rejected_and_connection_survives(client, api_key):
    with client.websocket_connect(f"/ws?apiKey={api_key}") as ws:
        ws.send_bytes(b"\x00\x01")
        rejected = ws.receive_json()
        ws.send_json({"event": "get:scoreboards", "requestId": "r1"})
        reply = ws.receive_json()

    assert rejected["event"] == "error:response"
    assert rejected["error"]["code"] == "INVALID_MESSAGE"
    assert reply["requestId"] == "r1"
    assert reply["success"] is True


def test_bridge_methods_broadcast_without_request(tmp_path):
    from scorehub.match_store import MatchStore
    from scorehub.scoreboard_store import ScoreboardStore

    async def _inner():
        gateway = SyncGateway(ScoreboardStore(tmp_path / "s.json"), MatchStore(tmp_path / "m.json"))
        ws = DummyWS()
        await gateway.connections.connect(ws)
        await gateway.emit_scoreboard_deleted("abc")
        await gateway.emit_match_deleted("m1")
        await gateway.connections.drain()
        return ws

    ws = asyncio.run(_inner())
    assert [(m["event"], m["data"]) for m in ws.sent] == [
        ("scoreboard:deleted", {"id": "abc"}),
        ("tennis:match:deleted", {"id": "m1"}),
    ]
