import pytest
from starlette.websockets import WebSocketDisconnect

from app.enums import Plan, Role

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def select(api, who, coach_id):
    return api.client.post("/api/v1/assignment/select", json={"coach_id": coach_id}, headers=who["headers"])


def send(api, who, peer_id, body):
    return api.client.post("/api/v1/messages", json={"with": peer_id, "body": body}, headers=who["headers"])


class TestAuthentication:
    def test_missing_token(self, api):
        response = api.client.get("/api/v1/conversations")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["code"] == "Unauthenticated"

    def test_expired_session(self, api):
        response = api.client.get("/api/v1/conversations", headers={"Authorization": "Bearer expired"})
        assert response.status_code == 401
        assert response.json()["code"] == "SessionExpired"

    def test_public_routes(self, api):
        assert api.client.get("/api/v1/health").json()["status"] == "ok"
        assert api.client.get("/").status_code == 200

    def test_unknown_route(self, api):
        alice = api.user("alice")
        response = api.client.get("/api/v1/nowhere", headers=alice["headers"])
        assert response.status_code == 404
        assert response.json()["code"] == "NotFound"


class TestAssignment:
    def test_select_switch_and_cooldown(self, api):
        client = api.user("client")
        coach_a = api.user("coach_a", role=Role.COACH)
        coach_b = api.user("coach_b", role=Role.COACH)

        available = api.client.get("/api/v1/coaches/available", headers=client["headers"]).json()
        assert {c["coach_id"] for c in available} == {coach_a["id"], coach_b["id"]}

        response = select(api, client, coach_a["id"])
        assert response.status_code == 200
        assert response.json()["assignment"]["coach_id"] == coach_a["id"]
        assert response.json()["ended_previous"] is None

        api.clock.advance(days=3)
        response = select(api, client, coach_b["id"])
        assert response.status_code == 409
        assert response.json()["code"] == "CooldownNotElapsed"
        assert response.json()["remaining_days"] == 2

        api.clock.advance(days=2)
        response = select(api, client, coach_b["id"])
        assert response.status_code == 200
        assert response.json()["ended_previous"]["status"] == "ended"

        current = api.client.get("/api/v1/assignment/current", headers=client["headers"]).json()
        assert current["coach_id"] == coach_b["id"]
        roster = api.client.get("/api/v1/coaches/me/clients", headers=coach_b["headers"]).json()
        assert [a["client_id"] for a in roster] == [client["id"]]

    def test_basic_plan_gets_402(self, api):
        client = api.user("basic", plan=Plan.BASIC)
        coach = api.user("coach", role=Role.COACH)
        response = select(api, client, coach["id"])
        assert response.status_code == 402
        assert response.json()["code"] == "PlanRequired"

    def test_full_coach_gets_409(self, api):
        coach = api.user("coach", role=Role.COACH, max_clients=1)
        assert select(api, api.user("first"), coach["id"]).status_code == 200
        response = select(api, api.user("second"), coach["id"])
        assert response.status_code == 409
        assert response.json()["code"] == "CapacityExceeded"

    def test_unknown_fields_rejected(self, api):
        client = api.user("client")
        response = api.client.post(
            "/api/v1/assignment/select",
            json={"coach_id": "x", "client_id": "someone"},
            headers=client["headers"],
        )
        assert response.status_code == 422
        assert response.json()["code"] == "InvalidRequest"


class TestMessaging:
    def test_send_list_read_unread(self, api):
        client = api.user("client")
        coach = api.user("coach", role=Role.COACH)
        assert send(api, client, coach["id"], "hi").json()["code"] == "NoCoach"
        select(api, client, coach["id"])

        first = send(api, client, coach["id"], "Hi coach")
        assert first.status_code == 201
        assert first.json()["role"] == "client"
        second = send(api, client, coach["id"], "Are you there?").json()

        unread = api.client.get("/api/v1/messages/unread", headers=coach["headers"]).json()
        assert unread["counts"] == {client["id"]: 2}

        page = api.client.get(
            "/api/v1/messages", params={"with": client["id"], "limit": 1}, headers=coach["headers"]
        ).json()
        assert [m["id"] for m in page] == [second["id"]]
        older = api.client.get(
            "/api/v1/messages",
            params={"with": client["id"], "before": page[0]["cursor"]},
            headers=coach["headers"],
        ).json()
        assert [m["id"] for m in older] == [first.json()["id"]]

        response = api.client.post(
            "/api/v1/messages/read",
            json={"with": client["id"], "up_to_id": second["id"]},
            headers=coach["headers"],
        )
        assert response.json() == {"updated": 2}
        unread = api.client.get("/api/v1/messages/unread", headers=coach["headers"]).json()
        assert unread["counts"] == {client["id"]: 0}

        conversations = api.client.get("/api/v1/conversations", headers=client["headers"]).json()
        assert len(conversations) == 1
        assert conversations[0]["peer_id"] == coach["id"]

    def test_outsider_and_admin_access(self, api):
        client = api.user("client")
        coach = api.user("coach", role=Role.COACH)
        outsider = api.user("outsider")
        admin = api.user("admin", role=Role.ADMIN)
        select(api, client, coach["id"])
        send(api, client, coach["id"], "private")
        conversation_id = api.client.get("/api/v1/conversations", headers=client["headers"]).json()[0]["id"]

        url = f"/api/v1/conversations/{conversation_id}/messages"
        assert api.client.get(url, headers=outsider["headers"]).status_code == 403
        assert [m["body"] for m in api.client.get(url, headers=admin["headers"]).json()] == ["private"]

    def test_bad_cursor(self, api):
        client = api.user("client")
        coach = api.user("coach", role=Role.COACH)
        select(api, client, coach["id"])
        response = api.client.get(
            "/api/v1/messages", params={"with": coach["id"], "before": "not-a-cursor!"}, headers=client["headers"]
        )
        assert response.status_code == 400
        assert response.json()["code"] == "InvalidRequest"


class TestAttachments:
    def test_upload_send_and_download(self, api):
        client = api.user("client")
        coach = api.user("coach", role=Role.COACH)
        outsider = api.user("outsider")
        select(api, client, coach["id"])

        upload = api.client.post(
            "/api/v1/attachments", files={"file": ("run.png", PNG, "image/png")}, headers=client["headers"]
        )
        assert upload.status_code == 201
        key = upload.json()["storage_key"]
        assert upload.json()["bytes"] == len(PNG)

        message = api.client.post(
            "/api/v1/messages", json={"with": coach["id"], "attachment_key": key}, headers=client["headers"]
        ).json()
        assert message["message_type"] == "image"
        assert message["attachment"]["storage_key"] == key

        download = api.client.get(f"/api/v1/attachments/{key}", headers=coach["headers"])
        assert download.status_code == 200
        assert download.content == PNG
        assert download.headers["content-type"] == "image/png"
        assert "run.png" in download.headers["content-disposition"]

        assert api.client.get(f"/api/v1/attachments/{key}", headers=outsider["headers"]).status_code == 403

    def test_disallowed_type(self, api):
        client = api.user("client")
        response = api.client.post(
            "/api/v1/attachments",
            files={"file": ("setup.exe", b"MZ\x90\x00", "application/x-msdownload")},
            headers=client["headers"],
        )
        assert response.status_code == 415
        assert response.json()["reason"] == "mime_not_allowed"

    def test_oversize_body_rejected_from_content_length(self, api):
        client = api.user("client")
        headers = {
            **client["headers"],
            "Content-Type": "multipart/form-data; boundary=xyz",
            "Content-Length": str(50 * 1024 * 1024),
        }
        response = api.client.post("/api/v1/attachments", content=b"--xyz--", headers=headers)
        assert response.status_code == 413
        assert response.json()["reason"] == "too_large"


class TestChatbot:
    def test_turn_history_and_purge(self, api):
        alice = api.user("alice")

        response = api.client.post("/api/v1/chatbot/turn", json={"text": "How much water?"}, headers=alice["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["user_msg"]["role"] == "user"
        assert body["assistant_msg"]["content"] == api.assistant.answer
        assert [m["role"] for m in body["history"]] == ["user", "assistant"]

        history = api.client.get("/api/v1/chatbot/history", headers=alice["headers"]).json()
        assert [m["content"] for m in history] == ["How much water?", api.assistant.answer]

        assert api.client.delete("/api/v1/chatbot/history", headers=alice["headers"]).json() == {"purged": 2}
        assert api.client.get("/api/v1/chatbot/history", headers=alice["headers"]).json() == []

    def test_assistant_failure_is_502(self, api):
        alice = api.user("alice")
        api.assistant.error = RuntimeError("model down")
        response = api.client.post("/api/v1/chatbot/turn", json={"text": "hello"}, headers=alice["headers"])
        assert response.status_code == 502
        assert response.json()["code"] == "AssistantUnavailable"
        assert api.client.get("/api/v1/chatbot/history", headers=alice["headers"]).json() == []

    def test_cleanup_secret(self, api):
        url = "/api/v1/chatbot/cleanup"
        assert api.client.post(url).status_code == 401
        assert api.client.post(url, headers={"X-Cleanup-Secret": "guess"}).status_code == 403

        alice = api.user("alice")
        api.client.post("/api/v1/chatbot/turn", json={"text": "hi"}, headers=alice["headers"])
        api.clock.advance(hours=25)

        response = api.client.post(url, headers={"X-Cleanup-Secret": "test-cleanup-secret"})
        assert response.status_code == 200
        assert response.json()["deleted"] == 2


class TestAdmin:
    def test_promote_to_coach(self, api):
        admin = api.user("admin", role=Role.ADMIN)
        sara = api.user("sara")

        response = api.client.patch(
            f"/api/v1/admin/principals/{sara['id']}", json={"role": "coach"}, headers=admin["headers"]
        )
        assert response.status_code == 200
        assert response.json() == {"id": sara["id"], "role": "coach", "plan": "PRO"}

        profile = api.client.get(f"/api/v1/coaches/{sara['id']}", headers=admin["headers"])
        assert profile.status_code == 200
        assert profile.json()["coach_id"] == sara["id"]

    def test_non_admin_forbidden(self, api):
        alice = api.user("alice")
        bob = api.user("bob")
        response = api.client.patch(
            f"/api/v1/admin/principals/{bob['id']}", json={"plan": "PRO"}, headers=alice["headers"]
        )
        assert response.status_code == 403


class TestStream:
    def test_rejects_unauthenticated_socket(self, api):
        with api.client.websocket_connect("/api/v1/stream") as ws:
            frame = ws.receive_json()
            assert frame["type"] == "error"
            assert frame["payload"]["code"] == "Unauthenticated"
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
        assert exc_info.value.code == 4401

    def test_receives_message_created(self, api):
        client = api.user("client")
        coach = api.user("coach", role=Role.COACH)

        # One portal for the socket and the requests, so they share an event loop
        with api.client as http:
            http.post("/api/v1/assignment/select", json={"coach_id": coach["id"]}, headers=client["headers"])
            with http.websocket_connect("/api/v1/stream?token=coach") as ws:
                ws.send_json({"type": "ping"})
                assert ws.receive_json() == {"type": "pong"}

                sent = http.post(
                    "/api/v1/messages", json={"with": coach["id"], "body": "live?"}, headers=client["headers"]
                ).json()
                frame = ws.receive_json()

        assert frame["type"] == "message.created"
        assert frame["payload"]["id"] == sent["id"]
        assert frame["payload"]["body"] == "live?"
