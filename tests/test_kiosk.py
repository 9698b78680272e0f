from __future__ import annotations

import asyncio

from aiohttp import web

from pulseutils.app import PermissionState
from pulsescan.helpers import DEFAULT_CONFIG
from pulsescan.kiosk import create_app
from pulsescan.permission import ConfigPermissions


def kiosk_config(**overrides):
    config = dict(DEFAULT_CONFIG)
    config.update(overrides)
    return config


async def poll_state(client, predicate, timeout=3.0):
    async def poll():
        while True:
            state = await (await client.get("/pulse")).get_json()
            if predicate(state):
                return state
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout)


def test_measurement_over_http(make_capture, backend, store) -> None:
    capture = make_capture()

    async def analyze(request):
        await request.read()
        return web.json_response({"bpm": 72})

    async def run():
        async with backend(analyze) as url:
            app = create_app(kiosk_config(pulse_url=url, measurement_duration_s=10), capture, store)
            async with app.test_app() as test_app:
                client = test_app.test_client()

                response = await client.post("/pulse/start")
                assert response.status_code == 202
                recording = await poll_state(client, lambda s: s["status"] == "RECORDING")
                assert recording["torch"] is True

                response = await client.post("/pulse/start")
                assert response.status_code == 409
                assert (await client.post("/pulse/reset")).status_code == 409

                assert (await (await client.post("/pulse/stop")).get_json()) == {"stopped": True}
                done = await poll_state(client, lambda s: s["upload"] == "SUCCEEDED")

                history = await (await client.get("/pulse/history")).get_json()
                reset = await (await client.post("/pulse/reset")).get_json()
                return done, history, reset

    done, history, reset = asyncio.run(run())

    assert done["status"] == "STOPPED"
    assert done["bpm"] == 72
    assert done["torch"] is False
    assert done["alert"] is None
    assert history[0]["bpm"] == 72
    assert reset["status"] == "IDLE"
    assert reset["bpm"] is None
    assert capture.recordings == 1


def test_start_without_permission(make_capture, store) -> None:
    capture = make_capture(permission=PermissionState.DENIED_PERMANENTLY)

    async def run():
        app = create_app(kiosk_config(), capture, store)
        async with app.test_app() as test_app:
            client = test_app.test_client()
            response = await client.post("/pulse/start")
            return response.status_code, await response.get_json()

    status, body = asyncio.run(run())
    assert status == 403
    assert body["action"] == "open_settings"
    assert capture.recordings == 0


def test_failed_upload_is_reported(make_capture, backend, store) -> None:
    capture = make_capture()

    async def analyze(request):
        await request.read()
        return web.json_response({"detail": "decode error"}, status=500)

    async def run():
        async with backend(analyze) as url:
            app = create_app(kiosk_config(pulse_url=url, measurement_duration_s=0.05), capture, store)
            async with app.test_app() as test_app:
                client = test_app.test_client()
                assert (await client.post("/pulse/start")).status_code == 202
                return await poll_state(client, lambda s: s["status"] == "FAILED")

    state = asyncio.run(run())
    assert state["error"] == "decode error"
    assert state["alert"] == {"title": "Upload failed", "message": "decode error"}
    assert store.get("SAVED_PULSES") == []


def test_chat_forwards_conversation(make_capture, backend, store) -> None:
    received = []

    async def bot(request):
        received.append(await request.json())
        return web.json_response({"reply": "Drink warm water."})

    async def run():
        async with backend(bot, path="/chat") as url:
            app = create_app(kiosk_config(chat_url=url), make_capture(), store)
            async with app.test_app() as test_app:
                client = test_app.test_client()
                ok = await client.post("/chat", json={"messages": [
                    {"role": "user", "content": "Hi"},
                    {"role": "assistant", "content": "Hello"},
                    {"role": "user", "content": "Tips for digestion?"},
                ]})
                not_user = await client.post("/chat", json={"messages": [{"role": "assistant", "content": "Hi"}]})
                empty = await client.post("/chat", json={"messages": []})
                return (ok.status_code, await ok.get_json()), not_user.status_code, empty.status_code

    (status, body), not_user_status, empty_status = asyncio.run(run())

    assert status == 200
    assert body == {"reply": "Drink warm water."}
    assert received[0]["messages"][-1] == {"role": "user", "content": "Tips for digestion?"}
    assert len(received[0]["messages"]) == 3
    assert not_user_status == 400
    assert empty_status == 400


def never_asked(question):
    raise AssertionError("the kiosk must not prompt on the terminal")


def test_grant_then_start(make_capture, backend, store) -> None:
    saved = []
    config = kiosk_config(measurement_duration_s=0.05)
    permissions = ConfigPermissions(config, ask=never_asked, on_change=lambda c: saved.append(c["camera_permission"]))
    capture = make_capture(permissions=permissions)

    async def analyze(request):
        await request.read()
        return web.json_response({"bpm": 68})

    async def run():
        async with backend(analyze) as url:
            config["pulse_url"] = url
            app = create_app(config, capture, store)
            async with app.test_app() as test_app:
                client = test_app.test_client()

                state = await (await client.get("/pulse")).get_json()
                assert state["permission"] == "UNDETERMINED"
                assert state["prompt"]["action"] == "grant"

                refused = await client.post("/pulse/start")
                assert refused.status_code == 403
                assert (await refused.get_json())["action"] == "grant"

                granted = await (await client.post("/pulse/permission", json={"answer": "allow"})).get_json()
                started = await client.post("/pulse/start")
                done = await poll_state(client, lambda s: s["upload"] == "SUCCEEDED")
                return granted, started.status_code, done

    granted, started_status, done = asyncio.run(run())

    assert granted == {"permission": "GRANTED", "prompt": None}
    assert started_status == 202
    assert done["bpm"] == 68
    assert done["permission"] == "GRANTED"
    assert saved == ["GRANTED"]
    assert config["camera_permission"] == "GRANTED"


def test_permanent_denial_is_kept(make_capture, store) -> None:
    config = kiosk_config(camera_permission="DENIED_PERMANENTLY")
    capture = make_capture(permissions=ConfigPermissions(config, ask=never_asked))

    async def run():
        app = create_app(config, capture, store)
        async with app.test_app() as test_app:
            client = test_app.test_client()
            granted = await (await client.post("/pulse/permission", json={"answer": "allow"})).get_json()
            invalid = await client.post("/pulse/permission", json={"answer": "sure"})
            started = await client.post("/pulse/start")
            return granted, invalid.status_code, started.status_code

    granted, invalid_status, started_status = asyncio.run(run())

    assert granted["permission"] == "DENIED_PERMANENTLY"
    assert granted["prompt"]["action"] == "open_settings"
    assert invalid_status == 400
    assert started_status == 403
    assert capture.permission_requests == 0
    assert capture.recordings == 0


def test_deny_can_be_retried(make_capture, store) -> None:
    config = kiosk_config()
    capture = make_capture(permissions=ConfigPermissions(config, ask=never_asked))

    async def run():
        app = create_app(config, capture, store)
        async with app.test_app() as test_app:
            client = test_app.test_client()
            denied = await (await client.post("/pulse/permission", json={"answer": "deny"})).get_json()
            granted = await (await client.post("/pulse/permission", json={"answer": "allow"})).get_json()
            return denied, granted

    denied, granted = asyncio.run(run())

    assert denied["permission"] == "DENIED_RETRIABLE"
    assert denied["prompt"]["action"] == "grant"
    assert granted["permission"] == "GRANTED"
