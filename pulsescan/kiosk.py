import asyncio
import logging

import aiohttp
from quart import Quart, jsonify
from quart_schema import QuartSchema, validate_request

from pulseutils.app import PermissionState
from pulseutils.history import PULSE_KEY, HistoryStore, ScanHistory
from pulseutils.opencvhelpers import CameraRecorder

from .chat import ChatSession
from .controller import PulseScanController
from .defaults import getdefaults
from .helpers import load_config, rebase_urls, save_config, setup_logging
from .kioskrequest import ChatRequest, PermissionRequest
from .permission import ConfigPermissions

_logger = logging.getLogger(__name__)


def create_app(config, capture, store) -> Quart:
    app = Quart(__name__)
    QuartSchema(app)

    # -------------------------
    # Shared state
    # -------------------------
    shared = {"http": None, "controller": None, "job": None, "alert": None}

    def alert(title, message):
        _logger.warning("%s: %s", title, message)
        shared["alert"] = {"title": title, "message": message}

    @app.before_serving
    async def startup():
        shared["http"] = aiohttp.ClientSession()
        controller = PulseScanController(capture,
                                         shared["http"],
                                         config["pulse_url"],
                                         ScanHistory(store, PULSE_KEY),
                                         duration_s=float(config["measurement_duration_s"]),
                                         timeout_s=float(config["upload_timeout_s"]),
                                         alert=alert)
        controller.history.mount()
        controller.app.permission = controller.gate.check_permission()
        shared["controller"] = controller

    @app.after_serving
    async def shutdown():
        job = shared["job"]
        if job is not None and not job.done():
            shared["controller"].stop()
            await asyncio.gather(job, return_exceptions=True)
        await shared["http"].close()

    def busy():
        job = shared["job"]
        return job is not None and not job.done()

    # -------------------------
    # Pulse screen
    # -------------------------
    def pending_prompt():
        message, action = shared["controller"].gate.prompt()
        return {"message": message, "action": action} if action is not None else None

    @app.get("/pulse")
    async def pulse_state():
        controller = shared["controller"]
        return jsonify({**controller.app.to_dict(),
                        "torch": controller.torch_on,
                        "alert": shared["alert"],
                        "prompt": pending_prompt()})

    @app.post("/pulse/permission")
    @validate_request(PermissionRequest)
    async def pulse_permission(data: PermissionRequest):
        controller = shared["controller"]
        state = await controller.grant(data.answer)
        return jsonify({"permission": state.name, "prompt": pending_prompt()})

    @app.post("/pulse/start")
    async def pulse_start():
        controller = shared["controller"]
        if busy() or controller.app.is_busy:
            return jsonify({"error": "Measurement in progress"}), 409

        controller.app.permission = controller.gate.check_permission()
        if controller.app.permission != PermissionState.GRANTED:
            prompt = controller.gate.prompt()
            return jsonify({"error": prompt.message, "action": prompt.action}), 403

        # Schedule background job
        shared["alert"] = None
        shared["job"] = asyncio.create_task(controller.start())
        return jsonify({"accepted": True}), 202

    @app.post("/pulse/stop")
    async def pulse_stop():
        return jsonify({"stopped": shared["controller"].stop()})

    @app.post("/pulse/reset")
    async def pulse_reset():
        if busy() or not shared["controller"].reset():
            return jsonify({"error": "Measurement in progress"}), 409
        shared["alert"] = None
        return jsonify(shared["controller"].app.to_dict())

    @app.get("/pulse/history")
    async def pulse_history():
        return jsonify(shared["controller"].history.entries)

    # -------------------------
    # Assistant
    # -------------------------
    @app.post("/chat")
    @validate_request(ChatRequest)
    async def chat(data: ChatRequest):
        text = data.last_user_text()
        if text is None or not text.strip():
            return jsonify({"error": "The last message must be a user message"}), 400

        session = ChatSession(shared["http"], config["chat_url"], float(config["chat_timeout_s"]))
        session.messages = list(data.messages[:-1])
        answer = await session.send(text)
        return jsonify({"reply": answer.content})

    return app


def cmdline():
    args = getdefaults()
    setup_logging(args.debug)

    config = load_config(args.config_file)
    if args.rest_url is not None:
        rebase_urls(config, args.rest_url)

    permissions = ConfigPermissions(config, on_change=lambda c: save_config(c, args.config_file))
    capture = CameraRecorder(args.camera, permissions)
    app = create_app(config, capture, HistoryStore(config["history_file"]))

    asyncio.run(app.run_task(args.host, args.port))


if __name__ == "__main__":
    cmdline()
