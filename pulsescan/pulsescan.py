import argparse
import asyncio
import json
import logging
import os.path

import aiohttp
import cv2

from pulseutils.app import PermissionState
from pulseutils.errors import PulseScanError
from pulseutils.history import BARCODE_KEY, PULSE_KEY, HistoryStore, ScanHistory
from pulseutils.opencvhelpers import CameraRecorder
from pulseutils.prettyprint import PrettyPrinter as PP
from pulseutils.renderer import TIPS, NullRenderer, Renderer, format_bpm

from .barcode import scan_barcode
from .chat import ChatSession
from .controller import PulseScanController, print_alert
from .food import analyze_food, compute_totals
from .helpers import load_config, rebase_urls, save_config, setup_logging
from .permission import ConfigPermissions

try:
    import importlib.metadata
    _version = f"v{importlib.metadata.version('pulsescan')}"
except Exception:
    _version = ""

_logger = logging.getLogger(__name__)

SCREENS = [
    ("measure make_camera", "Check Pulse"),
    ("chat", "Ayurveda Bot"),
    ("barcode scan", "Bar Code Scanner"),
    ("food", "Food Scanner"),
]

INSTRUCTIONS = [
    "Place your fingertip fully on the rear camera lens.",
    "Keep still and do not press too hard.",
    "The flash will turn on automatically.",
    "Stay still until the measurement is done.",
]


async def main(args):
    # Load config
    config = load_config(args.config_file)

    # Check if alternate URL was passed
    if "rest_url" in args and args.rest_url is not None:
        rebase_urls(config, args.rest_url)

    store = HistoryStore(config["history_file"])

    # Handle "menu" and "instructions", nothing to talk to
    if args.command in ["menu", "home"]:
        for i, (command, title) in enumerate(SCREENS, start=1):
            print(f"{i}. {title:20} pulsescan {command}")
        return

    if args.command in ["instructions", "i"]:
        print("How to Measure Pulse")
        for i, step in enumerate(INSTRUCTIONS, start=1):
            print(f"{i}. {step}")
        return

    # Handle "permission" commands - "status", "grant" and "reset"
    permissions = ConfigPermissions(config, on_change=lambda c: save_config(c, args.config_file))
    if args.command in ["permission", "perm"]:
        if args.subcommand == "reset":
            permissions.reset()
        elif args.subcommand == "grant":
            await permissions.request()
        print(f"Camera permission: {permissions.check().name}")
        return

    # Handle "measure" commands - "history"
    if args.command in ["m", "measure"] and args.subcommand == "history":
        history = ScanHistory(store, PULSE_KEY)
        if args.clear:
            history.clear()
            print("Pulse history cleared")
            return
        entries = history.mount()
        print(json.dumps(entries)) if args.json else PP.print_history(entries, args.csv)
        return

    # Handle "barcode" commands - "history"
    if args.command in ["b", "barcode"] and args.subcommand == "history":
        entries = ScanHistory(store, BARCODE_KEY).mount()
        print(json.dumps(entries)) if args.json else PP.print_history(entries, args.csv)
        return

    async with aiohttp.ClientSession() as session:
        # Handle "food"
        if args.command in ["f", "food"]:
            try:
                analysis = await analyze_food(session, config["food_url"], args.image_path, config["upload_timeout_s"])
            except PulseScanError as e:
                print_alert(e.title, e.user_message)
                return
            totals = compute_totals(analysis.foods)
            if args.json:
                print(json.dumps({**analysis.model_dump(), "totals": totals}))
            else:
                PP.print_food(analysis, totals, args.csv)
            return

        # Handle "barcode" commands - "scan"
        if args.command in ["b", "barcode"]:
            history = ScanHistory(store, BARCODE_KEY)
            history.mount()
            print("Scanning barcode and fetching nutrition data...")
            try:
                record = await scan_barcode(session, config["barcode_url"], args.image_path,
                                            config["upload_timeout_s"])
            except PulseScanError as e:
                print_alert(e.title, e.user_message)
                return
            history.add(record)
            print(json.dumps(record)) if args.json else PP.print_barcode(record["body"], args.csv)
            return

        # Handle "chat"
        if args.command in ["c", "chat"]:
            await chat(session, config)
            return

        # Handle "measure" commands - "make_camera" and "upload"
        assert args.command in ["m", "measure"]
        await measure(session, config, permissions, store, args)


async def measure(session, config, permissions, store, args):
    duration_s = float(config["measurement_duration_s"])
    headless = True
    camera_id = 0
    if args.subcommand == "make_camera":
        headless = cv2.version.headless or args.headless
        camera_id = args.camera
    capture = CameraRecorder(camera_id, permissions)

    def show_progress(sent, expected):
        if expected > 0 and headless and not args.json:
            print(f"\rUploading {sent * 100 // expected}%", end="", flush=True)

    controller = PulseScanController(capture,
                                     session,
                                     config["pulse_url"],
                                     ScanHistory(store, PULSE_KEY),
                                     duration_s=duration_s,
                                     timeout_s=float(config["upload_timeout_s"]),
                                     on_progress=show_progress)

    if args.subcommand == "upload":
        controller.history.mount()
        if not os.path.isfile(args.video_path):
            print(f"Could not open {args.video_path}")
            return
        await controller.analyze_file(args.video_path)
    else:
        # Ask for the camera on the way in, like the screen does when it opens
        state = await controller.enter()
        if state != PermissionState.GRANTED:
            print(controller.prompt.message)
            if controller.prompt.action == "grant":
                state = await controller.grant()
            if state != PermissionState.GRANTED:
                return

        renderer = NullRenderer() if headless else Renderer(_version,
                                                            f"Camera {camera_id}",
                                                            controller.app,
                                                            duration_s,
                                                            on_stop=controller.stop)
        controller.renderer = renderer

        print("Tips")
        for tip in TIPS:
            print(f"  - {tip}")
        print(f"Place your finger gently on the camera and flash and hold still while we record for "
              f"{duration_s:.0f} seconds.")
        print("Measuring... Keep your finger still.")

        render_task = asyncio.create_task(renderer.render())
        try:
            await controller.start()
        finally:
            renderer.close()
            await render_task

    if headless and not args.json and controller.app.upload is not None:
        print()

    if controller.result is not None:
        if args.json:
            print(json.dumps(controller.result.to_dict()))
        else:
            print("Heart Rate")
            print(format_bpm(controller.result))


async def chat(session, config):
    chat_session = ChatSession(session, config["chat_url"], float(config["chat_timeout_s"]))
    loop = asyncio.get_running_loop()
    print("Ask about herbs, diet, or wellness... (empty line to quit)")
    while True:
        try:
            text = await loop.run_in_executor(None, input, "> ")
        except EOFError:
            break
        if not text.strip():
            break
        answer = await chat_session.send(text)
        if answer is not None:
            print(answer.content)


def cmdline():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s{' (headless) ' if cv2.version.headless else ''} {_version}")
    parser.add_argument("-c", "--config_file", help="Path to config file", default="./config.json")
    parser.add_argument("--rest_url", help="Use backends on this host instead of the configured ones", default=None)
    parser.add_argument("--debug", help="Print debug logs", action="store_true", default=False)
    pp_group = parser.add_mutually_exclusive_group()
    pp_group.add_argument("--json", help="Print as JSON", action="store_true", default=False)
    pp_group.add_argument("--csv", help="Print grids as CSV", action="store_true", default=False)

    subparser_top = parser.add_subparsers(dest="command", required=True)

    subparser_top.add_parser("menu", aliases=["home"], help="List the available screens")
    subparser_top.add_parser("instructions", aliases=["i"], help="How to measure your pulse")

    # permission - status, grant, reset
    subparser_perm = subparser_top.add_parser("permission", aliases=["perm"],
                                              help="Camera permission").add_subparsers(dest="subcommand",
                                                                                       required=True)
    subparser_perm.add_parser("status", help="Show the camera permission")
    subparser_perm.add_parser("grant", help="Ask for camera permission")
    subparser_perm.add_parser("reset", help="Forget the camera permission answer")

    # measure - make_camera, upload, history
    subparser_meas = subparser_top.add_parser("measure", aliases=["m"],
                                              help="Pulse measurements").add_subparsers(dest="subcommand",
                                                                                        required=True)
    camera_parser = subparser_meas.add_parser("make_camera", help="Measure your pulse with the camera")
    camera_parser.add_argument("--camera", help="Camera ID", type=int, default=0)
    camera_parser.add_argument("--headless", help="Do not show the preview window", action="store_true",
                               default=False)
    upload_parser = subparser_meas.add_parser("upload", help="Measure from an already recorded video")
    upload_parser.add_argument("video_path", help="Path to an mp4 video of a finger over the camera")
    history_parser = subparser_meas.add_parser("history", help="List saved measurements")
    history_parser.add_argument("--clear", help="Delete saved measurements", action="store_true", default=False)

    # food
    food_parser = subparser_top.add_parser("food", aliases=["f"], help="Analyze a photo of a meal")
    food_parser.add_argument("image_path", help="Path to the photo")

    # barcode - scan, history
    subparser_barcode = subparser_top.add_parser("barcode", aliases=["b"],
                                                 help="Food barcodes").add_subparsers(dest="subcommand",
                                                                                      required=True)
    scan_parser = subparser_barcode.add_parser("scan", help="Look up a photographed barcode")
    scan_parser.add_argument("image_path", help="Path to the photo")
    subparser_barcode.add_parser("history", help="List saved scans")

    subparser_top.add_parser("chat", aliases=["c"], help="Talk to the assistant")

    args = parser.parse_args()
    setup_logging(args.debug)

    asyncio.run(main(args))


if __name__ == "__main__":
    cmdline()
