import argparse

try:
    import importlib.metadata
    _version = f"v{importlib.metadata.version('pulsescan')}"
except Exception:
    _version = ""


def getdefaults(argv=None):
    parser = argparse.ArgumentParser(description="Serve the pulse screen over HTTP for a kiosk front end")
    parser.add_argument("-v", "--version", action="version", version=f"%(prog)s {_version}")
    parser.add_argument("-c", "--config_file", help="Path to config file", default="./config.json")
    parser.add_argument("--rest_url", help="Use backends on this host instead of the configured ones", default=None)
    parser.add_argument("--host", help="Address to listen on", default="0.0.0.0")
    parser.add_argument("--port", help="Port to listen on", type=int, default=5012)
    parser.add_argument("--camera", help="Camera ID", type=int, default=0)
    parser.add_argument("--debug", help="Print debug logs", action="store_true", default=False)
    return parser.parse_args(argv)
