import json
import logging
import os.path

import yarl

DEFAULT_CONFIG = {
    "pulse_url": "https://hrmppgbackend.onrender.com/analyze_ppg_video",
    "food_url": "https://models.samsarawellness.in/food/api/analyze",
    "barcode_url": "https://models.samsarawellness.in/barcode/",
    "chat_url": "https://ayurveda-bot-backend.onrender.com/chat",
    "camera_permission": "UNDETERMINED",
    "history_file": "./history.json",
    "measurement_duration_s": 8,
    "upload_timeout_s": 60,
    "chat_timeout_s": 50,
}

URL_KEYS = ["pulse_url", "food_url", "barcode_url", "chat_url"]


def load_config(config_file):
    config = dict(DEFAULT_CONFIG)
    if os.path.isfile(config_file):
        with open(config_file, "r") as c:
            read_config = json.loads(c.read())
            config = {**config, **read_config}

    return config


def save_config(config, config_file):
    with open(config_file, "w") as c:
        c.write(json.dumps(config, indent=4))
        print(f"Config updated in {config_file}")


def rebase_urls(config, rest_url):
    """Point every backend at another host (e.g. a local dev server), keeping each endpoint's path."""
    base = yarl.URL(rest_url).with_path("")
    for key in URL_KEYS:
        config[key] = str(base.with_path(yarl.URL(config[key]).path))
    return config


def setup_logging(debug=False):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
