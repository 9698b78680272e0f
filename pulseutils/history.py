import datetime
import json
import logging
import os

_logger = logging.getLogger(__name__)

PULSE_KEY = "SAVED_PULSES"
BARCODE_KEY = "SAVED_BARCODES"
DEFAULT_LIMIT = 50


class HistoryStore:
    """Key -> JSON array mapping persisted in a single JSON file."""

    def __init__(self, path) -> None:
        self.path = path

    def _read_all(self) -> dict:
        if not os.path.isfile(self.path):
            return {}
        with open(self.path, "r") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}

    def get(self, key) -> list:
        entries = self._read_all().get(key, [])
        return entries if isinstance(entries, list) else []

    def set(self, key, entries) -> None:
        try:
            data = self._read_all()
        except ValueError:
            _logger.warning("Replacing unreadable history file %s", self.path)
            data = {}
        data[key] = list(entries)
        folder = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(folder, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(data, f, indent=4)


class ScanHistory:
    """Most-recent-first log of results for one key, read once on mount and written after each new entry."""

    def __init__(self, store, key, limit=DEFAULT_LIMIT) -> None:
        self.store = store
        self.key = key
        self.limit = limit
        self.entries = []

    def mount(self) -> list:
        try:
            self.entries = self.store.get(self.key)[:self.limit]
        except (OSError, ValueError) as e:
            _logger.warning("Failed reading saved %s: %s", self.key, e)
            self.entries = []
        return self.entries

    def add(self, entry) -> list:
        self.entries = [entry, *self.entries][:self.limit]
        try:
            self.store.set(self.key, self.entries)
        except OSError as e:
            _logger.warning("Failed saving %s: %s", self.key, e)
        return self.entries

    def clear(self) -> None:
        self.entries = []
        try:
            self.store.set(self.key, [])
        except OSError as e:
            _logger.warning("Failed clearing %s: %s", self.key, e)

    @property
    def latest(self):
        return self.entries[0] if self.entries else None

    def for_date(self, date=None) -> list:
        date = date if date is not None else datetime.date.today()
        found = []
        for entry in self.entries:
            try:
                when = datetime.datetime.fromisoformat(entry["when"])
            except (KeyError, TypeError, ValueError):
                continue
            if when.date() == date:
                found.append(entry)
        return found
