"""Engine settings kept in a YAML file, with the API token optionally in the keyring."""

import os
from typing import Optional, Union

import keyring
import yaml

from settings_schema import EngineSettings, validate_settings

KEYRING_SERVICE = "workout-engine"
SECRET_FIELDS = ("api_token",)
# Written in place of a secret that lives in the keyring.
KEYRING_MARKER = True


class SettingsStore:
    def __init__(self, path: str = "settings.yaml", encrypt: Optional[bool] = None) -> None:
        self.path = path
        if encrypt is None:
            encrypt = os.environ.get("ENCRYPT_SETTINGS") == "1"
        self.encrypt = encrypt

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def _resolve_secrets(self, data: dict) -> dict:
        for field in SECRET_FIELDS:
            if data.get(field) is not KEYRING_MARKER:
                continue
            secret = keyring.get_password(KEYRING_SERVICE, field)
            if secret is None:
                data.pop(field)
            else:
                data[field] = secret
        return data

    def load(self) -> dict:
        """Raw settings from disk, secrets already fetched from the keyring."""
        return self._resolve_secrets(self._read())

    def settings(self) -> EngineSettings:
        """Validated settings, with defaults for anything the file leaves out."""
        return validate_settings(self.load())

    def save(self, data: Union[dict, EngineSettings]) -> EngineSettings:
        if isinstance(data, EngineSettings):
            data = data.model_dump(exclude_defaults=True)
        settings = validate_settings(data)
        out = dict(data)
        if self.encrypt:
            for field in SECRET_FIELDS:
                if out.get(field) is not None:
                    keyring.set_password(KEYRING_SERVICE, field, str(out[field]))
                    out[field] = KEYRING_MARKER
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(out, f)
        return settings

    def update(self, **changes) -> EngineSettings:
        """Merge ``changes`` into the stored settings and write them back."""
        data = self.load()
        data.update(changes)
        return self.save(data)
