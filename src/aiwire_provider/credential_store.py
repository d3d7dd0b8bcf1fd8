from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.fernet import Fernet, InvalidToken
from pydantic import ValidationError

from .config import Credential
from .vendors import VENDORS


def _fernet(key_str: str) -> Fernet:
    return Fernet(key_str.encode("utf-8"))


@dataclass(frozen=True)
class StoredCredentials:
    credentials: dict[str, list[Credential]]

    def to_payload(self) -> dict[str, Any]:
        return {vendor: [c.model_dump() for c in keys] for vendor, keys in self.credentials.items()}


class EncryptedCredentialStore:
    """
    Per-vendor API key lists, encrypted at rest.

    Stores ONE blob at `path`:
      - Fernet-encrypted JSON: {"anthropic": [{"key": ..., "label": ..., ...}], ...}

    Unknown vendors are dropped and every entry is normalized on both save
    and load, so list positions (key indexes) are stable across a round trip.
    """

    def __init__(self, path: str, fernet_key: str):
        self.path = Path(path)
        self.fernet_key = fernet_key

    def exists(self) -> bool:
        return self.path.exists()

    @staticmethod
    def _normalize(payload: dict[str, Any]) -> dict[str, list[Credential]]:
        out: dict[str, list[Credential]] = {}
        for vendor, keys in payload.items():
            if vendor not in VENDORS or not isinstance(keys, list):
                continue
            try:
                out[vendor] = [Credential.model_validate(k) for k in keys]
            except ValidationError as e:
                raise ValueError(f"Invalid credential entry for {vendor!r}.") from e
        return out

    def save(self, creds: StoredCredentials) -> None:
        normalized = StoredCredentials(self._normalize(creds.to_payload()))
        raw = json.dumps(normalized.to_payload()).encode("utf-8")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(_fernet(self.fernet_key).encrypt(raw))

    def load(self) -> StoredCredentials:
        try:
            raw = _fernet(self.fernet_key).decrypt(self.path.read_bytes())
        except InvalidToken as e:
            raise ValueError("Failed to decrypt credentials (wrong key or corrupted file).") from e
        payload = json.loads(raw.decode("utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Credential payload must be a JSON object.")
        return StoredCredentials(self._normalize(payload))
