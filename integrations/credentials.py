"""Credential collaborators: integration id -> opaque credential, per user."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Protocol

from pydantic import ValidationError

from shared.workflow_contracts import IntegrationCredential

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    def get(self, user_id: str, integration_id: str) -> IntegrationCredential | None:
        ...

    def connections_for(self, user_id: str) -> dict[str, IntegrationCredential]:
        ...


class InMemoryCredentialProvider:
    def __init__(self, credentials: dict[str, list[IntegrationCredential]] | None = None):
        self._by_user: dict[str, dict[str, IntegrationCredential]] = {}
        for user_id, items in (credentials or {}).items():
            for credential in items:
                self.add(user_id, credential)

    def add(self, user_id: str, credential: IntegrationCredential) -> None:
        self._by_user.setdefault(user_id, {})[credential.integration_id] = credential

    def get(self, user_id: str, integration_id: str) -> IntegrationCredential | None:
        return self._by_user.get(user_id, {}).get(integration_id)

    def connections_for(self, user_id: str) -> dict[str, IntegrationCredential]:
        return dict(self._by_user.get(user_id, {}))


class EnvCredentialProvider(InMemoryCredentialProvider):
    """Reads ``INTEGRATION_CREDENTIALS_JSON``.

    Expected shape: ``{"<user_id>": [{"integration_id": "...", "access_token": "..."}]}``.
    ``"*"`` applies to every user. Malformed entries are skipped with a warning.
    """

    WILDCARD = "*"

    def __init__(self, raw: str | None = None):
        super().__init__()
        payload = (raw if raw is not None else os.getenv("INTEGRATION_CREDENTIALS_JSON", "")).strip()
        if not payload:
            return
        try:
            parsed: Any = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.warning("INTEGRATION_CREDENTIALS_JSON is not valid JSON: %s", e)
            return
        if not isinstance(parsed, dict):
            logger.warning("INTEGRATION_CREDENTIALS_JSON must be an object keyed by user id")
            return

        for user_id, items in parsed.items():
            for item in items if isinstance(items, list) else []:
                try:
                    self.add(str(user_id), IntegrationCredential.model_validate(item))
                except ValidationError as e:
                    logger.warning("Skipping invalid credential for user %s: %s", user_id, e)

    def get(self, user_id: str, integration_id: str) -> IntegrationCredential | None:
        return super().get(user_id, integration_id) or super().get(self.WILDCARD, integration_id)

    def connections_for(self, user_id: str) -> dict[str, IntegrationCredential]:
        merged = super().connections_for(self.WILDCARD)
        merged.update(super().connections_for(user_id))
        return merged
