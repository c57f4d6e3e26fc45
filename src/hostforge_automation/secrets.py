from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import InventoryError

try:  # pragma: no cover
    import boto3  # type: ignore
except Exception:  # pragma: no cover
    boto3 = None

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SecretReference:
    """An inventory value of the form ``{aws_secret = "name", key = "field"}``."""

    name: str
    key: Optional[str] = None

    @classmethod
    def from_binding(cls, value: Any) -> Optional["SecretReference"]:
        if not isinstance(value, dict) or "aws_secret" not in value:
            return None
        key = value.get("key")
        return cls(name=str(value["aws_secret"]), key=None if key is None else str(key))


class SecretResolver:
    """Swaps secret references in variable bindings for values from AWS Secrets Manager.

    The Secrets Manager client is created on first use, so inventories without
    references never need boto3 or credentials.
    """

    def __init__(self, *, region: Optional[str] = None, profile: Optional[str] = None):
        self.region = region
        self.profile = profile
        self._client = None
        self._cache: dict[SecretReference, Any] = {}

    def resolve(self, bindings: dict[str, Any]) -> dict[str, Any]:
        return {name: self._walk(value) for name, value in bindings.items()}

    def _walk(self, value: Any) -> Any:
        reference = SecretReference.from_binding(value)
        if reference is not None:
            return self.fetch(reference)
        if isinstance(value, dict):
            return {k: self._walk(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._walk(v) for v in value]
        return value

    def fetch(self, reference: SecretReference) -> Any:
        if reference not in self._cache:
            secret = self._secret_text(reference.name)
            self._cache[reference] = secret if reference.key is None else _field(reference, secret)
        return self._cache[reference]

    def _secret_text(self, name: str) -> str:
        logger.debug("secret=%s fetching", name)
        response = self._secrets_client().get_secret_value(SecretId=name)
        if response.get("SecretString") is not None:
            return response["SecretString"]
        if response.get("SecretBinary") is not None:
            return base64.b64decode(response["SecretBinary"]).decode()
        raise InventoryError(f"secret {name} has no SecretString or SecretBinary")

    def _secrets_client(self):
        if self._client is None:
            if boto3 is None:
                raise InventoryError("boto3 is required to resolve aws_secret references (pip install hostforge[aws])")
            if self.region or self.profile:
                session = boto3.session.Session(region_name=self.region, profile_name=self.profile)
                self._client = session.client("secretsmanager")
            else:
                self._client = boto3.client("secretsmanager")
        return self._client


def _field(reference: SecretReference, secret: str) -> Any:
    try:
        payload = json.loads(secret)
    except json.JSONDecodeError:
        raise InventoryError(f"secret {reference.name} is not JSON; cannot select key '{reference.key}'") from None
    if not isinstance(payload, dict) or reference.key not in payload:
        raise InventoryError(f"secret {reference.name} has no key '{reference.key}'")
    return payload[reference.key]
