"""Venue credential lookup.

Credentials are stored in the ``api_keys`` table, one record per
(user, exchange, product, environment), with base64-encoded key and secret.
"""

import base64
import binascii
from abc import ABC, abstractmethod

from trader.data.repository import Repository
from trader.data.store import API_KEYS
from trader.exchange.types import VenueCredentials
from trader.logging import get_logger
from trader.models import Environment, ProductType, Venue

logger = get_logger(__name__)


def encode_secret(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def _decode_secret(value: str) -> str:
    # Values that are not valid base64 are stored in clear text
    try:
        return base64.b64decode(value, validate=True).decode()
    except (binascii.Error, UnicodeDecodeError):
        return value


class CredentialStore(ABC):
    """Resolves an owner's active venue API key pair."""

    @abstractmethod
    async def get(
        self,
        user_id: str,
        venue: Venue,
        product: ProductType,
        environment: Environment,
    ) -> VenueCredentials | None:
        """Return decoded credentials, or None when not configured."""
        ...


class RepositoryCredentialStore(CredentialStore):
    """CredentialStore backed by the ``api_keys`` repository table."""

    def __init__(self, repository: Repository) -> None:
        self._repository = repository

    async def add(
        self,
        user_id: str,
        venue: Venue,
        product: ProductType,
        environment: Environment,
        api_key: str,
        api_secret: str,
    ) -> None:
        await self._repository.insert(
            API_KEYS,
            {
                "user_id": user_id,
                "exchange": venue.value,
                "product": product.value,
                "environment": environment.value,
                "is_active": True,
                "api_key_encrypted": encode_secret(api_key),
                "api_secret_encrypted": encode_secret(api_secret),
            },
        )

    async def get(
        self,
        user_id: str,
        venue: Venue,
        product: ProductType,
        environment: Environment,
    ) -> VenueCredentials | None:
        record = await self._repository.find_one(
            API_KEYS,
            {
                "user_id": user_id,
                "exchange": venue.value,
                "product": product.value,
                "environment": environment.value,
                "is_active": True,
            },
        )
        if record is None:
            return None
        api_key = record.get("api_key_encrypted") or ""
        api_secret = record.get("api_secret_encrypted") or ""
        if not api_key or not api_secret:
            logger.warning("credentials_incomplete", user_id=user_id, venue=venue.value)
            return None
        return VenueCredentials(
            api_key=_decode_secret(api_key), api_secret=_decode_secret(api_secret)
        )
