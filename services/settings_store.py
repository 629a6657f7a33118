"""
Settings storage using SQLAlchemy with AES-256-CBC encryption for
sensitive values.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, Iterator, List, Callable
from contextlib import contextmanager
from urllib.parse import urlparse

from sqlalchemy import create_engine, Column, String, Boolean, BigInteger, Text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

logger = logging.getLogger(__name__)

Base = declarative_base()

DEFAULT_SYNC_INTERVAL_MS = 300000
MASKED_VALUE = "••••••••"


class SettingsError(ValueError):
    """Raised for unknown setting keys and rejected values."""


class SettingsCryptoError(RuntimeError):
    """Raised when a value cannot be encrypted or decrypted."""


# -------------------------
# Catalog
# -------------------------

def _is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _is_sync_interval(value: str) -> bool:
    try:
        num = int(str(value).strip())
    except ValueError:
        return False
    return 60000 <= num <= 3600000


@dataclass(frozen=True)
class SettingDefinition:
    key: str
    description: str
    category: str
    default_value: Optional[str] = None
    is_encrypted: bool = False
    required: bool = False
    type: str = "string"
    validation: Optional[Callable[[str], bool]] = field(default=None, compare=False)


SETTING_DEFINITIONS: List[SettingDefinition] = [
    SettingDefinition(
        key="jellyfin.url",
        default_value="http://localhost:8096",
        description="Jellyfin server URL (including http:// or https://)",
        category="jellyfin",
        required=True,
        type="url",
        validation=_is_http_url,
    ),
    SettingDefinition(
        key="jellyfin.apiKey",
        description="Jellyfin API key for authentication",
        category="jellyfin",
        required=True,
        type="password",
        is_encrypted=True,
    ),
    SettingDefinition(
        key="jellyfin.syncInterval",
        default_value=str(DEFAULT_SYNC_INTERVAL_MS),
        description="Sync interval in milliseconds (default: 5 minutes)",
        category="jellyfin",
        type="number",
        validation=_is_sync_interval,
    ),
    SettingDefinition(
        key="app.title",
        default_value="Jellyfin Analytics",
        description="Application title displayed in the header",
        category="general",
    ),
    SettingDefinition(
        key="app.theme",
        default_value="dark",
        description="Application theme (dark or light)",
        category="general",
        validation=lambda value: value in ("dark", "light"),
    ),
]

_DEFINITIONS_BY_KEY: Dict[str, SettingDefinition] = {
    d.key: d for d in SETTING_DEFINITIONS
}


def get_definition(key: str) -> Optional[SettingDefinition]:
    return _DEFINITIONS_BY_KEY.get(key)


# -------------------------
# ORM Model
# -------------------------

class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=True)
    description = Column(String(512), nullable=True)
    category = Column(String(64), nullable=False)
    is_encrypted = Column(Boolean, default=False)
    updated_at = Column(BigInteger, nullable=True)


@dataclass
class JellyfinConfig:
    url: Optional[str]
    api_key: Optional[str]
    sync_interval_ms: int = DEFAULT_SYNC_INTERVAL_MS


# -------------------------
# Service
# -------------------------

@dataclass
class SettingsService:
    database_url: str
    encryption_key: str

    def __post_init__(self) -> None:
        self.engine = create_engine(self.database_url, future=True)
        self.SessionLocal = sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self.engine)
        self._cipher_key = self._derive_key(self.encryption_key)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """
        Context manager for database sessions with auto-commit.
        """
        session: Session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

    # -------------------------
    # Encryption
    # -------------------------

    @staticmethod
    def _derive_key(secret: str) -> bytes:
        kdf = Scrypt(salt=b"salt", length=32, n=2**14, r=8, p=1)
        return kdf.derive(secret.encode("utf-8"))

    def encrypt(self, text: str) -> str:
        """
        Encrypt to "<iv hex>:<ciphertext hex>".
        """
        try:
            iv = os.urandom(16)
            padder = padding.PKCS7(algorithms.AES.block_size).padder()
            padded = padder.update(text.encode("utf-8")) + padder.finalize()
            encryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).encryptor()
            ciphertext = encryptor.update(padded) + encryptor.finalize()
        except Exception as exc:
            raise SettingsCryptoError(f"Encryption failed: {exc}") from exc
        return f"{iv.hex()}:{ciphertext.hex()}"

    def decrypt(self, encrypted_text: str) -> str:
        """
        Reverse of encrypt(). Never returns the input unchanged on failure.
        """
        parts = encrypted_text.split(":")
        if len(parts) != 2:
            raise SettingsCryptoError("Encrypted value is not in iv:ciphertext form")

        try:
            iv = bytes.fromhex(parts[0])
            ciphertext = bytes.fromhex(parts[1])
            decryptor = Cipher(algorithms.AES(self._cipher_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            plain = unpadder.update(padded) + unpadder.finalize()
            return plain.decode("utf-8")
        except Exception as exc:
            raise SettingsCryptoError(f"Decryption failed: {exc}") from exc

    # -------------------------
    # Public API
    # -------------------------

    def initialize_settings(self) -> int:
        """
        Create rows for catalog entries that have a default and no row yet.
        """
        created = 0
        now = int(time.time())
        with self._session() as session:
            for definition in SETTING_DEFINITIONS:
                if definition.default_value is None:
                    continue
                if session.get(Setting, definition.key) is not None:
                    continue

                value = definition.default_value
                if definition.is_encrypted:
                    value = self.encrypt(value)

                session.add(Setting(
                    key=definition.key,
                    value=value,
                    description=definition.description,
                    category=definition.category,
                    is_encrypted=definition.is_encrypted,
                    updated_at=now,
                ))
                created += 1
                logger.info("Created default setting: %s", definition.key)
        return created

    def get_setting(self, key: str) -> Optional[str]:
        """
        Stored value for key, falling back to the catalog default.
        """
        with self._session() as session:
            row = session.get(Setting, key)
            if row is None or not row.value:
                definition = get_definition(key)
                if definition and definition.default_value:
                    return definition.default_value
                return None

            if row.is_encrypted:
                return self.decrypt(row.value)
            return row.value

    def set_setting(self, key: str, value: str) -> None:
        """
        Validate and persist one setting.
        """
        definition = get_definition(key)
        if definition is None:
            raise SettingsError(f"Unknown setting key: {key}")

        if not isinstance(value, str):
            raise SettingsError("Setting value must be a string")

        if definition.validation and not definition.validation(value):
            raise SettingsError(f"Invalid value for setting {key}")

        stored = self.encrypt(value) if definition.is_encrypted else value

        with self._session() as session:
            row = session.get(Setting, key)
            if row is None:
                row = Setting(
                    key=key,
                    description=definition.description,
                    category=definition.category,
                    is_encrypted=definition.is_encrypted,
                )
                session.add(row)
            row.value = stored
            row.updated_at = int(time.time())

        logger.info("Updated setting %s", key)

    def get_settings_by_category(self, category: str) -> List[Dict[str, Any]]:
        results = []
        for definition in SETTING_DEFINITIONS:
            if definition.category != category:
                continue

            value = self.get_setting(definition.key)
            if definition.is_encrypted:
                value = MASKED_VALUE if value else None

            results.append({
                "key": definition.key,
                "value": value,
                "description": definition.description,
                "type": definition.type,
                "required": definition.required,
                "isEncrypted": definition.is_encrypted,
            })
        return results

    def get_all_settings(self) -> List[Dict[str, Any]]:
        categories: List[str] = []
        for definition in SETTING_DEFINITIONS:
            if definition.category not in categories:
                categories.append(definition.category)

        return [
            {
                "category": category,
                "settings": self.get_settings_by_category(category),
            }
            for category in categories
        ]

    def validate_settings(self) -> Dict[str, Any]:
        """
        Check that every required setting is present and valid.
        """
        errors: List[str] = []
        for definition in SETTING_DEFINITIONS:
            if not definition.required:
                continue
            value = self.get_setting(definition.key)
            if not value:
                errors.append(
                    f"Required setting '{definition.key}' is not configured"
                )
            elif definition.validation and not definition.validation(value):
                errors.append(f"Invalid value for setting '{definition.key}'")

        return {"isValid": len(errors) == 0, "errors": errors}

    def get_jellyfin_config(self) -> JellyfinConfig:
        """
        Resolve the adapter connection settings. Stored values are
        returned as-is; validation only happens on write.
        """
        url = self.get_setting("jellyfin.url")
        api_key = self.get_setting("jellyfin.apiKey")
        raw_interval = self.get_setting("jellyfin.syncInterval")

        sync_interval = DEFAULT_SYNC_INTERVAL_MS
        if raw_interval:
            try:
                sync_interval = int(raw_interval.strip())
            except ValueError:
                logger.warning(
                    "Stored jellyfin.syncInterval %r is not a number", raw_interval
                )

        return JellyfinConfig(
            url=url,
            api_key=api_key,
            sync_interval_ms=sync_interval,
        )
