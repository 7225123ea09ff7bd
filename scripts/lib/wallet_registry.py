"""
Tracked wallet list, user settings and backup export/import.

Only user-authored data lives here. Caches are a performance artifact and
are excluded from backups.
"""

import json
import sys
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Tuple

from .cache_store import CacheStore
from .models import TrackedWallet, UserSettings
from .storage import STORAGE_KEYS, KeyValueStore
from .validators import InvalidAddressError, validate_address


BACKUP_VERSION = "1.0.0"


def generate_wallet_id(now: float) -> str:
    return f"wallet_{int(now * 1000)}_{uuid.uuid4().hex[:9]}"


class WalletRegistry:
    """CRUD over the tracked wallet list, with cache eviction on delete."""

    def __init__(
        self,
        store: KeyValueStore,
        cache: CacheStore,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.cache = cache
        self.clock = clock

    def _read_json(self, key: str) -> Any:
        blob = self.store.get(key)
        if blob is None:
            return None
        try:
            return json.loads(blob)
        except ValueError:
            print(f"[storage] Ignoring unreadable {key}", file=sys.stderr)
            return None

    def _save_wallets(self, wallets: List[TrackedWallet]) -> None:
        self.store.set(STORAGE_KEYS["wallets"], json.dumps([w.to_dict() for w in wallets]))

    def list_wallets(self) -> List[TrackedWallet]:
        """Return all tracked wallets; malformed records are skipped."""
        data = self._read_json(STORAGE_KEYS["wallets"])
        if not isinstance(data, list):
            return []
        wallets = []
        for item in data:
            try:
                wallets.append(TrackedWallet.from_dict(item))
            except (KeyError, TypeError, ValueError):
                continue
        return wallets

    def get_wallet(self, wallet_id: str) -> Optional[TrackedWallet]:
        return next((w for w in self.list_wallets() if w.id == wallet_id), None)

    def add_wallet(self, nickname: str, address: str) -> TrackedWallet:
        """
        Start tracking an address.

        Raises:
            InvalidAddressError: If the address format is invalid or it is
                already tracked
        """
        address = validate_address(address)
        wallets = self.list_wallets()
        if any(w.address == address for w in wallets):
            raise InvalidAddressError("Address is already tracked")

        now = self.clock()
        wallet = TrackedWallet(
            id=generate_wallet_id(now),
            nickname=nickname.strip() or address[:8],
            address=address,
            created_at=now,
        )
        wallets.append(wallet)
        self._save_wallets(wallets)
        return wallet

    def rename_wallet(self, wallet_id: str, nickname: str) -> Optional[TrackedWallet]:
        wallets = self.list_wallets()
        for wallet in wallets:
            if wallet.id == wallet_id:
                wallet.nickname = nickname.strip() or wallet.nickname
                self._save_wallets(wallets)
                return wallet
        return None

    def delete_wallet(self, wallet_id: str) -> bool:
        """Stop tracking a wallet and evict its cache entries."""
        wallets = self.list_wallets()
        remaining = [w for w in wallets if w.id != wallet_id]
        if len(remaining) == len(wallets):
            return False
        self._save_wallets(remaining)
        removed = next(w for w in wallets if w.id == wallet_id)
        if not any(w.address == removed.address for w in remaining):
            self.cache.evict(removed.address)
        return True

    def search_wallets(self, query: str) -> List[TrackedWallet]:
        """Case-insensitive match on nickname or address."""
        needle = query.strip().lower()
        if not needle:
            return []
        return [
            w for w in self.list_wallets()
            if needle in w.nickname.lower() or needle in w.address.lower()
        ]

    def get_settings(self) -> UserSettings:
        data = self._read_json(STORAGE_KEYS["settings"])
        if not isinstance(data, dict):
            return UserSettings()
        try:
            return UserSettings.from_dict(data)
        except (TypeError, ValueError):
            return UserSettings()

    def save_settings(self, **updates: Any) -> UserSettings:
        merged = self.get_settings().to_dict()
        merged.update(updates)
        settings = UserSettings.from_dict(merged)
        self.store.set(STORAGE_KEYS["settings"], json.dumps(settings.to_dict()))
        return settings

    def export_backup(self) -> Dict[str, Any]:
        """Serialize wallets and settings; caches are not included."""
        return {
            "version": BACKUP_VERSION,
            "export_date": self.clock(),
            "wallets": [w.to_dict() for w in self.list_wallets()],
            "settings": self.get_settings().to_dict(),
        }

    def import_backup(self, backup: Any) -> Tuple[bool, str]:
        """
        Replace the wallet list (and settings, if present) from a backup.

        Returns:
            Tuple of (success, message)
        """
        if not isinstance(backup, dict) or not backup.get("version") or not isinstance(
            backup.get("wallets"), list
        ):
            return False, "Invalid backup format"

        try:
            wallets = [TrackedWallet.from_dict(w) for w in backup["wallets"]]
            for wallet in wallets:
                validate_address(wallet.address)
        except (KeyError, TypeError, ValueError) as e:
            return False, f"Invalid wallet in backup: {e}"

        settings = None
        if isinstance(backup.get("settings"), dict):
            try:
                settings = UserSettings.from_dict(backup["settings"])
            except (TypeError, ValueError) as e:
                return False, f"Invalid settings in backup: {e}"

        self._save_wallets(wallets)
        if settings is not None:
            self.store.set(STORAGE_KEYS["settings"], json.dumps(settings.to_dict()))
        return True, f"Imported {len(wallets)} wallets successfully"
