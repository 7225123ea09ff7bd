"""
Periodic background re-sync of tracked wallets.
"""

import sys
import threading
from typing import Callable, List, Optional, Set

from .models import TrackedWallet, WalletSnapshot
from .synchronizer import WalletSynchronizer


class AutoRefresher:
    """
    Repeating timer that re-syncs wallets every ``interval`` seconds.

    Each tick runs in its own worker thread, so a slow sync never delays the
    timer. A wallet whose previous sync is still in flight is skipped for
    that tick.
    """

    def __init__(
        self,
        synchronizer: WalletSynchronizer,
        wallets_provider: Callable[[], List[TrackedWallet]],
        interval: float,
        on_snapshot: Optional[Callable[[WalletSnapshot], None]] = None,
    ):
        if interval <= 0:
            raise ValueError("Refresh interval must be positive")
        self.synchronizer = synchronizer
        self.wallets_provider = wallets_provider
        self.interval = interval
        self.on_snapshot = on_snapshot
        self._in_flight: Set[str] = set()
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._workers: List[threading.Thread] = []

    def _claim(self, wallets: List[TrackedWallet]) -> List[TrackedWallet]:
        with self._lock:
            claimed = [w for w in wallets if w.address not in self._in_flight]
            self._in_flight.update(w.address for w in claimed)
        return claimed

    def _release(self, wallets: List[TrackedWallet]) -> None:
        with self._lock:
            self._in_flight.difference_update(w.address for w in wallets)

    def run_once(self) -> List[WalletSnapshot]:
        """Sync every tracked wallet not already being synced."""
        claimed = self._claim(self.wallets_provider())
        if not claimed:
            return []
        try:
            snapshots = self.synchronizer.sync_all(claimed)
        finally:
            self._release(claimed)

        if self.on_snapshot is not None:
            for snapshot in snapshots:
                self.on_snapshot(snapshot)
        return snapshots

    def _tick(self) -> None:
        try:
            self.run_once()
        except Exception as e:
            print(f"[auto-refresh] Refresh failed: {e}", file=sys.stderr)

    def _spawn_tick(self) -> threading.Thread:
        worker = threading.Thread(target=self._tick, daemon=True)
        with self._lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
            worker.start()
        return worker

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self._spawn_tick()

    def start(self) -> None:
        if self._timer_thread is not None and self._timer_thread.is_alive():
            return
        self._stop.clear()
        self._timer_thread = threading.Thread(target=self._loop, daemon=True)
        self._timer_thread.start()

    def stop(self) -> None:
        """Stop the timer and wait for ticks already in flight."""
        self._stop.set()
        if self._timer_thread is not None:
            self._timer_thread.join()
            self._timer_thread = None
        with self._lock:
            workers, self._workers = self._workers, []
        for worker in workers:
            worker.join()

    @property
    def running(self) -> bool:
        return self._timer_thread is not None and self._timer_thread.is_alive()
