"""
tillpoint/billing/scanner.py
----------------------------
Tells a barcode scanner apart from a person typing.

USB scanners present as keyboards: they "type" the code as a burst of
printable keystrokes a few milliseconds apart, then press Enter. A
human is much slower. So:

  * a printable key arriving less than `max_gap_ms` after the previous key
    extends the buffer;
  * a gap of `max_gap_ms` or more throws the buffer away and starts a
    new one with this key (it was human typing);
  * Enter with a non-empty buffer yields the buffered code.

Timestamps are milliseconds; pass them explicitly (tests, replay) or
let the scanner read its clock.
"""
import time
from typing import Callable, Optional

from flask import current_app, session

ENTER_KEYS = ('Enter', '\r', '\n')
SCANNER_KEY = 'scanner'


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class BarcodeScanner:
    def __init__(self, max_gap_ms: float = 50, min_length: int = 1,
                 clock: Callable[[], float] = _monotonic_ms):
        self.max_gap_ms = max_gap_ms
        self.min_length = min_length
        self._clock = clock
        self._buffer = []
        self._last_key_at: Optional[float] = None

    @property
    def buffer(self) -> str:
        return ''.join(self._buffer)

    def reset(self) -> None:
        self._buffer = []
        self._last_key_at = None

    def feed(self, key: str, at_ms: Optional[float] = None) -> Optional[str]:
        """
        Feed one keystroke. Returns the scanned code when `key` is Enter
        and a burst is buffered, otherwise None.
        """
        now = self._clock() if at_ms is None else at_ms

        if key in ENTER_KEYS:
            code = self.buffer
            fresh = self._last_key_at is not None and now - self._last_key_at < self.max_gap_ms
            self.reset()
            if fresh and len(code) >= self.min_length:
                return code
            return None

        if len(key) != 1 or not key.isprintable():
            return None   # modifiers, arrows, …

        if self._last_key_at is not None and now - self._last_key_at >= self.max_gap_ms:
            self._buffer = []
        self._buffer.append(key)
        self._last_key_at = now
        return None

    def feed_all(self, keys, start_ms: float = 0.0, gap_ms: float = 10.0) -> Optional[str]:
        """Replay a key sequence at a fixed gap; returns the last code scanned."""
        code = None
        at = start_ms
        for key in keys:
            result = self.feed(key, at)
            if result is not None:
                code = result
            at += gap_ms
        return code

    # ── Session state ─────────────────────────────────────────────
    # Keystrokes reach the server in batches, so a burst may straddle
    # two requests; the partial buffer rides in the session like the cart.

    def to_dict(self) -> dict:
        return {'buffer': self.buffer, 'last_key_at': self._last_key_at}

    @classmethod
    def from_dict(cls, data, max_gap_ms: float = 50, min_length: int = 1) -> 'BarcodeScanner':
        scanner = cls(max_gap_ms=max_gap_ms, min_length=min_length)
        if isinstance(data, dict):
            scanner._buffer = list(str(data.get('buffer') or ''))
            last = data.get('last_key_at')
            scanner._last_key_at = float(last) if isinstance(last, (int, float)) else None
        return scanner


# ── Flask session glue ────────────────────────────────────────────

def load_scanner() -> BarcodeScanner:
    """The session's scanner, timed with the configured key gap."""
    return BarcodeScanner.from_dict(session.get(SCANNER_KEY),
                                    max_gap_ms=current_app.config['SCAN_KEY_GAP_MS'])


def store_scanner(scanner: BarcodeScanner) -> None:
    session.permanent = True
    session[SCANNER_KEY] = scanner.to_dict()
    session.modified = True
