"""
GptRelayBot - persistent allow-list of Telegram usernames.

The list lives in a small JSON file ({"users": [...]}) and is rewritten on
every mutation. One lock covers check, write and commit, so concurrent
callers never lose an update and the in-memory set only changes after the
file on disk does.
"""
import os, json, logging, tempfile, threading
from pathlib import Path

logger = logging.getLogger("gptrelaybot")

ALLOWLIST_FILENAME = "allowed_users.json"


class AllowListError(Exception):
    """Base class for allow-list storage failures."""


class StoreIOError(AllowListError):
    """The record exists but could not be read (permissions, IO)."""


class StoreWriteError(AllowListError):
    """A mutation could not be persisted. The in-memory set is unchanged."""


class AllowListStore:
    """Lock-guarded set of identities, written through to disk on every change."""

    def __init__(self, path, users=()):
        self.path = Path(path)
        self._users: set[str] = set(users)
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path) -> "AllowListStore":
        """Read the record at `path`. Missing or malformed content gives an empty store."""
        path = Path(path)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            logger.info("No allow-list at %s, starting empty", path)
            return cls(path)
        except OSError as e:
            raise StoreIOError("Cannot read allow-list %s: %s" % (path, e)) from e
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError
            logger.warning("Malformed allow-list %s (%s), starting empty", path, e)
            return cls(path)
        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, list):
            logger.warning("Allow-list %s has no 'users' list, starting empty", path)
            return cls(path)
        store = cls(path, (u for u in users if isinstance(u, str) and u))
        logger.info("Loaded %d allowed users from %s", len(store), path)
        return store

    def __len__(self):
        with self._lock:
            return len(self._users)

    def contains(self, identity) -> bool:
        if not identity:
            return False
        with self._lock:
            return identity in self._users

    def add(self, identity: str) -> bool:
        """Add and persist. Returns False (and writes nothing) if already present."""
        with self._lock:
            if identity in self._users:
                return False
            updated = self._users | {identity}
            self._write(updated)
            self._users = updated
        logger.info("Allow-list: added %s", identity)
        return True

    def remove(self, identity: str) -> bool:
        """Remove and persist. Returns False (and writes nothing) if absent."""
        with self._lock:
            if identity not in self._users:
                return False
            updated = self._users - {identity}
            self._write(updated)
            self._users = updated
        logger.info("Allow-list: removed %s", identity)
        return True

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._users)

    def _write(self, users):
        # Caller holds the lock.
        payload = json.dumps({"users": sorted(users)}, indent=2) + "\n"
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=".%s." % self.path.name, dir=str(self.path.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                try: os.unlink(tmp_name)
                except OSError: pass
            logger.error("Failed to save allow-list %s: %s", self.path, e)
            raise StoreWriteError("Cannot write allow-list %s: %s" % (self.path, e)) from e
