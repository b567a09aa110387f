import logging
import sys
import threading
from typing import Optional

import requests

from .config import FIREBASE_AUTH, FIREBASE_DB_URL, HTTP_TIMEOUT, STORE_BACKEND
from .errors import DependencyError
from .models import UserRecord

logger = logging.getLogger(__name__)


class FirebaseStore:
    """User records in a Firebase Realtime Database, over its REST API.

    Records live at ``/users/<id>``, the activity log at ``/logs``. There is no
    read-modify-write guarantee: a put simply overwrites the record.
    """

    def __init__(self, base_url: str, auth: str = "", timeout: float = HTTP_TIMEOUT, session=None):
        if not base_url:
            raise ValueError("FIREBASE_DB_URL is not set")
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, data=None):
        url = f"{self.base_url}{path}.json"
        params = {"auth": self.auth} if self.auth else None
        try:
            resp = self.session.request(method, url, params=params, json=data, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json() if resp.text else None
        except (requests.RequestException, ValueError) as e:
            raise DependencyError(f"RTDB {method} {path} failed: {e}") from e

    def get(self, user_id: int) -> Optional[UserRecord]:
        data = self._request("GET", f"/users/{user_id}")
        if not data:
            return None
        if not isinstance(data, dict):
            raise DependencyError(f"unexpected record for user {user_id}: {data!r}")
        return UserRecord.from_dict(user_id, data)

    def put(self, user_id: int, record: UserRecord):
        self._request("PUT", f"/users/{user_id}", record.to_dict())

    def append_log(self, entry: dict):
        self._request("POST", "/logs", entry)


class MemoryStore:
    """Process-local store for development and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.users = {}
        self.logs = []

    def get(self, user_id: int) -> Optional[UserRecord]:
        with self._lock:
            data = self.users.get(int(user_id))
        return UserRecord.from_dict(user_id, data) if data else None

    def put(self, user_id: int, record: UserRecord):
        with self._lock:
            self.users[int(user_id)] = record.to_dict()

    def append_log(self, entry: dict):
        with self._lock:
            self.logs.append(dict(entry))


def get_store(backend: str = STORE_BACKEND):
    if backend == "memory":
        logger.warning("Using in-memory store, records are lost on restart")
        return MemoryStore()
    if backend == "firebase":
        return FirebaseStore(FIREBASE_DB_URL, FIREBASE_AUTH)
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")


if __name__ == "__main__":
    # python -m rewardbot.db <user_id>
    if len(sys.argv) != 2:
        print("Usage: python -m rewardbot.db <user_id>")
        sys.exit(1)
    record = get_store().get(int(sys.argv[1]))
    print(record.to_dict() if record else "No such user")
