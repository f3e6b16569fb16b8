import threading
from collections import defaultdict


class AppLocks:
    """Un verrou par app : sérialise l'admission des déploiements d'une même app"""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = defaultdict(threading.RLock)

    def for_app(self, app_id: int) -> threading.RLock:
        with self._guard:
            return self._locks[app_id]


app_locks = AppLocks()
