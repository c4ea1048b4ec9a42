import os
import shelve
import time
import threading
import logging
from contextlib import contextmanager

import redis
from redis_collections import Dict

from AuthProbe.errors import SessionStoreUnavailable
from AuthProbe.models import Session
from AuthProbe.utils import new_token

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = 24 * 60 * 60
DEFAULT_PURGE_INTERVAL = 5 * 60


class SessionHandler:
    """Server side session records, keyed by the id carried in the session cookie.

    Records are stored as plain dicts (Session.to_dict()) in one of three
    backends: a process local dict ('memory'), a Redis hash through
    redis_collections ('redis') or a shelve file ('shelve'). Every write
    completes before the call returns.
    """

    def __init__(self, mode='memory', namespace='sessions', ttl=DEFAULT_SESSION_TTL, idle_timeout=None,
                 purge_interval=DEFAULT_PURGE_INTERVAL, **kwargs):
        self.mode = mode
        self.namespace = namespace
        self.ttl = ttl
        self.idle_timeout = idle_timeout
        self.purge_interval = purge_interval
        self._last_purge = time.time()
        self._locks = {}
        self._locks_guard = threading.Lock()
        self._backend_lock = threading.RLock()

        if mode == 'memory':
            self.memory_store = {}
        elif mode == 'redis':
            # Create redis.StrictRedis instance
            redis_params = {}
            if kwargs.get('host'):
                redis_params['host'] = kwargs['host']
            if kwargs.get('port'):
                redis_params['port'] = kwargs['port']
            if kwargs.get('db') is not None:
                redis_params['db'] = kwargs['db']
            if kwargs.get('password'):
                redis_params['password'] = kwargs['password']
            self.redis = redis.StrictRedis(**redis_params)
            self.redis_dict = Dict(key=namespace, redis=self.redis)
        elif mode == 'shelve':
            filename = kwargs.get('filename', 'session_data/sessions.db')
            directory = os.path.dirname(filename)
            if directory:
                os.makedirs(directory, exist_ok=True)
            self.shelve_store = shelve.open(filename)
        else:
            raise ValueError(f"Unknown mode: {mode}")

    @contextmanager
    def _backend(self):
        try:
            with self._backend_lock:
                yield
        except (redis.exceptions.RedisError, OSError) as e:
            raise SessionStoreUnavailable(f'Session store ({self.mode}) unavailable: {e}') from e

    @contextmanager
    def _key_lock(self, session_id):
        if self.mode == 'redis':
            lock = self.redis.lock(f'{self.namespace}:lock:{session_id}', timeout=30, blocking_timeout=10)
            try:
                acquired = lock.acquire()
            except redis.exceptions.RedisError as e:
                raise SessionStoreUnavailable(f'Session store (redis) unavailable: {e}') from e
            if not acquired:
                raise SessionStoreUnavailable(f'Timed out waiting for the lock on session {session_id}')
            try:
                yield
            finally:
                try:
                    lock.release()
                except redis.exceptions.LockError:
                    logger.warning(f'Lock on session {session_id} expired before release')
        else:
            with self._locks_guard:
                lock = self._locks.setdefault(session_id, threading.Lock())
            with lock:
                yield

    def _read(self, session_id):
        with self._backend():
            if self.mode == 'memory':
                return self.memory_store.get(session_id)
            elif self.mode == 'redis':
                return self.redis_dict.get(session_id)
            elif self.mode == 'shelve':
                return self.shelve_store.get(session_id)

    def _write(self, session_id, data):
        with self._backend():
            if self.mode == 'memory':
                self.memory_store[session_id] = data
            elif self.mode == 'redis':
                self.redis_dict[session_id] = data
            elif self.mode == 'shelve':
                self.shelve_store[session_id] = data
                self.shelve_store.sync()

    def _delete(self, session_id):
        with self._backend():
            if self.mode == 'memory':
                self.memory_store.pop(session_id, None)
            elif self.mode == 'redis':
                self.redis_dict.pop(session_id, None)
            elif self.mode == 'shelve':
                if session_id in self.shelve_store:
                    del self.shelve_store[session_id]
                    self.shelve_store.sync()
        with self._locks_guard:
            self._locks.pop(session_id, None)

    def ping(self):
        with self._backend():
            if self.mode == 'redis':
                self.redis.ping()
            elif self.mode == 'shelve':
                len(self.shelve_store)
        return True

    def create(self):
        self._maybe_purge()
        session_id = new_token()
        session = Session.new(session_id, self.ttl)
        self._write(session_id, session.to_dict())
        logger.debug(f'Session {session_id[:8]}... created')
        return session_id, session

    def get(self, session_id):
        """Return the Session for `session_id`, or None if it is unknown or expired."""
        if not session_id:
            return None
        data = self._read(session_id)
        if data is None:
            return None
        session = Session.from_dict(data)
        if session.is_expired(self.idle_timeout):
            logger.debug(f'Session {session_id[:8]}... expired')
            self._delete(session_id)
            return None
        return session

    def save(self, session_id, session: Session):
        self._write(session_id, session.to_dict())

    def destroy(self, session_id):
        if not session_id:
            return
        with self._key_lock(session_id):
            self._delete(session_id)

    def update(self, session_id, func):
        """Atomically load, modify and save one session.

        `func` receives the Session (or None when there is none) and may
        mutate it; its return value is returned. No other update of the same
        session id can interleave.
        """
        with self._key_lock(session_id):
            session = self.get(session_id)
            result = func(session)
            # Skip the save if the record was removed while func ran
            if session is not None and self._read(session_id) is not None:
                self.save(session_id, session)
            return result

    def touch(self, session_id, now=None):
        def _touch(session):
            if session is not None:
                session.last_seen = time.time() if now is None else now
            return session

        return self.update(session_id, _touch)

    def _maybe_purge(self):
        now = time.time()
        if self.purge_interval is None or now - self._last_purge < self.purge_interval:
            return
        self._last_purge = now
        self.purge_expired()

    def purge_expired(self):
        """Remove every expired record, returning how many were removed.

        Runs from create() at most once per purge_interval seconds, so records of
        clients that never come back do not pile up.
        """
        removed = 0
        for session_id in self.keys():
            with self._key_lock(session_id):
                data = self._read(session_id)
                if data is not None and Session.from_dict(data).is_expired(self.idle_timeout):
                    self._delete(session_id)
                    removed += 1
        if removed:
            logger.debug(f"Purged {removed} expired session(s)")
        return removed

    def reset_keys(self):
        with self._backend():
            if self.mode == 'memory':
                self.memory_store.clear()
            elif self.mode == 'redis':
                self.redis_dict.clear()
            elif self.mode == 'shelve':
                self.shelve_store.clear()
                self.shelve_store.sync()

    def keys(self):
        with self._backend():
            if self.mode == 'memory':
                return list(self.memory_store.keys())
            elif self.mode == 'redis':
                return list(self.redis_dict.keys())
            elif self.mode == 'shelve':
                return list(self.shelve_store.keys())

    def close(self):
        if self.mode == 'shelve':
            self.shelve_store.close()

    def __contains__(self, session_id):
        return self.get(session_id) is not None

    def __getitem__(self, session_id):
        return self.get(session_id)

    def __delitem__(self, session_id):
        self.destroy(session_id)
