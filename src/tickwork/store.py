"""Redis-backed lock store.

Held no-overlap locks are mirrored into one Redis set so a crash leaves a
record. The guard reads it back once at startup (recover) and clears it.
"""

import redis

LOCKS_KEY = "tickwork:locks"


class RedisLockStore:
    def __init__(self, client, key: str = LOCKS_KEY):
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = LOCKS_KEY) -> "RedisLockStore":
        return cls(redis.from_url(url), key=key)

    def load_locks(self) -> set[str]:
        return {
            member.decode() if isinstance(member, bytes) else member
            for member in self.client.smembers(self.key)
        }

    def persist_lock(self, job_name: str) -> None:
        self.client.sadd(self.key, job_name)

    def clear_lock(self, job_name: str) -> None:
        self.client.srem(self.key, job_name)
