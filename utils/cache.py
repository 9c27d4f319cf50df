import json
import logging

from sqlitedict import SqliteDict

log = logging.getLogger('cache')


class Cache:
    def __init__(self, cache_file_path):
        self.cache_file_path = cache_file_path
        self.caches = {
            'video_durations': SqliteDict(self.cache_file_path, tablename='video_durations', encode=json.dumps,
                                          decode=json.loads, autocommit=True),
        }

    def get_cache(self, cache_name):
        if cache_name not in self.caches:
            log.error(f"Cache does not exist: {cache_name!r}")
            return None
        return self.caches[cache_name]

    def close(self):
        for cache in self.caches.values():
            cache.close()
