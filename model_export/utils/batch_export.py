"""Batch texture writer.

Queued (bitmap, path) pairs are split round-robin into
max(1, cpu_count - 1) groups; each group is written by its own thread.
export_all() joins every worker before it returns, so the caller never
reports an export as done while textures are still being written.
"""

import logging
import os
import threading

_log = logging.getLogger("model_export.batch")


class ExportableTexture:
    def __init__(self, path, bitmap):
        self.path = path
        self.bitmap = bitmap

    def save(self):
        try:
            self.bitmap.save(self.path)
        finally:
            self.bitmap.close()


def split_round_robin(items, parts):
    """Split items into `parts` interleaved groups (item i -> group i % parts).

    Empty groups are omitted.
    """
    groups = [[] for _ in range(parts)]
    for i, item in enumerate(items):
        groups[i % parts].append(item)
    return [g for g in groups if g]


def worker_count():
    return max(1, (os.cpu_count() or 1) - 1)


class BatchTextureExporter:
    """Queue of pending texture writes flushed by a pool of threads."""

    def __init__(self, workers=None):
        self.workers = workers if workers is not None else worker_count()
        self.textures = []
        self._lock = threading.Lock()

    def add(self, bitmap, path):
        with self._lock:
            self.textures.append(ExportableTexture(path, bitmap))

    def export_all(self):
        """Write all queued textures and wait for every worker.

        Returns the list of paths that failed to write. One failed write
        does not stop the others.
        """
        with self._lock:
            pending = self.textures
            self.textures = []

        if not pending:
            return []

        failed = []
        failed_lock = threading.Lock()

        def run(group):
            for tex in group:
                try:
                    tex.save()
                except Exception as e:
                    _log.error("Failed to write texture %s: %s", tex.path, e)
                    with failed_lock:
                        failed.append(tex.path)

        threads = []
        for group in split_round_robin(pending, self.workers):
            thread = threading.Thread(
                target=run, args=(group,),
                name=f"Texture Batch Export Thread {len(threads)}")
            threads.append(thread)
            thread.start()

        for thread in threads:
            thread.join()

        _log.debug("Wrote %d textures on %d threads",
                   len(pending) - len(failed), len(threads))
        return failed
