"""
Cache Store — the four persistent fact caches shared by every TU of a build.

  succ-ret       SuccessValueRecord sequence      first writer wins per name
  api            ApiRecord sequence               monotonic: loaded names stay
  loops          LoopRecord sequence              ordered set union
  periph-struct  plain string sequence            set union

Each cache is merged independently: lock, load, fold, write, unlock.  The
load and the write happen under a single lock acquisition so a concurrent
writer can never slip in between.  An I/O failure on one cache is logged
and only costs that cache's update; the others still complete.
"""

import os
import time
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

import yaml
from pydantic import ValidationError

from halfacts.config import DEFAULT_LOCK_TIMEOUT, EngineConfig
from halfacts.errors import CacheIOError, MalformedCacheError
from halfacts.file_lock import CacheFileLock, LockState, WaitResult, INITIAL_BACKOFF, MAX_BACKOFF
from halfacts.loops import LoopSpan
from halfacts.records import ApiRecord, LoopRecord, SuccessValueRecord

logger = logging.getLogger(__name__)


class CacheKind(Enum):
    SUCC_RET = "succ-ret"
    API = "api"
    LOOPS = "loops"
    PERIPH_STRUCT = "periph-struct"


@dataclass
class TranslationUnitFacts:
    """Everything one TU contributes to the caches."""
    success_values: Dict[str, int] = field(default_factory=dict)
    declared: Set[str] = field(default_factory=set)
    defined: Set[str] = field(default_factory=set)
    loop_spans: Set[LoopSpan] = field(default_factory=set)
    struct_names: Set[str] = field(default_factory=set)

    @property
    def api_names(self) -> Set[str]:
        return self.declared & self.defined


class CacheStore:

    def __init__(self, config: EngineConfig):
        self.paths: Dict[CacheKind, str] = {
            CacheKind.SUCC_RET: config.succ_ret_file,
            CacheKind.API: config.api_file,
            CacheKind.LOOPS: config.loop_file,
            CacheKind.PERIPH_STRUCT: config.periph_struct_file,
        }
        self.lock_timeout = config.lock_timeout or DEFAULT_LOCK_TIMEOUT

    # ────────────────────────────────────────────────────────────────
    #  Merge protocol
    # ────────────────────────────────────────────────────────────────

    def merge(self, facts: TranslationUnitFacts) -> Dict[CacheKind, bool]:
        """Fold ``facts`` into all four caches.  Returns per-cache success."""
        return {kind: self.update(kind, facts) for kind in CacheKind}

    def update(self, kind: CacheKind, facts: TranslationUnitFacts) -> bool:
        path = self.paths[kind]
        parent = os.path.dirname(os.path.abspath(path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            logger.error("Cannot create directory for %s: %s. Data lost", path, e)
            return False

        with self._locked(path):
            try:
                loaded = self.read(kind)
            except MalformedCacheError as e:
                logger.error("Failed to read data from %s: %s", path, e.reason)
                loaded = self._empty(kind)
            except CacheIOError as e:
                logger.error("Failed to read %s: %s. Skipping update", path, e.cause)
                return False

            records = self._fold(kind, loaded, facts)
            try:
                self._write(path, records)
            except CacheIOError as e:
                logger.error("Failed to open %s for write: %s. Data lost", path, e.cause)
                return False
        logger.debug("Updated %s cache %s (%d records)", kind.value, path, len(records))
        return True

    def _fold(self, kind: CacheKind, loaded, facts: TranslationUnitFacts) -> list:
        """Merged, serialisable record list for one cache."""
        if kind is CacheKind.SUCC_RET:
            merged = dict(loaded)
            for name, value in facts.success_values.items():
                merged.setdefault(name, value)
            return [{"func": name, "succ_val": merged[name]} for name in sorted(merged)]

        if kind is CacheKind.API:
            declared = set(facts.declared) | set(loaded)
            defined = set(facts.defined) | set(loaded)
            return [{"api": name} for name in sorted(declared & defined)]

        if kind is CacheKind.LOOPS:
            spans = set(loaded) | set(facts.loop_spans)
            return [_loop_to_dict(span) for span in sorted(spans, key=lambda s: s.sort_key)]

        return sorted(set(loaded) | set(facts.struct_names))

    # ────────────────────────────────────────────────────────────────
    #  Reading
    # ────────────────────────────────────────────────────────────────

    def snapshot_success_values(self) -> Dict[str, int]:
        """Lock-free read of the success cache, used to skip known functions."""
        try:
            return self.read(CacheKind.SUCC_RET)
        except (CacheIOError, MalformedCacheError) as e:
            logger.info("Ignoring unreadable success cache: %s", e)
            return {}

    def read(self, kind: CacheKind):
        """
        Parsed content of one cache.

        succ-ret → {func: succ_val}; api → [name]; loops → {LoopSpan};
        periph-struct → [name].  A missing file is an empty cache.
        Raises CacheIOError or MalformedCacheError.
        """
        path = self.paths[kind]
        items = _load_yaml(path)
        if items is None:
            return self._empty(kind)
        try:
            if kind is CacheKind.SUCC_RET:
                result: Dict[str, int] = {}
                for item in items:
                    record = SuccessValueRecord(**_mapping(item))
                    result.setdefault(record.func, record.succ_val)
                return result
            if kind is CacheKind.API:
                return [ApiRecord(**_mapping(item)).api for item in items]
            if kind is CacheKind.LOOPS:
                return {_loop_from_record(LoopRecord(**_mapping(item))) for item in items}
            names = []
            for item in items:
                if not isinstance(item, str):
                    raise MalformedCacheError(path, f"expected a string, got {item!r}")
                names.append(item)
            return names
        except (ValidationError, TypeError) as e:
            raise MalformedCacheError(path, str(e))

    @staticmethod
    def _empty(kind: CacheKind):
        if kind is CacheKind.SUCC_RET:
            return {}
        if kind is CacheKind.LOOPS:
            return set()
        return []

    # ────────────────────────────────────────────────────────────────
    #  Writing and locking
    # ────────────────────────────────────────────────────────────────

    def _write(self, path: str, records: list):
        tmp_path = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.safe_dump(records, f, sort_keys=False, explicit_start=True,
                               explicit_end=True, default_flow_style=False)
            os.replace(tmp_path, path)
        except OSError as e:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise CacheIOError(path, e)

    @contextmanager
    def _locked(self, path: str):
        """Hold the exclusive lock of ``path``.  Retries until it is ours."""
        lock = CacheFileLock(path)
        delay = INITIAL_BACKOFF
        while True:
            state = lock.try_acquire()
            if state is LockState.OWNED:
                break
            if state is LockState.ERROR:
                logger.info("Failed to acquire lock for %s: %s", path, lock.error)
                lock.force_remove()
                time.sleep(delay)
                delay = min(delay * 2, MAX_BACKOFF)
                continue
            if lock.wait_for_unlock(self.lock_timeout) is WaitResult.TIMEOUT:
                logger.info("Timeout when waiting for %s to unlock", path)
        try:
            yield lock
        finally:
            lock.release()


def _load_yaml(path: str) -> Optional[list]:
    if not os.path.exists(path):
        return None
    try:
        # bytes in: bad encoding raises ReaderError
        with open(path, "rb") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise CacheIOError(path, e)
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise MalformedCacheError(path, f"invalid YAML: {e}")
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedCacheError(path, f"expected a sequence, got {type(data).__name__}")
    return data


def _mapping(item) -> dict:
    if not isinstance(item, dict):
        raise TypeError(f"expected a mapping, got {item!r}")
    return item


def _loop_from_record(record: LoopRecord) -> LoopSpan:
    return LoopSpan(record.file, record.begin_line, record.begin_column,
                    record.end_line, record.end_column)


def _loop_to_dict(span: LoopSpan) -> dict:
    return {
        "file": span.file,
        "begin_line": span.begin_line,
        "begin_column": span.begin_column,
        "end_line": span.end_line,
        "end_column": span.end_column,
    }
