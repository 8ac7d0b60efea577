# fixloop/repositories/flow_cache.py
from __future__ import annotations
import itertools
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from fixloop.repositories.json_store import Document, JsonDocumentStore, coerce_timestamp, timestamp_string
from fixloop.repositories.locks import FileLockManager
from fixloop.repositories.secure_files import validate_cache_directory, validate_path
from fixloop.repositories.type_cache import LOCK_DIR_NAME, LOCK_TIMEOUT, TypeCache, generate_key
from fixloop.services.log_service import logger

CACHE_VERSION = "1.0"
MAX_FLOW_ENTRIES = 25000
CLEANUP_THRESHOLD = 0.8
EVICTION_PERCENTAGE = 0.2
DEFAULT_MAX_AGE = 86400

PARAM_TO_PROPERTY = "param_to_property"
PROPERTY_TO_RETURN = "property_to_return"
GENERIC = "generic"
FLOW_KINDS = (PARAM_TO_PROPERTY, PROPERTY_TO_RETURN, GENERIC)

# kind -> origin key -> [{"target": key, "timestamp": int}]
FlowMap = Dict[str, Dict[str, List[Dict[str, Any]]]]


@dataclass(frozen=True)
class FlowTarget:
    subject: str
    member: str
    kind: str

    @property
    def key(self) -> str:
        return f"{self.subject}::{self.member}"

    @classmethod
    def from_key(cls, key: str, kind: str) -> "FlowTarget":
        subject, _, member = key.partition("::")
        return cls(subject=subject, member=member, kind=kind)


class FlowCache:
    """Directed edges saying a value at one member ends up at another."""

    def __init__(
        self,
        cache_file: Union[str, os.PathLike],
        *,
        enable_locking: bool = True,
        lock_manager: Optional[FileLockManager] = None,
        lock_timeout: float = LOCK_TIMEOUT,
    ):
        self.cache_file = Path(validate_path(cache_file))
        validate_cache_directory(self.cache_file.parent)
        if enable_locking and lock_manager is None:
            lock_manager = FileLockManager(self.cache_file.parent / LOCK_DIR_NAME)
        self.lock_manager = lock_manager if enable_locking else None
        self.store = JsonDocumentStore(self.cache_file, self.lock_manager, lock_timeout)

        self._flows: FlowMap = {kind: {} for kind in FLOW_KINDS}
        self._access: Dict[Tuple[str, str], int] = {}
        self._ticks = itertools.count()
        self._load()

    def __len__(self) -> int:
        return sum(len(origins) for origins in self._flows.values())

    def record_edge(
        self,
        origin_type: str,
        origin_member: str,
        dest_type: str,
        dest_member: str,
        kind: str = GENERIC,
    ) -> None:
        origin = generate_key(origin_type, origin_member)
        target = generate_key(dest_type, dest_member)
        origins = self._flows.setdefault(kind, {})
        if origin not in origins:
            self._enforce_size_limit()
        edges = origins.setdefault(origin, [])
        now = int(time.time())
        for edge in edges:
            if edge["target"] == target:
                edge["timestamp"] = now
                break
        else:
            edges.append({"target": target, "timestamp": now})
        self._access[(kind, origin)] = next(self._ticks)

    def get_targets(self, type_name: str, member: str, kind: Optional[str] = None) -> List[FlowTarget]:
        origin = generate_key(type_name, member)
        kinds = [kind] if kind else list(self._flows)
        targets: List[FlowTarget] = []
        for flow_kind in kinds:
            edges = self._flows.get(flow_kind, {}).get(origin)
            if not edges:
                continue
            self._access[(flow_kind, origin)] = next(self._ticks)
            targets.extend(FlowTarget.from_key(edge["target"], flow_kind) for edge in edges)
        return targets

    def get_flows(self, kind: str) -> Dict[str, List[str]]:
        return {origin: [e["target"] for e in edges] for origin, edges in self._flows.get(kind, {}).items()}

    # -------------- Named flows --------------
    def record_parameter_to_property_flow(self, cls: str, method: str, param: str, prop: str) -> None:
        self.record_edge(cls, f"{method}::${param.lstrip('$')}", cls, "$" + prop.lstrip("$"), PARAM_TO_PROPERTY)

    def record_property_to_return_flow(self, cls: str, prop: str, method: str) -> None:
        self.record_edge(cls, "$" + prop.lstrip("$"), cls, f"{method}::return", PROPERTY_TO_RETURN)

    def get_parameter_flow_targets(self, cls: str, method: str, param: str) -> List[FlowTarget]:
        return self.get_targets(cls, f"{method}::${param.lstrip('$')}", PARAM_TO_PROPERTY)

    def get_property_flow_targets(self, cls: str, prop: str) -> List[FlowTarget]:
        return self.get_targets(cls, "$" + prop.lstrip("$"), PROPERTY_TO_RETURN)

    def infer_parameter_type_from_flow(self, cls: str, method: str, param: str, type_cache: TypeCache) -> Optional[str]:
        """Type of the first property the parameter is assigned to, phpDoc preferred."""
        for target in self.get_parameter_flow_targets(cls, method, param):
            if not target.member.startswith("$"):
                continue
            info = type_cache.get_property_type(target.subject, target.member)
            if info:
                inferred = info.get("phpDoc") or info.get("native")
                if inferred:
                    return inferred
        return None

    # -------------- Persistence --------------
    def save(self) -> None:
        self.store.update(self._merge_document)
        logger.debug("Flow cache saved: %s origins -> %s", len(self), self.cache_file)

    def clear(self) -> None:
        self._flows = {kind: {} for kind in FLOW_KINDS}
        self._access.clear()
        self.store.delete()
        logger.info("Flow cache cleared: %s", self.cache_file)

    def cleanup_old_flows(self, max_age: int = DEFAULT_MAX_AGE) -> int:
        cutoff = int(time.time()) - max_age
        removed = 0
        for kind, origins in self._flows.items():
            for origin in list(origins):
                kept = [e for e in origins[origin] if coerce_timestamp(e.get("timestamp")) >= cutoff]
                removed += len(origins[origin]) - len(kept)
                if kept:
                    origins[origin] = kept
                else:
                    del origins[origin]
                    self._access.pop((kind, origin), None)
        if removed:
            logger.info("Removed %s flow edges older than %ss", removed, max_age)
        return removed

    def get_cache_stats(self) -> Dict[str, Any]:
        by_kind = {kind: sum(len(e) for e in origins.values()) for kind, origins in self._flows.items()}
        return {
            "origins": len(self),
            "edges": sum(by_kind.values()),
            "edges_by_kind": by_kind,
            "max_entries": MAX_FLOW_ENTRIES,
            "cache_file": str(self.cache_file),
            "locking_enabled": self.lock_manager is not None,
        }

    def perform_maintenance(self, max_age: int = DEFAULT_MAX_AGE) -> Dict[str, int]:
        removed = self.cleanup_old_flows(max_age)
        locks = self.lock_manager.cleanup_all_locks() if self.lock_manager else 0
        self.save()
        return {"old_flows_removed": removed, "stale_locks_removed": locks}

    # -------------- Internals --------------
    def _load(self) -> None:
        document = self.store.load()
        if document is None:
            return
        if "flows" in document:
            if document.get("version") != CACHE_VERSION:
                logger.warning("Flow cache %s has version %r, loading best effort", self.cache_file, document.get("version"))
            flows = document.get("flows")
        else:
            flows = document
        self._absorb(flows, self._flows)
        for kind, origins in self._flows.items():
            for origin in origins:
                self._access[(kind, origin)] = next(self._ticks)

    @staticmethod
    def _absorb(source: Any, into: FlowMap) -> None:
        """Union ``source`` edges into ``into``, keeping the newest timestamp per edge."""
        if not isinstance(source, dict):
            return
        for kind, origins in source.items():
            if not isinstance(origins, dict):
                continue
            bucket = into.setdefault(kind, {})
            for origin, edges in origins.items():
                if not isinstance(edges, list):
                    continue
                existing = {e["target"]: e for e in bucket.setdefault(origin, [])}
                for edge in edges:
                    if not isinstance(edge, dict) or not isinstance(edge.get("target"), str):
                        continue
                    current = existing.get(edge["target"])
                    stamp = coerce_timestamp(edge.get("timestamp"))
                    if current is None:
                        current = {"target": edge["target"], "timestamp": stamp}
                        bucket[origin].append(current)
                        existing[edge["target"]] = current
                    elif stamp > coerce_timestamp(current.get("timestamp")):
                        current["timestamp"] = stamp
                if not bucket[origin]:
                    del bucket[origin]

    def _merge_document(self, on_disk: Optional[Document]) -> Document:
        merged: FlowMap = {kind: {} for kind in FLOW_KINDS}
        if on_disk is not None:
            self._absorb(on_disk["flows"] if "flows" in on_disk else on_disk, merged)
        self._absorb(self._flows, merged)
        self._flows = merged
        for kind, origins in merged.items():
            for origin in origins:
                self._access.setdefault((kind, origin), next(self._ticks))
        self._enforce_size_limit()
        return {"version": CACHE_VERSION, "flows": self._flows, "generated_at": timestamp_string()}

    def _enforce_size_limit(self) -> None:
        total = len(self)
        if total < MAX_FLOW_ENTRIES * CLEANUP_THRESHOLD:
            return
        to_remove = max(1, int(total * EVICTION_PERCENTAGE))
        ordered = sorted(
            ((kind, origin) for kind, origins in self._flows.items() for origin in origins),
            key=lambda pair: self._access.get(pair, -1),
        )
        for kind, origin in ordered[:to_remove]:
            del self._flows[kind][origin]
            self._access.pop((kind, origin), None)
        logger.info("Flow cache evicted %s least recently used origins", to_remove)
