import hashlib
import json
import time
from dataclasses import asdict, dataclass, field
from logging import getLogger
from typing import Any, Dict, Iterable, List, Optional

from .Errors import MalformedArtifactError
from .Expander import PromptInstance

logger = getLogger(__name__)

ENTRY_KINDS = ("text", "image", "error")
KEY_SEPARATOR = "::"


@dataclass
class CacheEntry:
    node_id: str
    kind: str
    value: Any
    prompt: str = ""
    fill_history: Dict[str, str] = field(default_factory=dict)
    model: Optional[str] = None
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'CacheEntry':
        if not isinstance(raw, dict):
            raise MalformedArtifactError(f"Cache entry must be an object, got {type(raw).__name__}")
        for key in ("node_id", "kind", "value"):
            if key not in raw:
                raise MalformedArtifactError(f"Cache entry is missing required key '{key}'")
        if raw["kind"] not in ENTRY_KINDS:
            raise MalformedArtifactError(f"Cache entry has unknown kind '{raw['kind']}'")
        history = raw.get("fill_history") or {}
        if not isinstance(history, dict):
            raise MalformedArtifactError("Cache entry 'fill_history' must be an object")
        try:
            return cls(
                node_id=str(raw["node_id"]),
                kind=raw["kind"],
                value=raw["value"],
                prompt=str(raw.get("prompt") or ""),
                fill_history={str(k): str(v) for k, v in history.items()},
                model=raw.get("model"),
                timestamp=int(raw.get("timestamp") or 0),
            )
        except (TypeError, ValueError) as exc:
            raise MalformedArtifactError(f"Cache entry has a bad field: {exc}") from exc


def _image_digest(image: Any) -> Optional[str]:
    if image is None:
        return None
    raw = image if isinstance(image, bytes) else str(image).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def fingerprint(node_id: str, instance: PromptInstance,
                model: Optional[str] = None, image: Any = None) -> str:
    """
    Deterministic cache key for one bound instance.

    Equal inputs give equal keys across processes: the digest covers a
    canonical JSON document (sorted keys, no whitespace).
    """
    doc = {
        "node": node_id,
        "model": model,
        "text": instance.text,
        "fill_history": sorted([str(k), str(v)] for k, v in instance.fill_history.items()),
        "image": _image_digest(image),
    }
    canonical = json.dumps(doc, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{node_id}{KEY_SEPARATOR}{digest}"


def node_of(key: str) -> str:
    return key.split(KEY_SEPARATOR, 1)[0]


class ResponseCache:
    """
    Fingerprint-keyed store of prior results.

    The first entry written under a key wins; later writes and imports never
    replace it.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self):
        return len(self._entries)

    def __contains__(self, key):
        return key in self._entries

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def put(self, key: str, entry: CacheEntry) -> bool:
        if key in self._entries:
            return False
        if not entry.timestamp:
            entry.timestamp = int(time.time() * 1000)
        self._entries[key] = entry
        return True

    def entries_for(self, node_id: str) -> List[CacheEntry]:
        return [e for k, e in self._entries.items() if node_of(k) == node_id]

    def export_for(self, node_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        wanted = set(node_ids)
        return {k: e.to_dict() for k, e in self._entries.items() if node_of(k) in wanted}

    def export_all(self) -> Dict[str, Dict[str, Any]]:
        return {k: e.to_dict() for k, e in self._entries.items()}

    def import_entries(self, fragment: Dict[str, Any]) -> int:
        if not isinstance(fragment, dict):
            raise MalformedArtifactError(
                f"Cache fragment must be an object, got {type(fragment).__name__}"
            )

        # validate everything before touching the store
        parsed: Dict[str, CacheEntry] = {}
        for key, raw in fragment.items():
            if not isinstance(key, str) or KEY_SEPARATOR not in key:
                raise MalformedArtifactError(f"Malformed cache key '{key}'")
            parsed[key] = CacheEntry.from_dict(raw)

        added = 0
        for key, entry in parsed.items():
            # error results are never kept
            if entry.kind == "error":
                continue
            if key not in self._entries:
                self._entries[key] = entry
                added += 1
        logger.debug("imported %d of %d cache entries", added, len(parsed))
        return added

    def clear(self) -> None:
        self._entries.clear()
