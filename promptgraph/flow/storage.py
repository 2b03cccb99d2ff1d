import json
import os
import tempfile
from logging import getLogger
from pathlib import Path
from typing import Any, Optional, Union

logger = getLogger(__name__)

AUTOSAVE_KEY = "promptgraph-flow"


class LocalStorage:
    """
    Small key-value store on disk, one JSON file per key.
    Writes go through a temp file and a rename so a crash never leaves a
    half-written slot behind.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def has(self, key: str) -> bool:
        return self._path(key).is_file()

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.is_file():
            return None
        with path.open(encoding="utf-8") as fh:
            return json.load(fh)

    def set(self, key: str, value: Any) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(value, fh)
            os.replace(tmp, self._path(key))
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("wrote %s", self._path(key))

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
