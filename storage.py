import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Union


class PersistenceError(Exception):
    """Reading or writing the ledger document failed."""


class StateStorage(ABC):
    @abstractmethod
    def exists(self) -> bool:
        """Check whether a persisted document is present."""
        pass

    @abstractmethod
    def read(self) -> Dict[str, Any]:
        """Return the persisted document."""
        pass

    @abstractmethod
    def write(self, document: Dict[str, Any]) -> None:
        """Replace the persisted document with `document`."""
        pass


class JsonFileStorage(StateStorage):
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Dict[str, Any]:
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Could not read {self.path}: {e}") from e
        if not isinstance(document, dict):
            raise PersistenceError(f"{self.path} does not hold a JSON object")
        return document

    def write(self, document: Dict[str, Any]) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(document, indent=2), encoding="utf-8")
            os.replace(tmp, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Could not write {self.path}: {e}") from e
