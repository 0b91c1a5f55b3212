"""
JSON state file holding the local provider's account model, plus the
run-level lock that keeps two apply/destroy runs off the same stack.
"""
import json
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from stackgraph.errors import StackError, StateLockedError


class StateFile:
    def __init__(self, path: str):
        self.path = path
        self.lock_path = path + ".lock"

    def load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            raise StackError(f"Cannot read state file {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StackError(f"State file {self.path} is not a JSON object")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8", newline="\n") as fh:
            json.dump(data, fh, indent=2, sort_keys=True)
            fh.write("\n")
        os.replace(tmp, self.path)

    @contextmanager
    def lock(self) -> Iterator[None]:
        directory = os.path.dirname(self.lock_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            raise StateLockedError(
                f"State {self.path} is locked by another run "
                f"(remove {self.lock_path} if that run is gone)"
            ) from None
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            os.close(fd)
            yield
        finally:
            os.remove(self.lock_path)
