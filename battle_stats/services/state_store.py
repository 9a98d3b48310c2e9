"""Local persistence for warm restarts."""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(__name__)


class JsonStateStore:
    """Keeps the last model snapshot in a JSON file.

    Also hands out the access key used to address the remote store.
    """

    def __init__(self, path: Union[str, Path], access_key: Optional[str] = None):
        self.path = Path(path)
        self._access_key = access_key or None

    def get_access_key(self) -> Optional[str]:
        return self._access_key

    def set_access_key(self, access_key: Optional[str]):
        self._access_key = access_key or None

    def load_state(self) -> Optional[dict]:
        """Return the saved snapshot, or None if there is no usable one."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                state = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not load saved state from {self.path}: {e}")
            return None
        if not isinstance(state, dict):
            logger.warning(f"Saved state in {self.path} is not an object, ignoring it")
            return None
        return state

    def save_state(self, state: dict):
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, 'w') as f:
                json.dump(state, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f"Could not save state to {self.path}: {e}")

    def clear_state(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not clear state at {self.path}: {e}")
