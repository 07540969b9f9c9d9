"""Builtin provider that keeps remote objects as JSON files on disk."""

import json
import os
import tempfile
import threading
import uuid
from pathlib import Path
from typing import Tuple
from ..utils.errors import ProviderError, ResourceNotFound
from ..utils.logging import get_logger
from .base import Attributes, Provider

logger = get_logger("providers.local")


class LocalProvider(Provider):
    """
    File-backed provider for local runs.

    Every object lives in ``<remote_dir>/<type>/<provider_id>.json``. Declared
    attributes are echoed back together with the computed ``id`` and
    ``self_link`` attributes, so references to computed values work the same
    way they do against a real cloud API.
    """

    def __init__(self, remote_dir: str = ".converge/remote", **kwargs):
        super().__init__(**kwargs)
        self.remote_dir = Path(remote_dir)
        self._lock = threading.Lock()

    def create(self, resource_type: str, attrs: Attributes) -> Tuple[str, Attributes]:
        provider_id = f"{resource_type}-{uuid.uuid4().hex[:12]}"
        observed = self._observed(resource_type, provider_id, attrs)
        with self._lock:
            self._write(resource_type, provider_id, observed)
        logger.debug(f"Created {resource_type} {provider_id}")
        return provider_id, observed

    def read(self, resource_type: str, provider_id: str) -> Attributes:
        path = self._path(resource_type, provider_id)
        with self._lock:
            if not path.exists():
                raise ResourceNotFound(f"{resource_type} {provider_id} does not exist")
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    return json.load(f)
            except json.JSONDecodeError as e:
                raise ProviderError(f"Corrupt object file {path}: {e}")
            except OSError as e:
                raise ProviderError(f"Cannot read {path}: {e}", retryable=True)

    def update(self, resource_type: str, provider_id: str, old_attrs: Attributes, new_attrs: Attributes) -> Attributes:
        observed = self._observed(resource_type, provider_id, new_attrs)
        with self._lock:
            if not self._path(resource_type, provider_id).exists():
                raise ProviderError(f"Cannot update {resource_type} {provider_id}: object does not exist")
            self._write(resource_type, provider_id, observed)
        logger.debug(f"Updated {resource_type} {provider_id}")
        return observed

    def delete(self, resource_type: str, provider_id: str) -> None:
        path = self._path(resource_type, provider_id)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning(f"{resource_type} {provider_id} already deleted")
            except OSError as e:
                raise ProviderError(f"Cannot delete {path}: {e}", retryable=True)
        logger.debug(f"Deleted {resource_type} {provider_id}")

    def _observed(self, resource_type: str, provider_id: str, attrs: Attributes) -> Attributes:
        observed = dict(attrs)
        observed["id"] = provider_id
        observed["self_link"] = f"local://{resource_type}/{provider_id}"
        return observed

    def _path(self, resource_type: str, provider_id: str) -> Path:
        return self.remote_dir / resource_type / f"{provider_id}.json"

    def _write(self, resource_type: str, provider_id: str, observed: Attributes) -> None:
        path = self._path(resource_type, provider_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(observed, f, indent=2, sort_keys=True)
            os.replace(tmp_path, path)
        except (OSError, TypeError) as e:
            raise ProviderError(f"Cannot write {path}: {e}", retryable=isinstance(e, OSError))
