"""Model catalog: which models the inference server can run."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from chat_studio.chat.errors import NetworkError
from chat_studio.config import settings
from chat_studio.llm.client import OllamaClient, parse_model_names

logger = logging.getLogger(__name__)

LATEST_TAG = ":latest"


def friendly(model_id: str) -> str:
    """Return the model name without the default ``:latest`` tag."""
    return model_id.removesuffix(LATEST_TAG)


class ModelCatalog:
    """Lists the models the inference server can run.

    Sources are tried in order: the local ``models.json`` written by
    ``scripts/fetch_models.py``, then the server's listing API. If both fail
    the catalog is empty and the caller falls back to free-form model names.
    """

    def __init__(
        self,
        client: OllamaClient | None = None,
        models_file: Path | None = None,
    ) -> None:
        self._client = client or OllamaClient()
        self._models_file = models_file or settings.models_file
        self._models: list[str] = []

    @property
    def models(self) -> list[str]:
        return list(self._models)

    def _load_file(self) -> list[str]:
        path = self._models_file
        if not path.exists():
            return []
        try:
            return parse_model_names(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError):
            logger.warning("Could not read %s", path, exc_info=True)
            return []

    async def refresh(self) -> list[str]:
        """Reload the model list and return it."""
        models = self._load_file()
        if models:
            logger.info("Loaded %d models from %s", len(models), self._models_file)
        else:
            try:
                models = await self._client.list_models()
            except NetworkError as exc:
                logger.warning("Failed to fetch models from server: %s", exc)
                models = []
        self._models = models
        return self.models

    def resolve(self, name: str) -> str | None:
        """Match a model by full ID or by its name without ``:latest``."""
        if name in self._models:
            return name
        for model_id in self._models:
            if friendly(model_id) == name:
                return model_id
        return None

    def default(self, preferred: str = "") -> str:
        """Pick the preferred model if known, else the first listed."""
        if preferred:
            return self.resolve(preferred) or preferred
        return self._models[0] if self._models else ""


def parse_cli_listing(output: str) -> list[str]:
    """Extract model names from ``ollama list`` output.

    The first column of each line is the name; a ``NAME`` header is skipped.
    """
    models: list[str] = []
    for line in output.splitlines():
        parts = line.split()
        if not parts or parts[0].lower().rstrip(":") == "name":
            continue
        models.append(parts[0])
    return models
