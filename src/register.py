# src/register.py
"""
Scans content source folders for JSON definitions, loads them into Pydantic models
and collects them in a registry.
Ignores any subfolder named "meta" or starting with a dot.
Strategies are keyed by their `id`, later folders overriding earlier definitions;
agent definitions are kept in a list, in load order.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ValidationError

import objects as G

logger = logging.getLogger(__name__)

# Definitions shipped with the repository
BUNDLED_CONTENT = Path(__file__).resolve().parents[1] / "content"

# Folder name -> model parsed from the JSON files inside it
CONTENT_MODELS: Dict[str, type] = {
    "ProductionStrategy": G.ProductionStrategy,
    "AgentDefinition": G.AgentDefinition,
}

# generated schemas live here, not definitions
SKIPPED_FOLDERS = {"meta"}

Registry = Dict[str, Union[List[BaseModel], Dict[str, BaseModel]]]


def _is_content_folder(path: Path) -> bool:
    if not path.is_dir() or path.name.startswith("."):
        return False
    return path.name not in SKIPPED_FOLDERS


def register_content(folders: Iterable[Path]) -> Registry:
    """
    Load all JSON files in each valid subfolder of the given folders,
    parse them with the model named by the subfolder, and collect them:
      - For models with an `id` field: { model_name: { id: instance, ... } }
      - For others: { model_name: [instance, ...] }
    """
    id_models = {name for name, cls in CONTENT_MODELS.items() if 'id' in cls.model_fields}

    registry: Registry = {}
    for name in CONTENT_MODELS:
        registry[name] = {} if name in id_models else []

    for folder in folders:
        folder = Path(folder)
        if not folder.exists():
            logger.debug("Skipping missing content folder %s", folder)
            continue
        for sub in sorted(folder.iterdir()):
            if not _is_content_folder(sub):
                continue
            model_name = sub.name
            model_cls = CONTENT_MODELS.get(model_name)
            if model_cls is None:
                # skip unknown model folders
                continue
            for json_file in sorted(sub.glob("*.json")):
                try:
                    data = json.loads(json_file.read_text(encoding="utf-8"))
                    instance = model_cls.model_validate(data)
                except (json.JSONDecodeError, ValidationError) as e:
                    raise G.ConfigurationError(f"Error parsing {json_file}: {e}") from e
                if model_name in id_models:
                    registry[model_name][instance.id] = instance
                else:
                    registry[model_name].append(instance)

    for model_name, collection in registry.items():
        logger.info("Loaded %d %s entries.", len(collection), model_name)
    return registry


def load_config(
    folders: Iterable[Path],
    defaults: Optional[G.InventoryDefaults] = None,
    balance: int = G.DEFAULT_BALANCE,
) -> G.MarketConfig:
    registry = register_content(folders)
    return G.MarketConfig(
        defaults=defaults or G.InventoryDefaults(),
        balance=balance,
        strategies=list(registry["ProductionStrategy"].values()),
        agents=list(registry["AgentDefinition"]),
    )
