# src/content_env.py
"""
Generates JSON Schema files for the content models, placing each schema
under content/meta/<ClassName>/schema.json
"""
import json
from pathlib import Path
from typing import List, Optional

import objects as G

SCHEMA_MODELS = (G.ProductionStrategy, G.AgentDefinition, G.MarketConfig)


def write_schemas(output_base: Optional[Path] = None) -> List[Path]:
    if output_base is None:
        output_base = Path(__file__).resolve().parent.parent / "content" / "meta"
    output_base.mkdir(parents=True, exist_ok=True)

    written = []
    for cls in SCHEMA_MODELS:
        model_dir = output_base / cls.__name__
        model_dir.mkdir(parents=True, exist_ok=True)

        schema_file = model_dir / "schema.json"
        with open(schema_file, "w", encoding="utf-8") as f:
            json.dump(cls.model_json_schema(), f, indent=2)
        written.append(schema_file)
    return written


def main():
    for schema_file in write_schemas():
        print(f"✔ Wrote schema to {schema_file}")


if __name__ == "__main__":
    main()
