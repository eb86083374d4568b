import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / 'src'))

import content_env  # type: ignore
import register  # type: ignore
import sim  # type: ignore
import objects as G  # type: ignore

CONTENT = Path(__file__).resolve().parents[1] / "content"


def write_json(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data), encoding="utf-8")


def test_bundled_content():
    registry = register.register_content([CONTENT])
    strategies = registry["ProductionStrategy"]
    assert set(strategies) == {"farmer", "water-source"}
    farmer = strategies["farmer"]
    assert farmer.duration == 3
    assert [(r.commodity, r.amount) for r in farmer.inputs] == [("water", 1)]
    assert [a.name for a in registry["AgentDefinition"]] == ["farmer", "well", "homestead"]


def test_later_folders_override_strategies(tmp_path):
    write_json(tmp_path / "ProductionStrategy" / "farmer.json",
               {"id": "farmer", "inputs": {"water": 2}, "outputs": {"food": 3}, "duration": 1})
    write_json(tmp_path / "AgentDefinition" / "extra.json", {"strategies": ["farmer"]})

    config = register.load_config([CONTENT, tmp_path])
    by_id = {s.id: s for s in config.strategies}
    assert by_id["farmer"].duration == 1
    assert by_id["farmer"].outputs[0].amount == 3
    assert len(config.agents) == 4


def test_meta_hidden_and_unknown_folders_ignored(tmp_path):
    write_json(tmp_path / "meta" / "ProductionStrategy" / "x.json", {"id": "x"})
    write_json(tmp_path / ".hidden" / "x.json", {"id": "x"})
    write_json(tmp_path / "Vehicle" / "truck.json", {"id": "truck"})
    write_json(tmp_path / "ProductionStrategy" / "mine.json", {"id": "mine", "outputs": {"ore": 1}})

    registry = register.register_content([tmp_path, tmp_path / "missing"])
    assert list(registry["ProductionStrategy"]) == ["mine"]
    assert registry["AgentDefinition"] == []


def test_malformed_json_names_the_file(tmp_path):
    bad = tmp_path / "ProductionStrategy" / "bad.json"
    bad.parent.mkdir(parents=True)
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(G.ConfigurationError, match="bad.json"):
        register.register_content([tmp_path])


def test_invalid_definition_rejected(tmp_path):
    write_json(tmp_path / "ProductionStrategy" / "zero.json", {"id": "zero", "duration": 0})
    with pytest.raises(G.ConfigurationError, match="zero.json"):
        register.register_content([tmp_path])


def test_load_config_passes_defaults(tmp_path):
    config = register.load_config([CONTENT], defaults=G.InventoryDefaults(amount=1, capacity=2), balance=0)
    market = sim.Market.from_config(config)
    assert market.agents[0].inventory_capacity("food") == 2
    assert market.agents[0].balance == 0


def test_write_schemas(tmp_path):
    written = content_env.write_schemas(tmp_path / "meta")
    assert sorted(p.parent.name for p in written) == ["AgentDefinition", "MarketConfig", "ProductionStrategy"]
    schema = json.loads((tmp_path / "meta" / "ProductionStrategy" / "schema.json").read_text(encoding="utf-8"))
    assert {"id", "inputs", "outputs", "duration"} <= set(schema["properties"])


def test_main_runs_bundled_content(capsys):
    market = sim.main(ticks=2, content=[CONTENT])
    out = capsys.readouterr().out
    assert out.startswith("Strategies:")
    assert out.count("===================") == 2
    assert market.tick_count == 2
    assert market.agents[1].inventory_amount("water") == 11


def test_cli(tmp_path, capsys):
    write_json(tmp_path / "ProductionStrategy" / "mine.json", {"id": "mine", "outputs": {"ore": 2}})
    write_json(tmp_path / "AgentDefinition" / "miner.json", {"name": "miner", "strategies": ["mine"]})
    sim.cli(["--ticks", "2", "--content", str(tmp_path), "--log-level", "debug"])
    out = capsys.readouterr().out
    assert "Agents (tick 2):" in out
    assert "ore: 12/100 (0 reserved)" in out
