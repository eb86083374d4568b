import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from pydantic import ValidationError

from register import BUNDLED_CONTENT, load_config
import objects as G

logger = logging.getLogger(__name__)

# -----------------------------------
# Market
# -----------------------------------

class Market:
    """Owns the strategy catalog and the agents, and drives the global tick."""

    def __init__(self, defaults: Optional[G.InventoryDefaults] = None, balance: int = G.DEFAULT_BALANCE):
        self.defaults = defaults or G.InventoryDefaults()
        self.balance = balance
        self.strategies: Dict[str, G.ProductionStrategy] = {}
        self.agents: List[G.Agent] = []
        self.tick_count: int = 0

    @classmethod
    def from_config(cls, config: G.MarketConfig) -> "Market":
        market = cls(defaults=config.defaults, balance=config.balance)
        for strategy in config.strategies:
            market.add_strategy(strategy)
        for definition in config.agents:
            market.add_agent(definition)
        return market

    # ── Configuration -------------------------------------------------------
    def add_strategy(self, strategy: G.ProductionStrategy) -> G.ProductionStrategy:
        if strategy.id in self.strategies:
            raise G.ConfigurationError(f"Strategy '{strategy.id}' is already registered")
        self.strategies[strategy.id] = strategy
        return strategy

    def resolve(self, name: str) -> G.ProductionStrategy:
        try:
            return self.strategies[name]
        except KeyError:
            raise G.UnknownStrategy(f"Unknown production strategy '{name}'") from None

    def add_agent(self, definition: Optional[G.AgentDefinition] = None) -> G.Agent:
        definition = definition or G.AgentDefinition()
        # resolve everything before the agent exists so a bad name leaves no trace
        strategies = [self.resolve(name) for name in definition.strategies]
        balance = self.balance if definition.balance is None else definition.balance
        agent = G.Agent(name=definition.name, balance=balance)
        for strategy in strategies:
            agent.add_producer(strategy, self.defaults, definition.inventories)
        for commodity, override in definition.inventories.items():
            if commodity not in agent.inventories:
                try:
                    agent.inventories[commodity] = self.defaults.create(override)
                except ValidationError as e:
                    raise G.ConfigurationError(f"Bad inventory '{commodity}' for agent {definition.name!r}: {e}") from e
        self.agents.append(agent)
        return agent

    def get_agent(self, instance_id: int) -> G.Agent:
        for agent in self.agents:
            if agent.instance_id == instance_id:
                return agent
        raise KeyError(instance_id)

    # ── Tick ---------------------------------------------------------------
    def step(self) -> None:
        self.tick_count += 1
        logger.debug("Tick %d: stepping %d agents", self.tick_count, len(self.agents))
        for agent in self.agents:
            agent.step()

# -----------------------------------
# Rendering
# -----------------------------------

def _format_requirements(reqs: Sequence[G.ProductionRequirement]) -> str:
    return ", ".join(f"{r.commodity} x{r.amount}" for r in reqs) or "-"

def format_agent(agent: G.Agent) -> str:
    label = agent.name or f"agent {agent.instance_id}"
    lines = [f"{label} (balance {agent.balance})"]
    for name, inv in agent.inventories.items():
        lines.append(f"    {name}: {inv.amount}/{inv.capacity} ({inv.reserved} reserved)")
    for producer in agent.producers:
        lines.append(
            f"    [{producer.strategy_name}] {producer.state.value} "
            f"{producer.progress}/{producer.strategy.duration}"
        )
    return "\n".join(lines)

def format_market(market: Market, strategies: bool = True) -> str:
    lines = []
    if strategies:
        lines.append("Strategies:")
        for s in market.strategies.values():
            lines.append(
                f"  {s.id}: {_format_requirements(s.inputs)} -> "
                f"{_format_requirements(s.outputs)} in {s.duration} tick(s)"
            )
    lines.append(f"Agents (tick {market.tick_count}):")
    for agent in market.agents:
        lines.extend("  " + line for line in format_agent(agent).splitlines())
    return "\n".join(lines)

# -----------------------------------
# Main Simulation Loop
# -----------------------------------

def main(ticks: int = 1, content: Optional[Sequence[Path]] = None) -> Market:
    """Load content, run ``ticks`` production steps and print the agents after each."""

    config = load_config(content or [BUNDLED_CONTENT])
    market = Market.from_config(config)
    print(format_market(market))
    for _ in range(ticks):
        print("===================")
        market.step()
        print(format_market(market, strategies=False))
    return market

def cli(argv: Optional[Sequence[str]] = None) -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Run production simulation")
    parser.add_argument("--ticks", type=int, default=2, help="Number of ticks to run")
    parser.add_argument(
        "--content", type=Path, action="append", default=None,
        help="Content folder to load (repeatable, later folders override earlier ones)",
    )
    parser.add_argument("--log-level", default="WARNING", help="Logging level, e.g. DEBUG")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    main(ticks=args.ticks, content=args.content)

if __name__ == "__main__":
    cli()
