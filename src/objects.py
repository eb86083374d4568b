from __future__ import annotations
import itertools
import logging
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_INVENTORY_CAPACITY = 100
DEFAULT_INVENTORY_AMOUNT = 10
DEFAULT_BALANCE = 100

_id_counter = itertools.count()

def get_instance_id():
    return next(_id_counter)

# ────────────────────────────────────────────────────────────────────────────
# Errors
# ────────────────────────────────────────────────────────────────────────────

class InvariantViolation(RuntimeError):
    """A guarded mutation was asked to break its own precondition.

    These are programming errors: the scheduler pre-checks every mutation it
    authorizes, so reaching one means the check and the mutation disagree.
    """

class CapacityExceeded(InvariantViolation):
    pass

class InsufficientStock(InvariantViolation):
    pass

class OverReservation(InvariantViolation):
    pass

class UnderReservation(InvariantViolation):
    pass

class MissingInventory(InvariantViolation):
    pass

class ConfigurationError(ValueError):
    pass

class UnknownStrategy(ConfigurationError):
    pass

def _check_amount(n: int) -> None:
    if n < 0:
        raise ValueError(f"Amount must not be negative, got {n}")

# ────────────────────────────────────────────────────────────────────────────
# Recipes
# ────────────────────────────────────────────────────────────────────────────

class ProductionRequirement(BaseModel):
    model_config = ConfigDict(frozen=True)

    commodity: str = Field(..., min_length=1)
    amount: NonNegativeInt


class ProductionStrategy(BaseModel):
    """Immutable recipe: consume ``inputs``, wait ``duration`` ticks, emit ``outputs``."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    inputs: Tuple[ProductionRequirement, ...] = ()
    outputs: Tuple[ProductionRequirement, ...] = ()
    duration: PositiveInt = 1

    # content files may use the short {"water": 1} form; key order is kept
    @field_validator("inputs", "outputs", mode="before")
    @classmethod
    def _expand_map(cls, v):
        if isinstance(v, Mapping):
            return [{"commodity": k, "amount": amt} for k, amt in v.items()]
        return v

    def commodities(self) -> List[str]:
        seen: List[str] = []
        for req in itertools.chain(self.inputs, self.outputs):
            if req.commodity not in seen:
                seen.append(req.commodity)
        return seen

# ────────────────────────────────────────────────────────────────────────────
# Inventory
# ────────────────────────────────────────────────────────────────────────────

def _bounds_error(capacity: int, amount: int, reserved: int) -> Optional[str]:
    if reserved > amount:
        return "reserved must not exceed amount"
    if amount > capacity:
        return "amount must not exceed capacity"
    return None


class Inventory(BaseModel):
    """Stock ledger for one commodity. Holds ``reserved <= amount <= capacity``."""

    model_config = ConfigDict(validate_assignment=True)

    capacity: NonNegativeInt
    amount: NonNegativeInt
    reserved: NonNegativeInt = 0

    @model_validator(mode="after")
    def _check_bounds(self):
        error = _bounds_error(self.capacity, self.amount, self.reserved)
        if error:
            raise ValueError(error)
        return self

    def __setattr__(self, name, value):
        # checked before the value lands, so a rejected assignment changes nothing
        if name in ("capacity", "amount", "reserved") and isinstance(value, int):
            bounds = {"capacity": self.capacity, "amount": self.amount, "reserved": self.reserved}
            bounds[name] = value
            error = _bounds_error(**bounds)
            if error:
                raise ValueError(f"Cannot set {name} to {value}: {error}")
        super().__setattr__(name, value)

    def free(self) -> int:
        return self.capacity - self.amount

    def unreserved(self) -> int:
        return self.amount - self.reserved

    def add(self, n: int) -> None:
        _check_amount(n)
        if n > self.free():
            raise CapacityExceeded(f"Tried to add {n} with only {self.free()} free")
        self.amount += n

    def remove(self, n: int) -> None:
        _check_amount(n)
        if n > self.amount:
            raise InsufficientStock(f"Tried to remove {n} with only {self.amount} stored")
        if n > self.unreserved():
            raise InsufficientStock(f"Tried to remove {n} with {self.reserved} of {self.amount} reserved")
        self.amount -= n

    def reserve(self, n: int) -> None:
        _check_amount(n)
        if n > self.unreserved():
            raise OverReservation(f"Tried to reserve {n} with only {self.unreserved()} unreserved")
        self.reserved += n

    def unreserve(self, n: int) -> None:
        _check_amount(n)
        if n > self.reserved:
            raise UnderReservation(f"Tried to unreserve {n} with only {self.reserved} reserved")
        self.reserved -= n

    def consume(self, n: int) -> None:
        """Release ``n`` reserved units and take them out of stock."""
        if n > self.reserved:
            raise UnderReservation(f"Tried to consume {n} with only {self.reserved} reserved")
        self.unreserve(n)
        self.remove(n)

    def resize(self, capacity: int) -> None:
        _check_amount(capacity)
        if capacity < self.amount:
            raise CapacityExceeded(f"Capacity {capacity} is below the stored {self.amount}")
        self.capacity = capacity


def get_inventory_amount(inventories: Mapping[str, Inventory], commodity: str) -> int:
    inventory = inventories.get(commodity)
    return inventory.amount if inventory is not None else 0

def get_inventory_capacity(inventories: Mapping[str, Inventory], commodity: str) -> int:
    inventory = inventories.get(commodity)
    return inventory.capacity if inventory is not None else 0

# ────────────────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────────────────

class InventoryOverride(BaseModel):
    model_config = ConfigDict(frozen=True)

    amount: Optional[NonNegativeInt] = None
    capacity: Optional[NonNegativeInt] = None


class InventoryDefaults(BaseModel):
    """Starting stock and storage ceiling for commodities new to an agent."""

    model_config = ConfigDict(frozen=True)

    amount: NonNegativeInt = DEFAULT_INVENTORY_AMOUNT
    capacity: NonNegativeInt = DEFAULT_INVENTORY_CAPACITY

    @model_validator(mode="after")
    def _check_fits(self):
        if self.amount > self.capacity:
            raise ValueError("default amount must not exceed default capacity")
        return self

    def create(self, override: Optional[InventoryOverride] = None) -> Inventory:
        amount, capacity = self.amount, self.capacity
        if override is not None:
            if override.amount is not None:
                amount = override.amount
            if override.capacity is not None:
                capacity = override.capacity
        return Inventory(capacity=capacity, amount=amount)


class AgentDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    strategies: List[str] = Field(default_factory=list)
    balance: Optional[int] = None
    inventories: Dict[str, InventoryOverride] = Field(default_factory=dict)


class MarketConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    defaults: InventoryDefaults = Field(default_factory=InventoryDefaults)
    balance: int = DEFAULT_BALANCE
    strategies: List[ProductionStrategy] = Field(default_factory=list)
    agents: List[AgentDefinition] = Field(default_factory=list)

# ────────────────────────────────────────────────────────────────────────────
# Producers
# ────────────────────────────────────────────────────────────────────────────

class ProducerState(str, Enum):
    idle = "idle"
    accumulating = "accumulating"
    ready_to_complete = "ready_to_complete"


def _totals(requirements: Iterable[ProductionRequirement]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for req in requirements:
        totals[req.commodity] = totals.get(req.commodity, 0) + req.amount
    return totals


class Producer(BaseModel):
    """One job slot running ``strategy`` inside an agent."""

    strategy_name: str
    # handle into the market's catalog, bound when the agent is assembled
    strategy: ProductionStrategy = Field(repr=False)
    progress: NonNegativeInt = 0

    @model_validator(mode="after")
    def _check_name(self):
        if self.strategy.id != self.strategy_name:
            raise ValueError(f"Producer for '{self.strategy_name}' bound to strategy '{self.strategy.id}'")
        return self

    @property
    def state(self) -> ProducerState:
        if self.progress == 0:
            return ProducerState.idle
        if self.progress < self.strategy.duration:
            return ProducerState.accumulating
        return ProducerState.ready_to_complete

    def advance(self, inventories: Mapping[str, Inventory]) -> bool:
        """Run one tick against ``inventories``. Returns False if the job could not move."""
        state = self.state
        if state is ProducerState.accumulating:
            self.progress += 1
            return True

        strategy = self.strategy
        # resolve every inventory up front so a missing one aborts before any mutation
        stock = {name: _inventory(inventories, name) for name in strategy.commodities()}

        if state is ProducerState.idle:
            needed = _totals(strategy.inputs)
            if any(stock[name].unreserved() < n for name, n in needed.items()):
                return False
            for req in strategy.inputs:
                stock[req.commodity].reserve(req.amount)
            self.progress = 1
            logger.debug("Started '%s'", strategy.id)
            return True

        room = _totals(strategy.outputs)
        if any(stock[name].free() < n for name, n in room.items()):
            return False
        for req in strategy.inputs:
            stock[req.commodity].consume(req.amount)
        for req in strategy.outputs:
            stock[req.commodity].add(req.amount)
        self.progress = 0
        logger.debug("Completed '%s'", strategy.id)
        return True


def _inventory(inventories: Mapping[str, Inventory], commodity: str) -> Inventory:
    try:
        return inventories[commodity]
    except KeyError:
        raise MissingInventory(f"No inventory for '{commodity}'") from None

# ────────────────────────────────────────────────────────────────────────────
# Agents
# ────────────────────────────────────────────────────────────────────────────

class Agent(BaseModel):
    instance_id: int = Field(default_factory=get_instance_id)
    name: Optional[str] = None
    inventories: Dict[str, Inventory] = Field(default_factory=dict)
    producers: List[Producer] = Field(default_factory=list)
    # kept for trading, the engine never touches it
    balance: int = DEFAULT_BALANCE

    # ── Assembly -----------------------------------------------------------
    def add_producer(
        self,
        strategy: ProductionStrategy,
        defaults: Optional[InventoryDefaults] = None,
        overrides: Optional[Mapping[str, InventoryOverride]] = None,
    ) -> Producer:
        """Attach a job slot for ``strategy``, creating inventories it needs.

        Nothing is attached unless every new inventory is valid; a bad
        override raises ``ConfigurationError``.
        """
        defaults = defaults or InventoryDefaults()
        overrides = overrides or {}
        created: Dict[str, Inventory] = {}
        try:
            for commodity in strategy.commodities():
                if commodity not in self.inventories:
                    created[commodity] = defaults.create(overrides.get(commodity))
            producer = Producer(strategy_name=strategy.id, strategy=strategy)
        except ValidationError as e:
            raise ConfigurationError(f"Cannot attach '{strategy.id}': {e}") from e
        self.inventories.update(created)
        self.producers.append(producer)
        return producer

    # ── Inspection ---------------------------------------------------------
    def inventory(self, commodity: str) -> Inventory:
        return _inventory(self.inventories, commodity)

    def inventory_amount(self, commodity: str) -> int:
        return get_inventory_amount(self.inventories, commodity)

    def inventory_capacity(self, commodity: str) -> int:
        return get_inventory_capacity(self.inventories, commodity)

    def inventory_reserved(self, commodity: str) -> int:
        inventory = self.inventories.get(commodity)
        return inventory.reserved if inventory is not None else 0

    def producer_progress(self, index: int = -1) -> int:
        """Progress of the producer at ``index``, the most recently attached by default."""
        try:
            return self.producers[index].progress
        except IndexError:
            label = self.name or self.instance_id
            raise IndexError(f"Agent {label} has {len(self.producers)} producer(s), no index {index}") from None

    # ── Tick ---------------------------------------------------------------
    def step(self) -> None:
        # later producers see what earlier ones reserved this tick
        for producer in self.producers:
            producer.advance(self.inventories)
