"""Genetic search over pickup visiting orders."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from typing import Callable, Sequence

from ...config import Settings, settings as default_settings
from ...errors import OptimizationFailure
from ...models.domain import Location, TrafficInfo, VehicleType, WeatherInfo
from ..geospatial import haversine_km
from . import costs
from .models import RouteSegment
from .segments import SegmentCalculator

logger = logging.getLogger(__name__)

Chromosome = list[int]
# Index of the start location inside a hop key; pickups use their own index.
START = -1


def _haversine(a: Location, b: Location) -> float:
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


def nearest_neighbour_order(
    pickups: Sequence[Location],
    start: Location,
    estimate_distance: Callable[[Location, Location], float] = _haversine,
) -> Chromosome:
    """Greedy closest-unvisited tour beginning at ``start``."""
    remaining = list(range(len(pickups)))
    order: Chromosome = []
    current = start
    while remaining:
        closest = min(remaining, key=lambda index: estimate_distance(current, pickups[index]))
        remaining.remove(closest)
        order.append(closest)
        current = pickups[closest]
    return order


def priority_order(pickups: Sequence[Location]) -> Chromosome:
    return sorted(range(len(pickups)), key=lambda index: pickups[index].priority)


def order_crossover(parent1: Chromosome, parent2: Chromosome, rng: random.Random) -> Chromosome:
    """Order crossover (OX): keep a slice of ``parent1``, fill the rest in ``parent2`` order."""
    size = len(parent1)
    if size < 2:
        return list(parent1)
    start = rng.randrange(size)
    end = rng.randrange(start, size)

    child: list[int | None] = [None] * size
    child[start : end + 1] = parent1[start : end + 1]
    kept = set(parent1[start : end + 1])
    filler = iter(gene for gene in parent2 if gene not in kept)
    for position in range(size):
        if child[position] is None:
            child[position] = next(filler)
    return child  # type: ignore[return-value]


def mutate(route: Chromosome, rng: random.Random) -> None:
    """Swap two positions or reverse a slice, in place."""
    size = len(route)
    if size < 2:
        return
    if rng.random() < 0.5:
        first, second = rng.randrange(size), rng.randrange(size)
        route[first], route[second] = route[second], route[first]
    else:
        start = rng.randrange(size)
        end = rng.randrange(start, size)
        route[start : end + 1] = route[start : end + 1][::-1]


class _FitnessEvaluator:
    """Scores chromosomes for one optimization run, computing each directed hop once."""

    def __init__(
        self,
        calculator: SegmentCalculator,
        pickups: Sequence[Location],
        start: Location,
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None,
    ) -> None:
        self.calculator = calculator
        self.pickups = pickups
        self.start = start
        self.traffic = traffic
        self.weather = weather
        self.vehicle_type = vehicle_type
        self.cancel_event = cancel_event
        self.hops: dict[tuple[int, int], RouteSegment] = {}

    def _location(self, index: int) -> Location:
        return self.start if index == START else self.pickups[index]

    @staticmethod
    def _hop_keys(route: Chromosome) -> list[tuple[int, int]]:
        full = [START, *route]
        return list(zip(full, full[1:]))

    async def score_all(self, population: Sequence[Chromosome]) -> list[float]:
        missing: list[tuple[int, int]] = []
        for route in population:
            for hop in self._hop_keys(route):
                if hop not in self.hops and hop not in missing:
                    missing.append(hop)

        if missing:
            segments = await asyncio.gather(
                *(
                    self.calculator.compute_segment(
                        self._location(origin),
                        self._location(destination),
                        self.traffic,
                        self.weather,
                        self.vehicle_type,
                        self.cancel_event,
                    )
                    for origin, destination in missing
                )
            )
            self.hops.update(zip(missing, segments))

        return [self.fitness(route) for route in population]

    def fitness(self, route: Chromosome) -> float:
        base_cost = sum(
            costs.weighted_cost(segment.distance_km, segment.duration_hr, segment.fuel_cost, segment.emissions_kg)
            for segment in (self.hops[hop] for hop in self._hop_keys(route))
        )
        priority_bonus = sum(
            (4 - self.pickups[index].priority) * (1 - 0.1 * position) for position, index in enumerate(route)
        )
        return 1000 / max(base_cost, 0.1) + priority_bonus


class GeneticRouteOptimizer:
    """Searches for a low-cost visiting order that favours urgent pickups early."""

    def __init__(
        self,
        calculator: SegmentCalculator,
        *,
        rng: random.Random | None = None,
        estimate_distance: Callable[[Location, Location], float] = _haversine,
        settings: Settings | None = None,
    ) -> None:
        config = settings or default_settings
        self.calculator = calculator
        self.rng = rng or random.Random(config.random_seed)
        self.estimate_distance = estimate_distance
        self.min_population = config.ga_min_population
        self.max_population = config.ga_max_population
        self.min_generations = config.ga_min_generations
        self.max_generations = config.ga_max_generations
        self.mutation_rate = config.ga_mutation_rate
        self.tournament_size = config.ga_tournament_size
        self.elite_count = config.ga_elite_count
        self.early_stop_generation = config.ga_early_stop_generation
        self.early_stop_fitness = config.ga_early_stop_fitness

    def population_size(self, pickup_count: int) -> int:
        return min(self.max_population, max(self.min_population, pickup_count))

    def generation_count(self, pickup_count: int) -> int:
        return min(self.max_generations, max(self.min_generations, pickup_count))

    async def optimize(
        self,
        pickups: Sequence[Location],
        start: Location,
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None = None,
    ) -> list[Location]:
        """Return the best visiting order found, with ``start`` first."""
        if not pickups:
            return [start]
        if len(pickups) == 1:
            return [start, pickups[0]]

        try:
            best = await self._search(pickups, start, traffic, weather, vehicle_type, cancel_event)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            raise OptimizationFailure(f"Genetic search failed: {exc}") from exc
        return [start, *(pickups[index] for index in best)]

    async def _search(
        self,
        pickups: Sequence[Location],
        start: Location,
        traffic: TrafficInfo,
        weather: WeatherInfo,
        vehicle_type: VehicleType,
        cancel_event: asyncio.Event | None,
    ) -> Chromosome:
        size = self.population_size(len(pickups))
        generations = self.generation_count(len(pickups))
        evaluator = _FitnessEvaluator(self.calculator, pickups, start, traffic, weather, vehicle_type, cancel_event)
        population = self.initial_population(pickups, start, size)
        logger.debug(f"Initialized population with {len(population)} routes")

        for generation in range(generations):
            scores = await evaluator.score_all(population)
            selected = self.select(population, scores)
            population = self.next_generation(selected, size)

            best_fitness = max(scores)
            if generation % 2 == 0 or generation == generations - 1:
                average = sum(scores) / len(scores)
                logger.debug(f"Generation {generation}: best fitness {best_fitness:.2f}, avg {average:.2f}")
            if generation > self.early_stop_generation and best_fitness > self.early_stop_fitness:
                logger.debug(f"Early termination at generation {generation} (fitness {best_fitness:.2f})")
                break
            if cancel_event is not None and cancel_event.is_set():
                break

        final_scores = await evaluator.score_all(population)
        best_index = max(range(len(population)), key=final_scores.__getitem__)
        logger.info(
            f"Best route found with fitness {final_scores[best_index]:.2f} "
            f"({len(evaluator.hops)} distinct hops evaluated)"
        )
        return population[best_index]

    def initial_population(self, pickups: Sequence[Location], start: Location, size: int) -> list[Chromosome]:
        population = [
            nearest_neighbour_order(pickups, start, self.estimate_distance),
            priority_order(pickups),
        ]
        indices = range(len(pickups))
        while len(population) < size:
            population.append(self.rng.sample(indices, len(pickups)))
        return population[:size]

    def select(self, population: Sequence[Chromosome], scores: Sequence[float]) -> list[tuple[Chromosome, float]]:
        """Tournament selection with replacement, ceil(P/2) winners."""
        selected = []
        for _ in range(math.ceil(len(population) / 2)):
            contenders = [self.rng.randrange(len(population)) for _ in range(self.tournament_size)]
            winner = max(contenders, key=lambda index: scores[index])
            selected.append((population[winner], scores[winner]))
        return selected

    def next_generation(self, selected: Sequence[tuple[Chromosome, float]], size: int) -> list[Chromosome]:
        ranked = sorted(selected, key=lambda item: item[1], reverse=True)
        seen: set[tuple[int, ...]] = set()
        generation: list[Chromosome] = []
        for route, _ in ranked:
            key = tuple(route)
            if key in seen:
                continue
            if len(generation) >= self.elite_count:
                break
            seen.add(key)
            generation.append(list(route))

        parents = [route for route, _ in selected]
        while len(generation) < 2 * len(selected):
            child = order_crossover(self.rng.choice(parents), self.rng.choice(parents), self.rng)
            if self.rng.random() < self.mutation_rate:
                mutate(child, self.rng)
            generation.append(child)
        return generation[:size]
