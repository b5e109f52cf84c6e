"""
Subproblem Recipes
==================

A recipe turns staged data (and, for the second stage, the first-stage
decisions and a scenario payload) into a :class:`~stochprog.model.Model`.

>>> @FirstStageRecipe
... def first_stage(data):
...     model = Model()
...     x = model.add_var(lb=40, ub=120, name="x")
...     model.minimize(100 * x)
...     return model
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

from ..exceptions import DimensionError, InvalidInputError
from ..model import Decisions, Model

_STAGE_KEYS = {
    1: 1,
    2: 2,
    "1": 1,
    "2": 2,
    "stage_1": 1,
    "stage_2": 2,
    ":stage_1": 1,
    ":stage_2": 2,
    "first": 1,
    "second": 2,
}


def stage_key(stage: Union[int, str]) -> int:
    """Normalize a stage key (``1``, ``"stage_1"``, ...) to 1 or 2."""
    try:
        return _STAGE_KEYS[stage]
    except (KeyError, TypeError):
        raise InvalidInputError(f"unknown stage {stage!r}, expected 1 or 2") from None


class Recipe(ABC):
    """Generation callback bound to one stage."""

    stage: int = 0

    def __init__(self, func: Callable[..., Model], name: Optional[str] = None) -> None:
        if not callable(func):
            raise InvalidInputError(f"recipe must be callable, got {type(func).__name__}")
        self.func = func
        self.name = name or getattr(func, "__name__", type(self).__name__)

    @abstractmethod
    def generate(self, *args: Any) -> Model:
        """Build the stage model."""

    def _check(self, model: Any) -> Model:
        if not isinstance(model, Model):
            raise InvalidInputError(
                f"stage {self.stage} recipe {self.name!r} returned "
                f"{type(model).__name__}, expected Model"
            )
        return model

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


class FirstStageRecipe(Recipe):
    """``func(stage_data) -> Model``; every variable is a first-stage decision."""

    stage = 1

    def generate(self, stage_data: Any) -> Model:
        model = self._check(self.func(stage_data))
        if model.num_decisions:
            raise InvalidInputError("first-stage models cannot hold decision placeholders")
        return model

    def __call__(self, stage_data: Any) -> Model:
        return self.generate(stage_data)


class SecondStageRecipe(Recipe):
    """
    ``func(stage_data, decisions, payload) -> Model``.

    The model refers to the first-stage decisions through
    ``model.add_decisions(decisions)``.
    """

    stage = 2

    def generate(self, stage_data: Any, decisions: Decisions, scenario: Any) -> Model:
        payload = getattr(scenario, "data", scenario)
        model = self._check(self.func(stage_data, decisions, payload))
        if model.num_decisions not in (0, len(decisions)):
            raise DimensionError(
                f"second-stage model references {model.num_decisions} decisions, "
                f"first stage has {len(decisions)}"
            )
        return model

    def __call__(self, stage_data: Any, decisions: Decisions, scenario: Any) -> Model:
        return self.generate(stage_data, decisions, scenario)


def as_recipe(stage: Union[int, str], recipe: Union[Recipe, Callable[..., Model]]) -> Recipe:
    """Wrap a plain callable in the recipe type of ``stage``."""
    stage = stage_key(stage)
    if isinstance(recipe, Recipe):
        if recipe.stage != stage:
            raise InvalidInputError(f"{recipe!r} is a stage {recipe.stage} recipe, not stage {stage}")
        return recipe
    return FirstStageRecipe(recipe) if stage == 1 else SecondStageRecipe(recipe)
