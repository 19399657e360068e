"""Contract with the downstream food analysis service.

The capture controller produces snapshots; something else decides what
is on the plate. This module defines that hand-off: snapshots travel as
base64 data URIs, results come back as FoodAnalysis values. The
controller never looks at the result.

Example:
    class VisionModelConsumer:
        async def analyze(self, photo_data_uri: str) -> FoodAnalysis:
            payload = await call_model(photo_data_uri)
            return FoodAnalysis.from_dict(payload)

    analysis = await submit_snapshot(VisionModelConsumer(), snapshot)
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from meal_capture.devices.snapshot import Snapshot
from meal_capture.observability import get_logger

logger = get_logger(__name__)

__all__ = [
    "AnalysisConsumer",
    "AnalysisError",
    "FoodAnalysis",
    "submit_snapshot",
]

# Payload keys as sent by the analysis service, mapped to field names.
_CAMEL_CASE_FIELDS = {
    "isFoodItem": "is_food_item",
    "calorieEstimate": "calorie_estimate",
    "proteinEstimate": "protein_estimate",
    "fatEstimate": "fat_estimate",
    "carbEstimate": "carb_estimate",
}


class AnalysisError(Exception):
    """Raised when an analysis result is malformed or the service failed."""

    pass


@dataclass(frozen=True, slots=True)
class FoodAnalysis:
    """Nutrition estimate for one photo.

    Attributes:
        is_food_item: Whether the photo shows food at all.
        calorie_estimate: Estimated kcal (0 when not food).
        protein_estimate: Grams of protein.
        fat_estimate: Grams of fat.
        carb_estimate: Grams of carbohydrate.
        ingredients: Ingredients identified in the meal.
        notes: Free-form remarks from the service.
    """

    is_food_item: bool
    calorie_estimate: float = 0.0
    protein_estimate: float = 0.0
    fat_estimate: float = 0.0
    carb_estimate: float = 0.0
    ingredients: tuple[str, ...] = field(default=())
    notes: str | None = None

    @classmethod
    def not_food(cls, notes: str | None = None) -> FoodAnalysis:
        """Result for a photo that does not show food (all estimates 0)."""
        return cls(is_food_item=False, notes=notes)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FoodAnalysis:
        """Parse a service payload.

        Accepts both camelCase keys (``isFoodItem``, ``calorieEstimate``)
        and snake_case field names. When the photo is not food, estimates
        and ingredients are forced to zero / empty.

        Args:
            data: Decoded JSON payload.

        Returns:
            FoodAnalysis value.

        Raises:
            AnalysisError: If ``isFoodItem`` is missing or a value has the
                wrong type or is negative.

        Example:
            >>> FoodAnalysis.from_dict({"isFoodItem": True, "calorieEstimate": 520,
            ...                         "ingredients": ["rice", "dal"]}).calorie_estimate
            520.0
        """
        values = {_CAMEL_CASE_FIELDS.get(key, key): value for key, value in data.items()}

        if "is_food_item" not in values:
            raise AnalysisError("Analysis result is missing isFoodItem")
        is_food = values["is_food_item"]
        if not isinstance(is_food, bool):
            raise AnalysisError(f"isFoodItem must be a boolean, got {is_food!r}")

        notes = values.get("notes")
        if not is_food:
            return cls.not_food(notes=notes)

        estimates: dict[str, float] = {}
        for name in ("calorie_estimate", "protein_estimate", "fat_estimate", "carb_estimate"):
            raw = values.get(name, 0)
            if isinstance(raw, bool) or not isinstance(raw, int | float):
                raise AnalysisError(f"{name} must be a number, got {raw!r}")
            if raw < 0:
                raise AnalysisError(f"{name} must not be negative, got {raw}")
            estimates[name] = float(raw)

        ingredients = values.get("ingredients") or []
        if not isinstance(ingredients, list | tuple) or not all(
            isinstance(item, str) for item in ingredients
        ):
            raise AnalysisError("ingredients must be a list of strings")

        return cls(
            is_food_item=True,
            ingredients=tuple(ingredients),
            notes=notes,
            **estimates,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the camelCase payload form."""
        return {
            "isFoodItem": self.is_food_item,
            "calorieEstimate": self.calorie_estimate,
            "proteinEstimate": self.protein_estimate,
            "fatEstimate": self.fat_estimate,
            "carbEstimate": self.carb_estimate,
            "ingredients": list(self.ingredients),
            "notes": self.notes,
        }


@runtime_checkable
class AnalysisConsumer(Protocol):  # pragma: no cover
    """Downstream service that estimates nutrition from a photo."""

    async def analyze(self, photo_data_uri: str) -> FoodAnalysis:
        """Analyze a photo.

        Args:
            photo_data_uri: ``data:<mime>;base64,<payload>`` string.

        Returns:
            FoodAnalysis for the photo.

        Raises:
            AnalysisError: If the service failed or answered garbage.
        """
        ...


async def submit_snapshot(consumer: AnalysisConsumer, snapshot: Snapshot) -> FoodAnalysis:
    """Send a snapshot to an analysis consumer as a data URI.

    Args:
        consumer: Analysis service.
        snapshot: Camera capture or upload.

    Returns:
        The consumer's FoodAnalysis, unmodified.

    Raises:
        AnalysisError: Propagated from the consumer.
    """
    logger.info(
        "Submitting snapshot for analysis",
        source=snapshot.source.value,
        mime_type=snapshot.mime_type,
        size_bytes=snapshot.size_bytes,
    )
    result = await consumer.analyze(snapshot.to_data_uri())
    logger.info(
        "Analysis received",
        is_food_item=result.is_food_item,
        calorie_estimate=result.calorie_estimate,
    )
    return result
