from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from diplan._internal.type_checks import type_name

if TYPE_CHECKING:
    from diplan._internal.producer import InstanceProducer
    from diplan.lifestyles import Lifestyle


class DiagnosticType(Enum):
    """Diagnostics that can be suppressed for a single registration."""

    LIFESTYLE_MISMATCH = "lifestyle_mismatch"


@dataclass(frozen=True, slots=True, eq=False)
class KnownRelationship:
    """A consumer embedding a dependency producer in its construction plan.

    Attributes:
        implementation_type: Type (or factory) consuming the dependency.
        lifestyle: Lifestyle of the consumer.
        dependency: Producer supplying the dependency.

    """

    implementation_type: Any
    lifestyle: Lifestyle
    dependency: InstanceProducer

    def __repr__(self) -> str:
        return (
            f"KnownRelationship({type_name(self.implementation_type)} "
            f"[{self.lifestyle.name}] -> {type_name(self.dependency.service_type)} "
            f"[{self.dependency.lifestyle.name}])"
        )


def has_lifestyle_mismatch(relationship: KnownRelationship) -> bool:
    """Return true when the consumer outlives the dependency it captures."""
    return relationship.lifestyle.length > relationship.dependency.lifestyle.length


def find_lifestyle_mismatch(
    relationships: Iterable[KnownRelationship],
) -> KnownRelationship | None:
    """Return the first relationship with a lifestyle mismatch, if any."""
    for relationship in relationships:
        if has_lifestyle_mismatch(relationship):
            return relationship
    return None


def describe_lifestyle_mismatch(relationship: KnownRelationship) -> str:
    """Return a human-readable explanation of a mismatched relationship."""
    consumer = type_name(relationship.implementation_type)
    dependency = type_name(relationship.dependency.service_type)
    return (
        f"'{consumer}' ({relationship.lifestyle.name}) depends on '{dependency}' "
        f"({relationship.dependency.lifestyle.name}), which has a shorter lifestyle. "
        f"The {relationship.dependency.lifestyle.name} dependency would be kept alive by "
        f"the {relationship.lifestyle.name} consumer. Align the lifestyles or suppress "
        f"'{DiagnosticType.LIFESTYLE_MISMATCH.value}' for this registration."
    )


__all__ = [
    "DiagnosticType",
    "KnownRelationship",
    "describe_lifestyle_mismatch",
    "find_lifestyle_mismatch",
    "has_lifestyle_mismatch",
]
