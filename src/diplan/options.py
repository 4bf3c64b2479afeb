from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from diplan._internal.binding import NoPropertySelection, SignatureConstructorResolution
from diplan._internal.ids import MonotonicIdGenerator
from diplan.lifestyles import TRANSIENT
from diplan.scope import ContextVarScopeLocator

if TYPE_CHECKING:
    from diplan._internal.binding import (
        ConstructorResolutionBehavior,
        PropertySelectionBehavior,
    )
    from diplan.lifestyles import Lifestyle
    from diplan.scope import ScopeLocator


@dataclass(frozen=True, slots=True, kw_only=True)
class ContainerOptions:
    """Container-wide behavior, fixed when the container is created.

    Attributes:
        default_lifestyle: Lifestyle for registrations that omit one and for
            auto-registered concrete types.
        resolve_unregistered_concrete_types: Construct eligible concrete classes
            that have no registration.
        allow_overriding_registrations: Replace an existing registration instead of
            raising ``DIPlanConfigurationError``.
        suppress_lifestyle_mismatch_verification: Skip the build-time lifestyle
            mismatch check for every registration.
        constructor_resolution: Decides which parameters are injected.
        property_selection: Decides which attributes are injected. The default
            never selects any.
        scope_locator: Finds the ambient scope for scoped lifestyles.
        id_generator: Hands out container and scope ids.

    """

    default_lifestyle: Lifestyle = TRANSIENT
    resolve_unregistered_concrete_types: bool = True
    allow_overriding_registrations: bool = False
    suppress_lifestyle_mismatch_verification: bool = False
    constructor_resolution: ConstructorResolutionBehavior = field(
        default_factory=SignatureConstructorResolution,
    )
    property_selection: PropertySelectionBehavior = field(default_factory=NoPropertySelection)
    scope_locator: ScopeLocator = field(default_factory=ContextVarScopeLocator)
    id_generator: MonotonicIdGenerator = field(default_factory=MonotonicIdGenerator)


__all__ = ["ContainerOptions"]
