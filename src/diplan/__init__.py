from diplan._internal.binding import (
    MarkedPropertySelection,
    NoPropertySelection,
    SignatureConstructorResolution,
)
from diplan._internal.diagnostics import DiagnosticType, KnownRelationship
from diplan._internal.identifiers import InjectionConsumer, PredicateContext
from diplan._internal.ids import MonotonicIdGenerator
from diplan._internal.producer import InstanceProducer, ProducerState
from diplan._internal.type_matching import OpenGenericTypeMatcher, TypeMatch
from diplan.container import Container
from diplan.exceptions import (
    DIPlanActivationError,
    DIPlanCompilationError,
    DIPlanConfigurationError,
    DIPlanContainerLockedError,
    DIPlanCyclicDependencyError,
    DIPlanDependencyNotRegisteredError,
    DIPlanError,
    DIPlanInvalidOperationError,
    DIPlanLifestyleMismatchError,
    DIPlanObjectDisposedError,
    DIPlanRecursionLimitError,
)
from diplan.lifestyles import SCOPED, SINGLETON, TRANSIENT, CachingContext, Lifestyle
from diplan.markers import Inject, InjectMarker
from diplan.options import ContainerOptions
from diplan.plans import (
    CollectionNode,
    ConstantNode,
    ConstructionPlan,
    ConstructorNode,
    FactoryNode,
    InitializerNode,
    PlaceholderNode,
    PlanArgument,
    PlanNode,
    ProducerNode,
    PropertyInjectionNode,
    WrapNode,
)
from diplan.scope import ContextVarScopeLocator, Scope, ScopeLocator, ScopeState

__all__ = [
    "SCOPED",
    "SINGLETON",
    "TRANSIENT",
    "CachingContext",
    "CollectionNode",
    "ConstantNode",
    "ConstructionPlan",
    "ConstructorNode",
    "Container",
    "ContainerOptions",
    "ContextVarScopeLocator",
    "DIPlanActivationError",
    "DIPlanCompilationError",
    "DIPlanConfigurationError",
    "DIPlanContainerLockedError",
    "DIPlanCyclicDependencyError",
    "DIPlanDependencyNotRegisteredError",
    "DIPlanError",
    "DIPlanInvalidOperationError",
    "DIPlanLifestyleMismatchError",
    "DIPlanObjectDisposedError",
    "DIPlanRecursionLimitError",
    "DiagnosticType",
    "FactoryNode",
    "InitializerNode",
    "Inject",
    "InjectMarker",
    "InjectionConsumer",
    "InstanceProducer",
    "KnownRelationship",
    "Lifestyle",
    "MarkedPropertySelection",
    "MonotonicIdGenerator",
    "NoPropertySelection",
    "OpenGenericTypeMatcher",
    "PlaceholderNode",
    "PlanArgument",
    "PlanNode",
    "PredicateContext",
    "ProducerNode",
    "ProducerState",
    "PropertyInjectionNode",
    "Scope",
    "ScopeLocator",
    "ScopeState",
    "SignatureConstructorResolution",
    "TypeMatch",
    "WrapNode",
]
