from diforge.compiler import ExpressionCompiler
from diforge.container import Container
from diforge.diagnostics import DiagnosticType, LifestyleMismatchAnalyzer, LifestyleMismatchDiagnosticResult
from diforge.events import ExpressionBuiltEventArgs, ExpressionBuiltHandler
from diforge.exceptions import (
    DIForgeActivationError,
    DIForgeConfigurationError,
    DIForgeCyclicDependencyError,
    DIForgeDiagnosticError,
    DIForgeError,
    DIForgeInvalidOperationError,
    DIForgeVerificationError,
)
from diforge.lifestyles import Lifestyle
from diforge.options import ContainerOptions
from diforge.plans import (
    ConstructionPlan,
    ConstructorPlan,
    DecoratorPlan,
    ExpressionPlan,
    FactoryPlan,
    InstancePlan,
)
from diforge.producer import InstanceProducer
from diforge.properties import PropertyBatchBuilder, PropertyInfo, PropertyInjectionData
from diforge.relationships import InjectionConsumerInfo, InjectionTargetInfo, KnownRelationship
from diforge.scope import Scope
from diforge.visualization import VisualizationOptions

__all__ = [
    "ConstructionPlan",
    "ConstructorPlan",
    "Container",
    "ContainerOptions",
    "DIForgeActivationError",
    "DIForgeConfigurationError",
    "DIForgeCyclicDependencyError",
    "DIForgeDiagnosticError",
    "DIForgeError",
    "DIForgeInvalidOperationError",
    "DIForgeVerificationError",
    "DecoratorPlan",
    "DiagnosticType",
    "ExpressionBuiltEventArgs",
    "ExpressionBuiltHandler",
    "ExpressionCompiler",
    "ExpressionPlan",
    "FactoryPlan",
    "InjectionConsumerInfo",
    "InjectionTargetInfo",
    "InstancePlan",
    "InstanceProducer",
    "KnownRelationship",
    "Lifestyle",
    "LifestyleMismatchAnalyzer",
    "LifestyleMismatchDiagnosticResult",
    "PropertyBatchBuilder",
    "PropertyInfo",
    "PropertyInjectionData",
    "Scope",
    "VisualizationOptions",
]
