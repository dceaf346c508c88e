"""
Reconciler registry for auto-discovery of resource reconcilers.

This module provides a decorator-based registry pattern that allows
reconcilers to self-register with their resource kind, phase, ordering and
hard dependencies.
"""

from typing import Callable, Dict, List, Optional, Sequence, Type

from ..enums import Phase, ResourceKind
from .base import BaseReconciler

_RECONCILER_REGISTRY: Dict[str, Type[BaseReconciler]] = {}


def register_reconciler(
    name: str,
    kind: ResourceKind,
    phase: Phase,
    order: int,
    depends_on: Sequence[ResourceKind] = (),
) -> Callable[[Type[BaseReconciler]], Type[BaseReconciler]]:
    """
    Decorator to register a reconciler class.

    Args:
        name: Unique reconciler name (deployment_role, broker_identity_provider)
        kind: Resource kind it manages
        phase: Bootstrap phase that owns the resource
        order: Position within an account; lower runs first
        depends_on: Kinds that must have succeeded earlier in the same account

    Usage:
        @register_reconciler("lock_table", ResourceKind.LOCK_TABLE, Phase.FOUNDATION, order=50)
        class LockTableReconciler(BaseReconciler[LockTableRecord]):
            ...
    """
    def decorator(cls: Type[BaseReconciler]) -> Type[BaseReconciler]:
        if name in _RECONCILER_REGISTRY and _RECONCILER_REGISTRY[name] is not cls:
            raise ValueError(f"Reconciler name already registered: {name}")
        _RECONCILER_REGISTRY[name] = cls
        cls.RECONCILER_NAME = name
        cls.KIND = kind
        cls.PHASE = phase
        cls.ORDER = order
        cls.DEPENDS_ON = tuple(depends_on)
        return cls
    return decorator


def get_all_reconciler_classes(phase: Optional[Phase] = None) -> List[Type[BaseReconciler]]:
    """
    Get registered reconciler classes in execution order, optionally filtered by phase.

    Args:
        phase: Filter by phase, or None for all

    Returns:
        List of reconciler classes sorted by order
    """
    classes = [cls for cls in _RECONCILER_REGISTRY.values() if phase is None or cls.PHASE == phase]
    return sorted(classes, key=lambda cls: (cls.ORDER, cls.RECONCILER_NAME))
