"""
Resource reconcilers for Keystone bootstrap.

Automatically discovers and imports all reconciler modules to ensure they
register themselves via the @register_reconciler decorator.
"""

import importlib
import pkgutil
from pathlib import Path


def _discover_and_register_reconcilers() -> None:
    """
    Automatically discover and import all reconciler modules.

    Walks through the resources/ directory and imports all Python files.
    This triggers the @register_reconciler decorator, which registers
    reconcilers in the registry.
    """
    resources_dir = Path(__file__).parent / "resources"

    for module_info in pkgutil.iter_modules([str(resources_dir)]):
        importlib.import_module(f"keystone.reconcile.resources.{module_info.name}")


_discover_and_register_reconcilers()

# Reconciler classes are accessed via registry, not direct imports
__all__: list = []
