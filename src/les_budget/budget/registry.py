"""
Budget Term Registry

This module keeps the catalog of budget term calculators, tracking for each
term kind:
- The variant type it handles
- The calculation function
- The profiles it publishes, with their metadata (long_name, units)

The engine dispatches every term variant through this registry, so a term
kind without a calculator is detected before a diagnostic step starts.
"""

from typing import Callable, Dict, List, Mapping, Optional, Tuple, Type
from dataclasses import dataclass, field
import logging

from .terms import TERM_KINDS, TERM_TYPES
from ..core.exceptions import LESBudgetError

logger = logging.getLogger(__name__)

# ============================================================================
# Registry Data Structures
# ============================================================================

@dataclass
class TermDefinition:
    """
    Metadata and computation information for a budget term kind.

    Attributes:
        kind: Term kind (e.g., 'shear', 'dissipation')
        term_type: Variant class handled by compute_func
        compute_func: Function (term, ctx) -> {profile name: profile}
        outputs: Published profiles, name -> (long_name, units)
        description: Detailed description
    """
    kind: str
    term_type: Type
    compute_func: Callable
    outputs: Dict[str, Tuple[str, str]] = field(default_factory=dict)
    description: str = ""

    @property
    def output_names(self) -> List[str]:
        return list(self.outputs)


class TermRegistry:
    """
    Registry for budget term calculators.

    Exactly one calculator is registered per term kind; the kinds form the
    closed set in TERM_KINDS.
    """

    def __init__(self):
        """Initialize empty registry."""
        self._registry: Dict[str, TermDefinition] = {}
        logger.debug("Initialized budget term registry")

    def register(
        self,
        kind: str,
        compute_func: Callable,
        outputs: Optional[Mapping[str, Tuple[str, str]]] = None,
        description: str = "",
    ) -> None:
        """
        Register a budget term calculator.

        Args:
            kind: Term kind, one of TERM_KINDS
            compute_func: Function computing the term's profiles
            outputs: Published profiles, name -> (long_name, units)
            description: Detailed description

        Raises:
            KeyError: If the kind is not a known term kind
        """
        if kind not in TERM_TYPES:
            raise KeyError(f"Unknown budget term kind '{kind}'. Known kinds: {list(TERM_KINDS)}")
        if kind in self._registry:
            logger.warning(f"Budget term '{kind}' already registered, overwriting")

        self._registry[kind] = TermDefinition(
            kind=kind,
            term_type=TERM_TYPES[kind],
            compute_func=compute_func,
            outputs=dict(outputs or {}),
            description=description,
        )
        logger.debug(f"Registered budget term: {kind}")

    def is_registered(self, kind: str) -> bool:
        """Check if a term kind is registered."""
        return kind in self._registry

    def get(self, kind: str) -> Optional[TermDefinition]:
        """Get term definition."""
        return self._registry.get(kind)

    def for_term(self, term) -> TermDefinition:
        """
        Find the definition handling a term variant.

        Raises:
            KeyError: If no calculator handles the variant's type
        """
        definition = self._registry.get(getattr(term, "kind", None))
        if definition is None or not isinstance(term, definition.term_type):
            raise KeyError(f"No budget term calculator registered for {type(term).__name__}")
        return definition

    def check_complete(self) -> None:
        """
        Verify that every term kind has a calculator.

        Raises:
            LESBudgetError: If a kind is missing
        """
        missing = [kind for kind in TERM_KINDS if kind not in self._registry]
        if missing:
            raise LESBudgetError(
                "Budget term registry is incomplete",
                f"No calculator for: {missing}"
            )

    def list_all(self) -> List[str]:
        """List registered term kinds in evaluation order."""
        return [kind for kind in TERM_KINDS if kind in self._registry]

    def list_outputs(self) -> List[str]:
        """List every published profile name in evaluation order."""
        return [name for kind in self.list_all() for name in self._registry[kind].outputs]

    def get_metadata(self, name: str) -> Dict[str, str]:
        """
        Get metadata for a published profile.

        Args:
            name: Profile name (e.g., 'tke_shear')

        Returns:
            Dictionary with metadata (long_name, units, term)
        """
        for definition in self._registry.values():
            if name in definition.outputs:
                long_name, units = definition.outputs[name]
                return {
                    'long_name': long_name,
                    'units': units,
                    'term': definition.kind,
                }
        raise KeyError(f"Budget profile '{name}' not registered")

    def __repr__(self) -> str:
        """String representation of registry."""
        return f"TermRegistry({len(self._registry)} term kinds registered)"


# ============================================================================
# Global Registry Instance
# ============================================================================

# Global registry instance (populated by the term modules)
_global_registry = TermRegistry()


def get_registry() -> TermRegistry:
    """Get the global budget term registry."""
    return _global_registry


def register_term(
    kind: str,
    outputs: Optional[Mapping[str, Tuple[str, str]]] = None,
    description: str = "",
):
    """
    Decorator to register a budget term calculation function.

    Example:
        @register_term(
            kind='buoyancy',
            outputs={'tke_buoy': ('TKE buoyancy production', 'm2 s-3')},
        )
        def compute_buoyancy(term, ctx):
            return {'tke_buoy': ...}

    Returns:
        Decorator function
    """
    def decorator(func: Callable) -> Callable:
        _global_registry.register(
            kind=kind,
            compute_func=func,
            outputs=outputs,
            description=description,
        )
        return func

    return decorator


# ============================================================================
# Exports
# ============================================================================

__all__ = [
    'TermDefinition',
    'TermRegistry',
    'get_registry',
    'register_term',
]
