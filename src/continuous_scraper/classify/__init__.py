"""Context-aware role classification."""

from .classifier import RoleClassifier, petitioner_names
from .rules import ENSLAVED_RULES, OFFICIAL_RULES, AnchorRule

__all__ = ["ENSLAVED_RULES", "OFFICIAL_RULES", "AnchorRule", "RoleClassifier", "petitioner_names"]
