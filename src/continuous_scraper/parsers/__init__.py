"""Source parsers and the category registry."""

from .base import FetchedPage, Parser, ParserRegistry, context_window
from .generic import parse_generic, parse_indexed_record
from .names import is_valid_name, rejection_reason, validate_name
from .panel import parse_panel
from .pedigree import FetcherPedigreeClient, PedigreeClient, PedigreePerson, parse_pedigree, parse_person_page
from .petition import parse_petition
from .schedule import parse_schedule, placeholder_name


def build_registry() -> ParserRegistry:
    registry = ParserRegistry(default=parse_generic)
    registry.register("generic", parse_generic)
    registry.register("petition", parse_petition)
    registry.register("schedule", parse_schedule)
    registry.register("slave_schedule", parse_schedule)
    registry.register("panel", parse_panel)
    registry.register("familysearch", parse_indexed_record)
    registry.register("pedigree", parse_pedigree)
    return registry


__all__ = [
    "FetchedPage",
    "FetcherPedigreeClient",
    "Parser",
    "ParserRegistry",
    "PedigreeClient",
    "PedigreePerson",
    "build_registry",
    "context_window",
    "is_valid_name",
    "parse_generic",
    "parse_indexed_record",
    "parse_panel",
    "parse_pedigree",
    "parse_person_page",
    "parse_petition",
    "parse_schedule",
    "placeholder_name",
    "rejection_reason",
    "validate_name",
]
