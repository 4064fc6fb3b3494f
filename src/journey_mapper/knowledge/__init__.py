"""Knowledge store access, id allocation, merging and reporting."""

from journey_mapper.knowledge.ids import COUNTER_PREFIXES, IdAllocator, format_id
from journey_mapper.knowledge.merge import add_unique, merge_array, safe_parse, union_values
from journey_mapper.knowledge.project import ProjectTracker
from journey_mapper.knowledge.reports import REPORT_TYPES, Reporter
from journey_mapper.knowledge.smes import SmeRegistry
from journey_mapper.knowledge.store import KnowledgeStore

__all__ = [
    "COUNTER_PREFIXES",
    "IdAllocator",
    "KnowledgeStore",
    "ProjectTracker",
    "REPORT_TYPES",
    "Reporter",
    "SmeRegistry",
    "add_unique",
    "format_id",
    "merge_array",
    "safe_parse",
    "union_values",
]
