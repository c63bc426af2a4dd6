from .store import SqlClient, SchemaStore
from .migrations import Migration, MigrationRunner
from .identity import IdentityResolver
from .locations import FuzzyLocationMatcher, match_location
from .assembly import AssemblyGraphBuilder, AssemblyClass
from .dates import DateNormalizer, normalize_date
from .diagnostics import DiagnosticLog, IssueKind

__all__ = [
    "SqlClient", "SchemaStore", "Migration", "MigrationRunner", "IdentityResolver",
    "FuzzyLocationMatcher", "match_location", "AssemblyGraphBuilder", "AssemblyClass",
    "DateNormalizer", "normalize_date", "DiagnosticLog", "IssueKind",
]
