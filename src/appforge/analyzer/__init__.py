"""Declaration dependency analyzer for JavaScript/TypeScript sources."""

from appforge.analyzer.config import HTTP_METHODS, AnalyzerConfig
from appforge.analyzer.differ import diff_declarations, process_declarations, safe_extract
from appforge.analyzer.exceptions import AnalyzerError, UnsupportedSourceError
from appforge.analyzer.extractor import extract_declarations, process_all_declarations
from appforge.analyzer.paths import (
    derive_route_path,
    extract_package_name,
    resolve_import_path,
)

__all__ = [
    "HTTP_METHODS",
    "AnalyzerConfig",
    "AnalyzerError",
    "UnsupportedSourceError",
    "derive_route_path",
    "diff_declarations",
    "extract_declarations",
    "extract_package_name",
    "process_all_declarations",
    "process_declarations",
    "resolve_import_path",
    "safe_extract",
]
