"""Builds visualization nodes and relationships from extractor output.

Read-only consumer: nothing in the analysis core depends on this module.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from ..analysis.rules import MODULE_CALL_PATTERN
from ..models import Finding, FunctionRecord, ParsedFile

LOCAL_CALL_PATTERN = re.compile(r"(?<![:\w])(?P<function>[A-Za-z_]\w*)\s*(?:<[^()\n]*>)?\s*\(")


@dataclass
class GraphData:
    nodes: list[dict[str, Any]] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)


def _module_key(func: FunctionRecord) -> str:
    return f"{func.address}::{func.module}" if func.address else func.module


def build_graph(parsed_files: Sequence[ParsedFile], findings: Iterable[Finding] = ()) -> GraphData:
    """Module and Function nodes with CONTAINS and CALLS relationships.

    Each node carries ``finding_count``: findings located inside the function
    span (or, for modules, inside any of its functions).
    """
    graph = GraphData()
    findings = list(findings)
    functions_by_module: dict[str, dict[str, FunctionRecord]] = {}
    module_counts: dict[str, int] = {}

    for parsed in parsed_files:
        if not parsed.ok:
            logger.warning(f"Skipping file {parsed.name} in graph due to parse error")
            continue
        for func in parsed.functions:
            module_key = _module_key(func)
            functions_by_module.setdefault(func.module, {})[func.name] = func
            count = sum(
                1 for f in findings if f.file == parsed.name and func.start_line <= f.line <= func.end_line
            )
            module_counts[module_key] = module_counts.get(module_key, 0) + count
            graph.nodes.append(
                {
                    "label": "Function",
                    "properties": {
                        "qualified_name": func.qualified_name,
                        "name": func.name,
                        "module": func.module,
                        "visibility": func.visibility,
                        "is_entry": func.is_entry,
                        "file": parsed.name,
                        "start_line": func.start_line,
                        "end_line": func.end_line,
                        "finding_count": count,
                    },
                }
            )
            graph.relationships.append(
                {
                    "start_label": "Module",
                    "start_key": "qualified_name",
                    "start_value": module_key,
                    "rel_type": "CONTAINS",
                    "end_label": "Function",
                    "end_key": "qualified_name",
                    "end_value": func.qualified_name,
                }
            )

    seen_modules = set()
    for parsed in parsed_files:
        if not parsed.ok:
            continue
        for module in parsed.modules:
            if module.full_name in seen_modules:
                continue
            seen_modules.add(module.full_name)
            graph.nodes.append(
                {
                    "label": "Module",
                    "properties": {
                        "qualified_name": module.full_name,
                        "name": module.name,
                        "address": module.address,
                        "file": parsed.name,
                        "function_count": len(module.functions),
                        "finding_count": module_counts.get(module.full_name, 0),
                    },
                }
            )
        # Functions outside any module block belong to a module named after the file
        implicit: dict[str, list[FunctionRecord]] = {}
        for func in parsed.functions:
            module_key = _module_key(func)
            if module_key not in seen_modules:
                implicit.setdefault(module_key, []).append(func)
        for module_key, funcs in implicit.items():
            seen_modules.add(module_key)
            graph.nodes.append(
                {
                    "label": "Module",
                    "properties": {
                        "qualified_name": module_key,
                        "name": funcs[0].module,
                        "address": funcs[0].address,
                        "file": parsed.name,
                        "function_count": len(funcs),
                        "finding_count": module_counts.get(module_key, 0),
                    },
                }
            )

    for parsed in parsed_files:
        if not parsed.ok:
            continue
        for func in parsed.functions:
            for callee in sorted(_callees(func, functions_by_module)):
                graph.relationships.append(
                    {
                        "start_label": "Function",
                        "start_key": "qualified_name",
                        "start_value": func.qualified_name,
                        "rel_type": "CALLS",
                        "end_label": "Function",
                        "end_key": "qualified_name",
                        "end_value": callee,
                    }
                )

    logger.info(f"Built graph with {len(graph.nodes)} nodes and {len(graph.relationships)} relationships")
    return graph


def _callees(func: FunctionRecord, functions_by_module: dict[str, dict[str, FunctionRecord]]) -> set[str]:
    body = func.body_code
    callees = set()
    for match in MODULE_CALL_PATTERN.finditer(body):
        target = functions_by_module.get(match.group("module"), {}).get(match.group("function"))
        if target:
            callees.add(target.qualified_name)
    local = functions_by_module.get(func.module, {})
    for match in LOCAL_CALL_PATTERN.finditer(body):
        target = local.get(match.group("function"))
        if target and target.name != func.name:
            callees.add(target.qualified_name)
    return callees
