"""Lightweight structural extractor for Sui Move source files.

This is not a grammar parser. It masks comments and string literals, locates
declarations with signature patterns and finds bodies by brace depth
counting. Rules only see the ``ParsedFile``/``FunctionRecord`` contract, so a
grammar-correct implementation of ``SourceExtractor`` can replace it.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import PurePath

from loguru import logger

from ..exceptions import ExtractionError
from ..models import (
    ConstantRecord,
    FunctionRecord,
    ImportRecord,
    ModuleRecord,
    Parameter,
    ParsedFile,
    SourceFile,
    StructRecord,
)
from ..utils.text_helpers import (
    find_matching_brace,
    first_unbalanced_index,
    line_number,
    mask_source,
    split_top_level,
)

FUNCTION_PATTERN = re.compile(
    r"(?P<visibility>\bpublic(?:\s*\(\s*(?P<scope>friend|package)\s*\))?\s+)?"
    r"(?P<entry>\bentry\s+)?"
    r"(?:\b(?:macro|inline)\s+)?"
    r"\bfun\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*"
    r"(?P<generics><[^(){};]*>)?\s*"
    r"\((?P<params>[^)]*)\)"
    r"(?:\s*:\s*(?P<ret>[^{;]+?))?"
    r"(?:\s+acquires\s+[^{;]+?)?\s*\{"
)

MODULE_PATTERN = re.compile(
    r"\bmodule\s+(?:(?P<address>[A-Za-z0-9_]+)::)?(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*(?P<term>[{;])"
)

STRUCT_PATTERN = re.compile(
    r"\b(?:public\s+)?struct\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*"
    r"(?P<generics><[^{};(]*>)?\s*"
    r"(?:has\s+(?P<abilities>[A-Za-z_,\s]+?))?\s*(?P<open>[{;(])"
)

CONSTANT_PATTERN = re.compile(
    r"\bconst\s+(?P<name>[A-Za-z_][A-Za-z0-9_]*)\s*:\s*(?P<type>[^=;]+?)\s*=\s*(?P<value>[^;]+?)\s*;"
)

IMPORT_PATTERN = re.compile(
    r"\buse\s+(?P<module>[A-Za-z0-9_:]+?)(?:::\{(?P<items>[^}]*)\})?(?:\s+as\s+(?P<alias>[A-Za-z_][A-Za-z0-9_]*))?\s*;"
)


class SourceExtractor(ABC):
    """Turns source text into function/module records."""

    @abstractmethod
    def extract(self, source: SourceFile) -> ParsedFile:
        """Extract one file. Must not raise; failures go into ``parse_error``."""

    def extract_all(self, sources: Iterable[SourceFile]) -> list[ParsedFile]:
        """Extract every file, isolating failures to the file that caused them."""
        parsed_files = []
        for source in sources:
            try:
                parsed_files.append(self.extract(source))
            except Exception as e:
                logger.error(f"Extractor failed on {source.name}: {e}")
                parsed_files.append(ParsedFile(source=source, parse_error=str(e)))
        return parsed_files


class MoveParser(SourceExtractor):
    """Pattern-based extractor for Move modules."""

    def extract(self, source: SourceFile) -> ParsedFile:
        if source.parse_error:
            logger.warning(f"Skipping {source.name}: {source.parse_error}")
            return ParsedFile(source=source, parse_error=source.parse_error)
        try:
            parsed = self._extract(source)
        except ExtractionError as e:
            logger.warning(f"Parse error in {source.name}: {e}")
            return ParsedFile(source=source, parse_error=str(e))
        logger.debug(
            f"Extracted {len(parsed.functions)} functions and {len(parsed.modules)} modules from {source.name}"
        )
        return parsed

    def _extract(self, source: SourceFile) -> ParsedFile:
        content = source.content
        masked = mask_source(content)

        bad_index = first_unbalanced_index(masked)
        if bad_index is not None:
            raise ExtractionError(source.name, "Unbalanced braces", line_number(content, bad_index))

        modules, spans = self._extract_modules(source.name, masked)
        default_module = PurePath(source.name).stem
        functions = self._extract_functions(source.name, content, masked, modules, spans, default_module)

        return ParsedFile(
            source=source,
            modules=modules,
            functions=functions,
            structs=self._extract_structs(source.name, masked),
            constants=self._extract_constants(content, masked),
            imports=self._extract_imports(masked),
        )

    def _extract_modules(
        self, file_name: str, masked: str
    ) -> tuple[list[ModuleRecord], list[tuple[int, int]]]:
        modules: list[ModuleRecord] = []
        spans: list[tuple[int, int]] = []
        matches = list(MODULE_PATTERN.finditer(masked))
        for i, match in enumerate(matches):
            if match.group("term") == "{":
                end = find_matching_brace(masked, match.end() - 1)
                if end == -1:
                    raise ExtractionError(
                        file_name,
                        f"Unterminated module {match.group('name')}",
                        line_number(masked, match.start()),
                    )
            else:
                # `module a::b;` owns everything up to the next module declaration
                end = matches[i + 1].start() - 1 if i + 1 < len(matches) else len(masked) - 1
            modules.append(
                ModuleRecord(
                    name=match.group("name"),
                    address=match.group("address"),
                    start_line=line_number(masked, match.start()),
                    end_line=line_number(masked, end),
                )
            )
            spans.append((match.start(), end))
        return modules, spans

    def _extract_functions(
        self,
        file_name: str,
        content: str,
        masked: str,
        modules: list[ModuleRecord],
        spans: list[tuple[int, int]],
        default_module: str,
    ) -> list[FunctionRecord]:
        functions = []
        for match in FUNCTION_PATTERN.finditer(masked):
            open_index = match.end() - 1
            close_index = find_matching_brace(masked, open_index)
            if close_index == -1:
                raise ExtractionError(
                    file_name,
                    f"Unterminated body of function {match.group('name')}",
                    line_number(content, match.start()),
                )

            owner = self._owning_module(match.start(), modules, spans)
            visibility = "private"
            if match.group("visibility"):
                scope = match.group("scope")
                visibility = f"public({scope})" if scope else "public"

            generics = match.group("generics")
            ret = match.group("ret")
            function = FunctionRecord(
                name=match.group("name"),
                module=owner.name if owner else default_module,
                address=owner.address if owner else None,
                visibility=visibility,
                is_entry=bool(match.group("entry")),
                signature=" ".join(content[match.start():open_index].split()),
                body=content[open_index + 1:close_index],
                text=content[match.start():close_index + 1],
                start_line=line_number(content, match.start()),
                end_line=line_number(content, close_index),
                body_start_line=line_number(content, open_index + 1),
                parameters=self._parse_parameters(match.group("params")),
                generics=generics[1:-1].strip() if generics else None,
                return_type=" ".join(ret.split()) if ret else None,
            )
            functions.append(function)
            if owner:
                owner.functions.append(function.name)
        return functions

    @staticmethod
    def _owning_module(
        index: int, modules: list[ModuleRecord], spans: list[tuple[int, int]]
    ) -> ModuleRecord | None:
        for module, (start, end) in zip(modules, spans):
            if start <= index <= end:
                return module
        return None

    @staticmethod
    def _parse_parameters(params_text: str) -> tuple[Parameter, ...]:
        parameters = []
        for part in split_top_level(params_text):
            name, sep, type_text = part.partition(":")
            if not sep:
                continue
            name = name.strip()
            if name.startswith("mut "):
                name = name[4:].strip()
            parameters.append(Parameter(name=name, type=" ".join(type_text.split())))
        return tuple(parameters)

    def _extract_structs(self, file_name: str, masked: str) -> list[StructRecord]:
        structs = []
        for match in STRUCT_PATTERN.finditer(masked):
            fields: list[Parameter] = []
            if match.group("open") == "{":
                close_index = find_matching_brace(masked, match.end() - 1)
                if close_index == -1:
                    raise ExtractionError(
                        file_name,
                        f"Unterminated struct {match.group('name')}",
                        line_number(masked, match.start()),
                    )
                fields = list(self._parse_parameters(masked[match.end():close_index]))
            abilities = match.group("abilities")
            generics = match.group("generics")
            structs.append(
                StructRecord(
                    name=match.group("name"),
                    abilities=[a.strip() for a in abilities.split(",") if a.strip()] if abilities else [],
                    fields=fields,
                    line=line_number(masked, match.start()),
                    generics=generics[1:-1].strip() if generics else None,
                )
            )
        return structs

    @staticmethod
    def _extract_constants(content: str, masked: str) -> list[ConstantRecord]:
        constants = []
        for match in CONSTANT_PATTERN.finditer(masked):
            # Values may be string literals, which are blank in the masked text
            value = content[match.start("value"):match.end("value")].strip()
            constants.append(
                ConstantRecord(
                    name=match.group("name"),
                    type=match.group("type").strip(),
                    value=value,
                    line=line_number(masked, match.start()),
                )
            )
        return constants

    @staticmethod
    def _extract_imports(masked: str) -> list[ImportRecord]:
        imports = []
        for match in IMPORT_PATTERN.finditer(masked):
            items_text = match.group("items")
            items = [i.strip() for i in items_text.split(",") if i.strip()] if items_text else ["*"]
            imports.append(
                ImportRecord(
                    module=match.group("module"),
                    items=items,
                    alias=match.group("alias"),
                    line=line_number(masked, match.start()),
                )
            )
        return imports
