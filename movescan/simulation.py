"""Placeholder dry-run transactions for public entry functions.

Nothing is executed. ``DryRunExecutor`` is the extension point for a real
sandboxed interpreter or RPC client.
"""

import re
from abc import ABC, abstractmethod
from collections.abc import Sequence

from loguru import logger

from .models import (
    CallDescriptor,
    ExecutionResult,
    FunctionRecord,
    Parameter,
    ParsedFile,
    SimulationResult,
)

PLACEHOLDER_ADDRESS = "0x0"
STUB_GAS_USED = 1_000_000
SIMULATION_RECOMMENDATION = "Review simulation results for unexpected behavior"

UNSIGNED_INT_PATTERN = re.compile(r"^u(?:8|16|32|64|128|256)$")


class DryRunExecutor(ABC):
    @abstractmethod
    async def execute_dry_run(self, descriptor: CallDescriptor) -> ExecutionResult:
        """Dry-run ``descriptor`` and report the outcome."""


class StubDryRunExecutor(DryRunExecutor):
    """Canned success; executes nothing."""

    async def execute_dry_run(self, descriptor: CallDescriptor) -> ExecutionResult:
        return ExecutionResult(status="success", gas_used=STUB_GAS_USED, warnings=())


def _base_type(type_text: str) -> str:
    base = type_text.strip()
    if base.startswith("&"):
        base = base[1:].strip()
        if base.startswith("mut "):
            base = base[4:].strip()
    return base


def placeholder_argument(param: Parameter) -> str:
    base = _base_type(param.type)
    if UNSIGNED_INT_PATTERN.match(base):
        return "100"
    if base == "address":
        return "0x1"
    if base == "bool":
        return "true"
    return "0x0"


def is_context_parameter(param: Parameter) -> bool:
    """TxContext is supplied by the runtime, never by the caller."""
    return _base_type(param.type).split("::")[-1] == "TxContext"


def build_call_descriptor(func: FunctionRecord) -> CallDescriptor:
    address = func.address or PLACEHOLDER_ADDRESS
    arguments = tuple(placeholder_argument(p) for p in func.parameters if not is_context_parameter(p))
    return CallDescriptor(
        kind="moveCall",
        target=f"{address}::{func.module}::{func.name}",
        arguments=arguments,
        type_arguments=(),
    )


class SimulationGenerator:
    """Builds and dry-runs one call descriptor per public entry function."""

    def __init__(self, executor: DryRunExecutor | None = None):
        self.executor = executor or StubDryRunExecutor()

    async def simulate_function(self, func: FunctionRecord, file_name: str) -> SimulationResult:
        descriptor = None
        try:
            descriptor = build_call_descriptor(func)
            execution = await self.executor.execute_dry_run(descriptor)
        except Exception as e:
            logger.warning(f"Dry run failed for {func.qualified_name}: {e}")
            return SimulationResult(
                function=func.name,
                file=file_name,
                descriptor=descriptor,
                status="error",
                error=str(e),
            )
        return SimulationResult(
            function=func.name,
            file=file_name,
            descriptor=descriptor,
            status=execution.status,
            execution=execution,
            recommendation=SIMULATION_RECOMMENDATION,
        )

    async def generate(self, parsed_files: Sequence[ParsedFile]) -> list[SimulationResult]:
        results = []
        for parsed in parsed_files:
            if not parsed.ok:
                continue
            for func in parsed.functions:
                if func.is_public_entry:
                    results.append(await self.simulate_function(func, parsed.name))
        logger.info(f"Generated {len(results)} placeholder simulations")
        return results
