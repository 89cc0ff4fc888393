"""wasmdeploy builder module.

Selects and runs the build strategy for the located crate.

Key classes:
    WasmPackBuilder       - Primary strategy: one ``wasm-pack build`` call
    BindgenBuilder        - Fallback strategy: ``cargo build`` + ``wasm-bindgen``
    BuildStrategySelector - Picks the strategy from the provisioned toolchain
"""

from .bindgen import BindgenBuilder, find_wasm_artifact
from .result import BuildMethod, BuildResult
from .selector import BuildStrategySelector
from .wasm_pack import WasmPackBuilder

__all__ = [
    # Results
    "BuildMethod",
    "BuildResult",
    # Strategies
    "WasmPackBuilder",
    "BindgenBuilder",
    "find_wasm_artifact",
    # Selection
    "BuildStrategySelector",
]
