"""wasmdeploy: build a Rust crate to WebAssembly and publish it for static hosting."""

from wasmdeploy.config import BuildMode, Config
from wasmdeploy.pipeline import DeployPipeline, RunReport, main

__version__ = "0.1.0"

__all__ = ["BuildMode", "Config", "DeployPipeline", "RunReport", "main"]
