"""API routers for Measure Compiler."""

from measure_compiler.api.codegen import router as codegen_router
from measure_compiler.api.diff import router as diff_router
from measure_compiler.api.overrides import router as overrides_router
from measure_compiler.api.validation import router as validation_router

__all__ = [
    "codegen_router",
    "diff_router",
    "overrides_router",
    "validation_router",
]
