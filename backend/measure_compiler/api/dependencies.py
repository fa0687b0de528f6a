"""FastAPI dependencies shared by the routers."""

from typing import Annotated

from fastapi import Depends, Request

from measure_compiler.services.code_overrides import OverrideStore
from measure_compiler.services.measure_compiler import MeasureCompiler


def get_override_store(request: Request) -> OverrideStore:
    """The application's override store, created on first use if the lifespan did not run."""
    store = getattr(request.app.state, "override_store", None)
    if store is None:
        store = OverrideStore()
        request.app.state.override_store = store
    return store


def get_compiler(
    request: Request,
    store: Annotated[OverrideStore, Depends(get_override_store)],
) -> MeasureCompiler:
    """Compiler bound to the current override store."""
    compiler = getattr(request.app.state, "compiler", None)
    if compiler is None or compiler.override_store is not store:
        compiler = MeasureCompiler(store)
        request.app.state.compiler = compiler
    return compiler


OverrideStoreDep = Annotated[OverrideStore, Depends(get_override_store)]
CompilerDep = Annotated[MeasureCompiler, Depends(get_compiler)]
