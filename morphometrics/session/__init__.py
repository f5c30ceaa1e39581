from morphometrics.session.formula import Formula, compile_formula
from morphometrics.session.state import (
    DerivedState,
    SessionContext,
    SessionManager,
    ViewRegistry,
)

__all__ = [
    "DerivedState",
    "Formula",
    "SessionContext",
    "SessionManager",
    "ViewRegistry",
    "compile_formula",
]
