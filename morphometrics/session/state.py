#!/usr/bin/env python3
"""
Session-scoped state for an interactive front end.

  SessionContext  – one per user session: immutable base table, its own
                    filters and derived-column formulas, its own views.
  DerivedState    – frozen snapshot (version, fingerprint, frame) of the
                    filtered + derived table. Rebuilt only when the
                    filter/formula fingerprint changes.
  ViewRegistry    – named computations over the current DerivedState;
                    each recomputes only when the state version moved.
                    A failing view raises, keeps its last good value and
                    records the error.
  SessionManager  – hands out isolated sessions keyed by id.

Nothing here is module-global; sessions never share mutable state.
"""
from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pandas as pd

from morphometrics.session.formula import Formula, compile_formula

log = logging.getLogger("session")

FILTERABLE = ("species", "island", "sex")


@dataclass(frozen=True, eq=False)
class DerivedState:
    version: int
    fingerprint: str
    _frame: pd.DataFrame

    @property
    def frame(self) -> pd.DataFrame:
        """A private copy; the snapshot itself is never mutated."""
        return self._frame.copy()

    def __len__(self):
        return len(self._frame)


class ViewRegistry:
    def __init__(self, session: "SessionContext"):
        self._session = session
        self._views: Dict[str, Callable[[DerivedState], Any]] = {}
        self._values: Dict[str, Any] = {}
        self._value_version: Dict[str, int] = {}
        self._errors: Dict[str, Exception] = {}
        self._error_version: Dict[str, int] = {}

    def register(self, name: str, fn: Callable[[DerivedState], Any]) -> None:
        self._views[name] = fn
        for store in (self._values, self._value_version, self._errors, self._error_version):
            store.pop(name, None)

    def names(self) -> List[str]:
        return list(self._views)

    def is_stale(self, name: str) -> bool:
        return self._value_version.get(name) != self._session.version

    def get(self, name: str) -> Any:
        if name not in self._views:
            raise KeyError(f"no view named '{name}'")
        state = self._session.state
        if self._value_version.get(name) == state.version:
            return self._values[name]
        if self._error_version.get(name) == state.version:
            # same input → same failure
            raise self._errors[name]

        try:
            value = self._views[name](state)
        except Exception as e:
            self._errors[name] = e
            self._error_version[name] = state.version
            log.warning(f"[{self._session.session_id}] view '{name}' failed at v{state.version}: {e}")
            raise
        self._values[name] = value
        self._value_version[name] = state.version
        self._errors.pop(name, None)
        self._error_version.pop(name, None)
        return value

    def last_value(self, name: str, default: Any = None) -> Any:
        """Most recent successfully computed value, even if now stale."""
        return self._values.get(name, default)

    def error(self, name: str) -> Optional[Exception]:
        return self._errors.get(name)

    def refresh(self) -> Dict[str, Exception]:
        """Recompute every stale view; returns {name: error} for failures."""
        failures = {}
        for name in self.names():
            try:
                self.get(name)
            except Exception as e:
                failures[name] = e
        return failures


class SessionContext:
    def __init__(self, base: pd.DataFrame, session_id: Optional[str] = None):
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self._base = base.copy()
        self._filters: Dict[str, tuple] = {}
        self._formulas: Dict[str, Formula] = {}
        self._lock = threading.RLock()
        self._version = 0
        self._state: Optional[DerivedState] = None
        self._listeners: List[Callable[[DerivedState], None]] = []
        self.views = ViewRegistry(self)

    # ── state ──────────────────────────────────────────────────
    @property
    def version(self) -> int:
        return self.state.version

    @property
    def state(self) -> DerivedState:
        with self._lock:
            if self._state is None:
                self._state = self._build(self._filters, self._formulas, 0)
            return self._state

    @property
    def filters(self) -> Dict[str, tuple]:
        return dict(self._filters)

    @property
    def formulas(self) -> Dict[str, str]:
        return {k: f.text for k, f in self._formulas.items()}

    def _fingerprint(self, filters, formulas) -> str:
        payload = json.dumps({
            "filters": {k: sorted(map(str, v)) for k, v in sorted(filters.items())},
            "formulas": [[k, f.text] for k, f in formulas.items()],
        }, sort_keys=True)
        return hashlib.sha256(payload.encode()).hexdigest()

    def _build(self, filters, formulas, version) -> DerivedState:
        mask = pd.Series(True, index=self._base.index)
        for field, allowed in filters.items():
            mask &= self._base[field].isin(allowed)
        frame = self._base.loc[mask].copy()
        for name, formula in formulas.items():
            frame[name] = formula.evaluate(frame)
        return DerivedState(version=version,
                            fingerprint=self._fingerprint(filters, formulas),
                            _frame=frame)

    def _apply(self, filters, formulas) -> DerivedState:
        """Build the candidate state first; on failure nothing changes."""
        with self._lock:
            current = self.state
            if self._fingerprint(filters, formulas) == current.fingerprint:
                return current
            new_state = self._build(filters, formulas, current.version + 1)
            self._filters, self._formulas = filters, formulas
            self._state = new_state
            listeners = list(self._listeners)
        log.info(f"[{self.session_id}] state v{new_state.version}: {len(new_state)} rows")
        for fn in listeners:
            fn(new_state)
        return new_state

    # ── controls ───────────────────────────────────────────────
    def set_filter(self, field: str, values: Optional[Iterable]) -> DerivedState:
        if field not in FILTERABLE or field not in self._base.columns:
            raise KeyError(f"'{field}' is not a filterable field {FILTERABLE}")
        filters = dict(self._filters)
        values = tuple(values) if values is not None else ()
        if values:
            filters[field] = values
        else:
            filters.pop(field, None)
        return self._apply(filters, self._formulas)

    def clear_filters(self) -> DerivedState:
        return self._apply({}, self._formulas)

    def add_formula(self, name: str, text: str) -> DerivedState:
        if not name.isidentifier():
            raise ValueError(f"column name '{name}' must be an identifier")
        if name in self._base.columns:
            raise ValueError(f"'{name}' would overwrite a base column")
        formulas = dict(self._formulas)
        formulas[name] = compile_formula(text)
        return self._apply(self._filters, formulas)

    def remove_formula(self, name: str) -> DerivedState:
        formulas = {k: v for k, v in self._formulas.items() if k != name}
        return self._apply(self._filters, formulas)

    def subscribe(self, fn: Callable[[DerivedState], None]) -> None:
        """Call ``fn(new_state)`` after every version change."""
        with self._lock:
            self._listeners.append(fn)

    # ── export ─────────────────────────────────────────────────
    def export_csv(self, path: Union[str, Path]) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.state.frame.to_csv(path, index=False)
        log.info(f"[{self.session_id}] exported v{self.version} → {path}")
        return str(path)


class SessionManager:
    def __init__(self, base: pd.DataFrame):
        self._base = base.copy()
        self._sessions: Dict[str, SessionContext] = {}
        self._lock = threading.Lock()

    def open(self, session_id: Optional[str] = None) -> SessionContext:
        ctx = SessionContext(self._base, session_id=session_id)
        with self._lock:
            if ctx.session_id in self._sessions:
                raise ValueError(f"session '{ctx.session_id}' already open")
            self._sessions[ctx.session_id] = ctx
        return ctx

    def get(self, session_id: str) -> SessionContext:
        return self._sessions[session_id]

    def close(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self):
        return len(self._sessions)
