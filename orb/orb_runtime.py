from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional

from orb.orb_config import EvalConfig
from orb.orb_datatypes import OrbError, ResultValue
from orb.orb_external import ExternalEvaluator
from orb.orb_parser import parse_result
from orb.orb_repl import ReplDriver, RESULT_MODES
from orb.orb_session import SessionRegistry

logger = logging.getLogger("orb.runtime")


@dataclass
class ExecutionResult:
    """The structured result of one evaluation."""
    status: Literal['success', 'error']
    value: Optional[ResultValue] = None
    raw: str = ""
    mode: str = 'value'
    session: Optional[str] = None
    error_message: Optional[str] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """The interpreter's diagnostic, tagged with the session when there was one."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.session and not msg.startswith(f"{self.session}: "):
            return f"{self.session}: {msg}"
        return msg


class Evaluator:
    """Routes a body to a session or a one-shot process and parses what comes back."""

    def __init__(self, config: Optional[EvalConfig] = None, registry: Optional[SessionRegistry] = None):
        self.config = config or (registry.config if registry else EvalConfig())
        self._owns_registry = registry is None
        self.registry = registry or SessionRegistry(self.config)
        self.driver = ReplDriver(self.registry, self.config)
        self.external = ExternalEvaluator(self.config)

    async def evaluate(self, body: str, *, session: Optional[str] = None, mode: str = 'value',
                       default_session: Optional[str] = None) -> ExecutionResult:
        """
        Evaluate `body` and return an ExecutionResult.

        `session=None` (or 'none') runs a one-shot process. An empty string
        means "the default session": `default_session`, usually the document
        name, or else the interpreter name.
        """
        if mode not in RESULT_MODES:
            raise ValueError(f"unknown result mode {mode!r}; expected one of {RESULT_MODES}")
        side_effects: List[Dict] = []
        key: Optional[str] = None
        try:
            if session is not None:
                key = await self.registry.ensure(session, default=default_session)
            if key is None:
                raw = await self.external.evaluate(body, mode)
            else:
                raw = await self.driver.evaluate(key, body, mode)
        except OrbError as e:
            msg = str(e)
            logger.debug("evaluation failed (%s): %s", type(e).__name__, msg)
            side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(
                status='error',
                mode=mode,
                session=key,
                error_message=msg,
                side_effects=side_effects,
            )
        return ExecutionResult(
            status='success',
            value=parse_result(raw),
            raw=raw,
            mode=mode,
            session=key,
            side_effects=side_effects,
        )

    async def close(self):
        if self._owns_registry:
            await self.registry.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False
