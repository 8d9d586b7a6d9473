"""Incremental generation loop: drive an inference engine until it stops."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from orchestrator.exceptions import GenerationFailure, InferenceError
from orchestrator.models import InferenceEngine


@dataclass
class GenerationState:
    """Transient state of one generation loop run."""
    budget: int
    cursor: int = 0
    batch: list = field(default_factory=list)
    buffer: list[str] = field(default_factory=list)
    n_generated: int = 0
    n_decode: int = 0

    @property
    def exhausted(self) -> bool:
        return self.cursor + len(self.batch) >= self.budget


@dataclass
class GenerationResult:
    """Text produced by one generation loop run."""
    text: str
    n_prompt: int
    n_generated: int
    n_decode: int
    stopped_by_model: bool


class GenerationLoop:
    """
    Ask the engine for one unit at a time until the end-of-generation
    marker is sampled or the unit budget (prompt + generated) runs out.
    Every new piece of text is passed to ``on_text`` as soon as it exists.
    """

    def __init__(
        self,
        engine: InferenceEngine,
        on_text: Callable[[str], None] | None = None,
    ):
        self.engine = engine
        self.on_text = on_text

    async def run(
        self,
        prompt: str,
        max_units: int | None = None,
        n_predict: int | None = None,
    ) -> GenerationResult:
        """Generate a response to ``prompt``.

        Exactly one of ``max_units`` (total budget, prompt included) and
        ``n_predict`` (units to generate after the prompt) must be given.
        """
        if (max_units is None) == (n_predict is None):
            raise ValueError("pass exactly one of max_units or n_predict")

        try:
            prompt_units = list(await self.engine.tokenize(prompt))
        except InferenceError as e:
            raise GenerationFailure(f"failed to tokenize the prompt: {e}") from e

        budget = max_units if max_units is not None else len(prompt_units) + n_predict
        state = GenerationState(budget=budget, batch=prompt_units)
        stopped_by_model = False

        try:
            while not state.exhausted:
                unit = await self._step(state)
                if self.engine.is_end_of_generation(unit):
                    stopped_by_model = True
                    break
                self._append(state, unit)
        finally:
            await self.engine.finish()

        return GenerationResult(
            text="".join(state.buffer),
            n_prompt=len(prompt_units),
            n_generated=state.n_generated,
            n_decode=state.n_decode,
            stopped_by_model=stopped_by_model,
        )

    async def _step(self, state: GenerationState) -> Any:
        try:
            await self.engine.decode(state.batch)
        except InferenceError as e:
            raise GenerationFailure(f"failed to eval: {e}") from e
        state.n_decode += 1
        state.cursor += len(state.batch)

        try:
            return await self.engine.sample()
        except InferenceError as e:
            raise GenerationFailure(f"failed to sample: {e}") from e

    def _append(self, state: GenerationState, unit: Any) -> None:
        try:
            piece = self.engine.unit_to_text(unit)
        except InferenceError as e:
            raise GenerationFailure(f"failed to convert token to piece: {e}") from e

        state.buffer.append(piece)
        state.n_generated += 1
        if self.on_text:
            self.on_text(piece)
        state.batch = [unit]
