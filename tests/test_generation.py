import unittest

from orchestrator.exceptions import GenerationFailure, InferenceError
from orchestrator.generation import GenerationLoop
from orchestrator.models import END_OF_GENERATION, InferenceEngine


class ScriptedEngine(InferenceEngine):
    """Splits prompts on spaces and replays a fixed list of units."""

    def __init__(self, units, fail_on=None):
        self.units = list(units)
        self.fail_on = fail_on
        self.decoded = []
        self.finished = 0

    async def tokenize(self, text):
        return text.split(" ") if text else []

    async def decode(self, batch):
        if self.fail_on == "decode":
            raise InferenceError("out of memory")
        self.decoded.append(list(batch))

    async def sample(self):
        if self.fail_on == "sample":
            raise InferenceError("bad logits")
        return self.units.pop(0) if self.units else END_OF_GENERATION

    def is_end_of_generation(self, unit):
        return unit is END_OF_GENERATION

    def unit_to_text(self, unit):
        if self.fail_on == "text":
            raise InferenceError("unknown unit")
        return unit

    async def finish(self):
        self.finished += 1


class TestGenerationLoop(unittest.IsolatedAsyncioTestCase):
    async def test_stops_at_end_of_generation(self):
        engine = ScriptedEngine(["Hel", "lo"])
        result = await GenerationLoop(engine).run("say hi", n_predict=10)

        self.assertEqual(result.text, "Hello")
        self.assertEqual(result.n_prompt, 2)
        self.assertEqual(result.n_generated, 2)
        self.assertEqual(result.n_decode, 3)
        self.assertTrue(result.stopped_by_model)
        self.assertEqual(engine.decoded, [["say", "hi"], ["Hel"], ["lo"]])
        self.assertEqual(engine.finished, 1)

    async def test_budget_counts_prompt_units(self):
        engine = ScriptedEngine(["a", "b", "c", "d"])
        result = await GenerationLoop(engine).run("one two three", max_units=5)

        self.assertEqual(result.text, "ab")
        self.assertEqual(result.n_generated, 2)
        self.assertFalse(result.stopped_by_model)

    async def test_n_predict_limits_generated_units(self):
        engine = ScriptedEngine(["a", "b", "c", "d"])
        result = await GenerationLoop(engine).run("one two three", n_predict=3)

        self.assertEqual(result.text, "abc")
        self.assertEqual(result.n_generated, 3)

    async def test_budget_not_above_prompt_generates_nothing(self):
        engine = ScriptedEngine(["a"])
        result = await GenerationLoop(engine).run("one two three", max_units=3)

        self.assertEqual(result.text, "")
        self.assertEqual(result.n_generated, 0)
        self.assertEqual(result.n_decode, 0)
        self.assertEqual(engine.decoded, [])

    async def test_immediate_end_of_generation(self):
        engine = ScriptedEngine([])
        result = await GenerationLoop(engine).run("hi", n_predict=8)

        self.assertEqual(result.text, "")
        self.assertEqual(result.n_decode, 1)
        self.assertTrue(result.stopped_by_model)

    async def test_on_text_receives_every_piece(self):
        pieces = []
        engine = ScriptedEngine(["x", "y", "z"])
        await GenerationLoop(engine, on_text=pieces.append).run("p", n_predict=10)

        self.assertEqual(pieces, ["x", "y", "z"])

    async def test_engine_failures_become_generation_failure(self):
        for stage in ("decode", "sample", "text"):
            with self.subTest(stage=stage):
                engine = ScriptedEngine(["a"], fail_on=stage)
                with self.assertRaises(GenerationFailure):
                    await GenerationLoop(engine).run("p", n_predict=4)
                self.assertEqual(engine.finished, 1)

    async def test_requires_exactly_one_limit(self):
        loop = GenerationLoop(ScriptedEngine([]))
        with self.assertRaises(ValueError):
            await loop.run("p")
        with self.assertRaises(ValueError):
            await loop.run("p", max_units=4, n_predict=4)
