"""GeminiAnswerWriter behaviour with and without the LLM."""

import asyncio

import pytest

from inboxfaq.faq.ai import ConsolidationError, GeminiAnswerWriter


class ScriptedLLM:
    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    async def __call__(self, prompt, **kwargs):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


class TestConsolidate:
    def test_returns_model_answer(self):
        llm = ScriptedLLM(reply="  Use the reset link on the login page.  ")
        writer = GeminiAnswerWriter(use_llm=True, llm_call=llm)

        result = asyncio.run(
            writer.consolidate(["How do I reset my password?", "Forgot password?"], ["", "Reset link"])
        )

        assert result.answer == "Use the reset link on the login page."
        assert "1. How do I reset my password?" in llm.prompts[0]
        assert "1. Reset link" in llm.prompts[0]

    def test_call_failure_raises(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM(error=RuntimeError("quota")))
        with pytest.raises(ConsolidationError, match="quota"):
            asyncio.run(writer.consolidate(["How?"], []))

    def test_empty_answer_raises(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM(reply="   "))
        with pytest.raises(ConsolidationError):
            asyncio.run(writer.consolidate(["How?"], []))

    def test_llm_disabled_uses_first_known_answer(self):
        llm = ScriptedLLM(reply="unused")
        writer = GeminiAnswerWriter(use_llm=False, llm_call=llm)

        result = asyncio.run(writer.consolidate(["A?", "B?"], [" ", "Second", "Third"]))

        assert result.answer == "Second"
        assert llm.prompts == []

    def test_llm_disabled_without_answers_raises(self):
        writer = GeminiAnswerWriter(use_llm=False)
        with pytest.raises(ConsolidationError):
            asyncio.run(writer.consolidate(["A?"], [""]))


class TestFallbacks:
    def test_refine_keeps_original_on_failure(self):
        writer = GeminiAnswerWriter(use_llm=True, refine_questions=True, llm_call=ScriptedLLM(error=TimeoutError()))
        assert asyncio.run(writer.refine_question("how reset pw?")) == "how reset pw?"

    def test_refine_strips_quotes(self):
        writer = GeminiAnswerWriter(use_llm=True, refine_questions=True, llm_call=ScriptedLLM('"How do I reset my password?"'))
        assert asyncio.run(writer.refine_question("how reset pw?")) == "How do I reset my password?"

    def test_refine_disabled(self):
        llm = ScriptedLLM("ignored")
        writer = GeminiAnswerWriter(use_llm=True, refine_questions=False, llm_call=llm)
        assert asyncio.run(writer.refine_question("how reset pw?")) == "how reset pw?"
        assert llm.prompts == []

    def test_categorize_matches_known_category(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM("- shipping & delivery\n"))
        assert asyncio.run(writer.categorize("Where is my parcel?")) == "Shipping & Delivery"

    def test_categorize_unknown_defaults(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM("Weather"))
        assert asyncio.run(writer.categorize("Is it raining?")) == "General Inquiry"

    def test_tags_are_deduplicated_and_capped(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM("Password, reset, password, login, account, security, access"))
        tags = asyncio.run(writer.extract_tags("How do I reset my password?"))
        assert tags == ["password", "reset", "login", "account", "security"]

    def test_tags_empty_on_failure(self):
        writer = GeminiAnswerWriter(use_llm=True, llm_call=ScriptedLLM(error=RuntimeError("x")))
        assert asyncio.run(writer.extract_tags("How?")) == []
