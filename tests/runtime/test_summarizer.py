import pytest

from halcore.errors import SummarizationError
from halcore.runtime.memory.model_engine import UnavailableLanguageModel
from halcore.runtime.memory.summarizer import Summarizer, SummarizerConfig
from halcore.runtime.memory.telemetry import SPAN_SUMMARIZE, RecordingTelemetryClient
from halcore.runtime.memory.turn_manager import ChatMessage


class DummyModel:
    def __init__(self, reply="  The user asked about tides.  ", error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def is_available(self):
        return True

    def generate(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


def conversation(turns):
    messages = []
    for i in range(turns):
        messages.append(ChatMessage.create(role="user", content=f"question {i + 1}", position=2 * i))
        messages.append(ChatMessage.create(role="assistant", content=f"answer {i + 1}", position=2 * i + 1))
    return messages


def test_summarize_window_uses_only_requested_turns():
    model = DummyModel()
    telemetry = RecordingTelemetryClient()
    result = Summarizer(model, telemetry=telemetry).summarize_window(conversation(4), 2, 3)

    assert result.summary == "The user asked about tides."
    assert (result.start_turn, result.end_turn, result.message_count) == (2, 3, 4)
    assert result.base_watermark == 1
    prompt = model.prompts[0]
    assert "question 2" in prompt and "answer 3" in prompt
    assert "question 1" not in prompt and "question 4" not in prompt
    assert telemetry.names() == [SPAN_SUMMARIZE]


def test_custom_template():
    model = DummyModel()
    config = SummarizerConfig(prompt_template="Summarize:\n{transcript}")
    Summarizer(model, config=config).summarize_window(conversation(1), 1, 1)
    assert model.prompts[0] == "Summarize:\nUser: question 1\n\nAssistant: answer 1"


@pytest.mark.parametrize("start,end", [(0, 1), (3, 2)])
def test_invalid_window_raises(start, end):
    with pytest.raises(SummarizationError):
        Summarizer(DummyModel()).summarize_window(conversation(3), start, end)


def test_window_without_completed_turns_raises():
    with pytest.raises(SummarizationError):
        Summarizer(DummyModel()).summarize_window(conversation(1), 2, 3)


def test_model_failure_becomes_summarization_error():
    model = DummyModel(error=RuntimeError("out of memory"))
    with pytest.raises(SummarizationError, match="out of memory"):
        Summarizer(model).summarize_window(conversation(2), 1, 2)


def test_unavailable_model_and_empty_output_raise():
    with pytest.raises(SummarizationError):
        Summarizer(UnavailableLanguageModel()).summarize_window(conversation(2), 1, 2)
    with pytest.raises(SummarizationError):
        Summarizer(None).summarize_window(conversation(2), 1, 2)
    with pytest.raises(SummarizationError):
        Summarizer(DummyModel(reply="   ")).summarize_window(conversation(2), 1, 2)


def test_window_past_last_completed_turn_raises():
    model = DummyModel()
    with pytest.raises(SummarizationError, match="past turn 3"):
        Summarizer(model).summarize_window(conversation(3), 1, 100)
    assert model.prompts == []
