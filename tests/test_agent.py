"""Tests for the tool-calling answering agent."""

import time

import pytest

from docchat import AgentState, AnsweringAgent
from docchat.agent import (
    NO_RESPONSE_FALLBACK,
    RETRIEVER_TOOL_NAME,
    SYSTEM_PROMPT,
    TOOL_LIMIT_MESSAGE,
)
from docchat.errors import GenerationFailed


@pytest.fixture
def published(index_handle, memory_index):
    index_handle.publish(memory_index)
    return memory_index


def test_tool_schema():
    schema = AnsweringAgent.tool_schema()

    assert schema["type"] == "function"
    assert schema["function"]["name"] == RETRIEVER_TOOL_NAME
    assert schema["function"]["parameters"]["required"] == ["query"]


def test_build_messages_includes_history():
    history = [
        {"role": "user", "content": "Hi"},
        {"role": "assistant", "content": "Hello"},
    ]

    messages = AnsweringAgent.build_messages("What color is the sky?", history)

    assert messages[0] == {"role": "system", "content": SYSTEM_PROMPT}
    assert messages[1:3] == history
    assert messages[-1] == {"role": "user", "content": "What color is the sky?"}


def test_format_results(sample_chunks):
    text = AnsweringAgent.format_results(sample_chunks)

    assert "[1] (source: ml_doc.txt, similarity: 0.8000)" in text
    assert "Deep learning uses neural networks" in text


def test_format_results_empty():
    assert "No relevant passages" in AnsweringAgent.format_results([])


def test_client_configuration(agent):
    assert agent.client.api_key == "test-key"
    assert agent.client.max_retries == 0
    assert agent.max_tool_calls == 2


@pytest.mark.asyncio
async def test_direct_answer(agent, chat_mock_factory):
    with chat_mock_factory(agent, content="  The answer.  ") as mock_create:
        result = await agent.run("Question?")

    assert result.answer == "The answer."
    assert result.state is AgentState.ANSWERED
    assert result.tool_calls == 0
    assert not result.fallback
    mock_create.assert_called_once()
    request = mock_create.call_args.kwargs
    assert request["model"] == agent.model
    assert request["tools"] == [AnsweringAgent.tool_schema()]
    assert request["messages"][-1] == {"role": "user", "content": "Question?"}


@pytest.mark.asyncio
async def test_tool_call_then_answer(
    agent,
    published,
    chat_mock_factory,
    chat_response_factory,
    tool_call_factory,
    sample_embedded_chunks,
):
    query = sample_embedded_chunks[0].content
    responses = [
        chat_response_factory(None, [tool_call_factory(query, call_id="call_9")]),
        chat_response_factory("Machine learning is part of AI."),
    ]

    with chat_mock_factory(agent, side_effect=responses) as mock_create:
        result = await agent.run("What is machine learning?")

    assert result.answer == "Machine learning is part of AI."
    assert result.tool_calls == 1
    assert result.retrieved_contexts[0][0] is sample_embedded_chunks[0]
    assert mock_create.call_count == 2

    second_messages = mock_create.call_args_list[1].kwargs["messages"]
    assistant, tool = second_messages[-2], second_messages[-1]
    assert assistant["role"] == "assistant"
    assert assistant["tool_calls"][0]["id"] == "call_9"
    assert assistant["tool_calls"][0]["function"]["name"] == RETRIEVER_TOOL_NAME
    assert tool["role"] == "tool"
    assert tool["tool_call_id"] == "call_9"
    assert query in tool["content"]
    # The first request is not mutated by later steps.
    assert len(mock_create.call_args_list[0].kwargs["messages"]) == 2


@pytest.mark.asyncio
async def test_stream_emits_state_transitions(
    agent, published, chat_mock_factory, scripted_model
):
    with chat_mock_factory(agent, side_effect=scripted_model):
        states = [event.state async for event in agent.stream("Tell me about ML")]

    assert states == [
        AgentState.REASONING,
        AgentState.TOOL_CALL,
        AgentState.REASONING,
        AgentState.ANSWERED,
    ]


@pytest.mark.asyncio
async def test_empty_answer_uses_fallback(agent, chat_mock_factory):
    with chat_mock_factory(agent, content="   "):
        result = await agent.run("Question?")

    assert result.answer == NO_RESPONSE_FALLBACK
    assert result.fallback
    assert result.state is AgentState.REASONING


@pytest.mark.asyncio
async def test_no_choices_uses_fallback(agent, chat_mock_factory):
    with chat_mock_factory(agent) as mock_create:
        mock_create.return_value.choices = []
        result = await agent.run("Question?")

    assert result.answer == NO_RESPONSE_FALLBACK
    assert result.fallback


@pytest.mark.asyncio
async def test_tool_budget_forces_final_answer(
    agent, published, chat_mock_factory, chat_response_factory, tool_call_factory
):
    def model(**kwargs):
        if "tools" in kwargs:
            return chat_response_factory(None, [tool_call_factory("learning")])
        return chat_response_factory("Final answer.")

    with chat_mock_factory(agent, side_effect=model) as mock_create:
        result = await agent.run("Keep searching")

    assert result.answer == "Final answer."
    assert result.tool_calls == agent.max_tool_calls
    assert mock_create.call_count == agent.max_tool_calls + 1
    assert "tools" not in mock_create.call_args.kwargs


@pytest.mark.asyncio
async def test_parallel_tool_calls_beyond_budget(
    agent, published, chat_mock_factory, chat_response_factory, tool_call_factory
):
    calls = [tool_call_factory("learning", call_id=f"call_{i}") for i in range(3)]
    responses = [
        chat_response_factory(None, calls),
        chat_response_factory("Done."),
    ]

    with chat_mock_factory(agent, side_effect=responses) as mock_create:
        events = [event async for event in agent.stream("Search a lot")]

    tool_events = [e for e in events if e.state is AgentState.TOOL_CALL]
    assert len(tool_events) == 3
    assert tool_events[-1].content == TOOL_LIMIT_MESSAGE
    assert events[-1].content == "Done."
    tool_messages = [
        m for m in mock_create.call_args.kwargs["messages"] if m["role"] == "tool"
    ]
    assert [m["tool_call_id"] for m in tool_messages] == ["call_0", "call_1", "call_2"]


@pytest.mark.asyncio
async def test_unknown_tool_reports_error(
    agent, chat_mock_factory, chat_response_factory, tool_call_factory
):
    responses = [
        chat_response_factory(None, [tool_call_factory("x", name="web_search")]),
        chat_response_factory("I can only search the document."),
    ]

    with chat_mock_factory(agent, side_effect=responses) as mock_create:
        events = [event async for event in agent.stream("Search the web")]

    assert events[1].content == "Error: Tool web_search not found"
    assert events[-1].state is AgentState.ANSWERED
    assert mock_create.call_args.kwargs["messages"][-1]["content"] == (
        "Error: Tool web_search not found"
    )


@pytest.mark.asyncio
async def test_malformed_tool_arguments_fall_back_to_prompt(
    agent,
    published,
    chat_mock_factory,
    chat_response_factory,
    tool_call_factory,
    mock_embedding_service,
):
    responses = [
        chat_response_factory(None, [tool_call_factory(None, arguments="{not json")]),
        chat_response_factory("Answer."),
    ]

    with chat_mock_factory(agent, side_effect=responses):
        result = await agent.run("What is deep learning?")

    assert result.answer == "Answer."
    assert mock_embedding_service.queries == ["What is deep learning?"]


@pytest.mark.asyncio
async def test_empty_index_tool_output(
    agent, chat_mock_factory, scripted_model, mock_embedding_service
):
    with chat_mock_factory(agent, side_effect=scripted_model):
        result = await agent.run("Anything there?")

    assert "No relevant passages found" in result.answer
    assert result.retrieved_contexts == []
    assert mock_embedding_service.queries == []


@pytest.mark.asyncio
async def test_model_error_raises_generation_failed(agent, chat_mock_factory):
    with (
        chat_mock_factory(agent, side_effect=RuntimeError("boom")),
        pytest.raises(GenerationFailed, match="Hosted model call failed") as exc_info,
    ):
        await agent.run("Question?")

    assert isinstance(exc_info.value.original_error, RuntimeError)


@pytest.mark.asyncio
async def test_model_timeout_raises_generation_failed(retriever, chat_mock_factory):
    agent = AnsweringAgent(retriever, openai_api_key="test-key", timeout=0.05)

    def slow(**_kwargs):
        time.sleep(0.3)

    with (
        chat_mock_factory(agent, side_effect=slow),
        pytest.raises(GenerationFailed, match="did not respond"),
    ):
        await agent.run("Question?")


@pytest.mark.asyncio
async def test_retriever_error_raises_generation_failed(
    agent, chat_mock_factory, chat_response_factory, tool_call_factory, monkeypatch
):
    def broken_search(_query):
        msg = "embedding service down"
        raise RuntimeError(msg)

    monkeypatch.setattr(agent.retriever, "search", broken_search)
    responses = [chat_response_factory(None, [tool_call_factory("sky")])]

    with (
        chat_mock_factory(agent, side_effect=responses),
        pytest.raises(GenerationFailed, match="Retriever tool failed"),
    ):
        await agent.run("What color is the sky?")
