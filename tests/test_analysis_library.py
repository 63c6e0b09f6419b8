import asyncio

import pytest

pytestmark = pytest.mark.basic


def test_response_lineage() -> None:
    from flowengine_analysis import Response, output_of

    raw = {"text": "Hello"}
    first = Response.create(raw, raw, "Import")
    second = Response.create("hello", first, "Lower")

    assert first.level == 0
    assert second.level == 1
    assert [r.generator for r in second.history()] == ["Import", "Lower"]
    assert second.to_dict()["input"]["output"] == raw
    assert output_of(second) == "hello"
    assert output_of(3) == 3


def test_traced_function_caller_wraps_and_caches() -> None:
    from flowengine_analysis import Response, traced

    calls = []

    def shout(value):
        calls.append(value)
        return str(value).upper()

    caller = traced(shout, "Shout")

    async def _run():
        a = await caller.run("hi")
        b = await caller.run(Response.create("hi", "hi", "Import"))
        return a, b

    a, b = asyncio.run(_run())

    assert a.output == "HI"
    assert a.generator == "Shout"
    assert b.output == "HI"
    assert b.level == 1
    assert calls == ["hi"]
    assert traced(caller) is caller


def test_traced_awaits_async_functions() -> None:
    from flowengine_analysis import traced

    async def slow_double(value):
        return value * 2

    result = asyncio.run(traced(slow_double, "Double").run(21))
    assert result.output == 42


def test_traced_rejects_unsupported_targets() -> None:
    from flowengine_analysis import traced

    with pytest.raises(TypeError):
        traced(42)


def test_builtin_transforms() -> None:
    from flowengine_analysis import transforms

    async def _run():
        return (
            (await transforms.lower_case.run("MiXeD")).output,
            (await transforms.upper_case.run({"a": "b"})).output,
            (await transforms.json_to_string.run({"a": 1})).output,
            (await transforms.string_to_json.run('{"a": 1}')).output,
        )

    assert asyncio.run(_run()) == ("mixed", '{"A": "B"}', '{"a": 1}', {"a": 1})


def test_prompt_caller_posts_chat_completion_with_active_config() -> None:
    from flowengine_analysis import PromptCaller, set_config_from_object

    set_config_from_object(
        {"model": "m1", "path": "http://localhost", "port": 9999, "settings": {"temperature": 0.0, "max_tokens": 32}}
    )
    sent = []

    async def sender(url, body, timeout_s):
        sent.append((url, body, timeout_s))
        return {"choices": [{"message": {"content": "  positive \n"}}]}

    caller = PromptCaller("Classify sentiment", "Sentiment", sender=sender)
    result = asyncio.run(caller.run({"review": "great"}))

    assert result.output == "positive"
    url, body, timeout_s = sent[0]
    assert url == "http://localhost:9999/v1/chat/completions"
    assert body["model"] == "m1"
    assert body["temperature"] == 0.0
    assert body["max_tokens"] == 32
    assert body["stream"] is False
    assert body["messages"] == [
        {"role": "system", "content": "Classify sentiment"},
        {"role": "user", "content": '{"review": "great"}'},
    ]
    assert timeout_s == 120.0


def test_chat_completion_rejects_malformed_responses() -> None:
    from flowengine_analysis import LLMCallError, chat_completion

    async def empty(url, body, timeout_s):
        return {"choices": []}

    async def no_content(url, body, timeout_s):
        return {"choices": [{"message": {"content": None}}]}

    with pytest.raises(LLMCallError):
        asyncio.run(chat_completion("p", "x", sender=empty))
    with pytest.raises(LLMCallError):
        asyncio.run(chat_completion("p", "x", sender=no_content))


def test_set_config_merges_over_defaults() -> None:
    from flowengine_analysis import get_config, set_config_from_object

    cfg = set_config_from_object({"model": "other", "settings": {"temperature": 0.3}})

    assert cfg["model"] == "other"
    assert cfg["port"] == 1234
    assert cfg["settings"] == {"temperature": 0.3, "max_tokens": -1, "stream": False}
    get_config()["model"] = "mutated"
    assert get_config()["model"] == "other"


def test_cohens_kappa() -> None:
    from flowengine_analysis import CohensComparisonModel, ComparisonModel

    result = ComparisonModel.compare_multiple(
        ["yes", "no", "yes", "no", "yes"],
        ["yes", "no", "no", "no"],
        CohensComparisonModel("Yes"),
    )

    assert result["type"] == "cohens_kappa"
    assert result["items"] == 4
    assert result["observed_agreement"] == pytest.approx(0.75)
    assert result["expected_agreement"] == pytest.approx(0.5)
    assert result["kappa"] == pytest.approx(0.5)


def test_cohens_kappa_perfect_agreement_on_constant_ratings() -> None:
    from flowengine_analysis import CohensComparisonModel, ComparisonModel

    result = ComparisonModel.compare_multiple(["a, yes", "yes"], [["yes"], {"yes": True}], CohensComparisonModel("yes"))

    assert result["kappa"] == 1.0


def test_krippendorffs_alpha() -> None:
    from flowengine_analysis import ComparisonModel, KrippendorffsComparisonModel, Response

    model = KrippendorffsComparisonModel(["pos", "neg"])
    perfect = ComparisonModel.compare_multiple(["pos", "neg"], ["POS", "neg "], model)
    partial = ComparisonModel.compare_multiple(
        [Response("pos"), Response("neg"), Response("pos"), Response("meh")],
        ["pos", "neg", "neg", "pos"],
        model,
    )

    assert perfect["alpha"] == 1.0
    assert partial["pairable_items"] == 3
    assert partial["alpha"] == pytest.approx(1 - 5 * 2 / 18)
    assert ComparisonModel.compare_multiple([], [], model)["alpha"] is None
