import pytest

from copilot_relay.config import RelayCfg, parse_config
from copilot_relay.document import JsonDocument
from copilot_relay.rewriter import (
    INSTRUCT_MODEL,
    clamp_max_tokens,
    inject_locale,
    resolve_model,
    rewrite_chat,
    rewrite_codex,
)


@pytest.fixture()
def cfg() -> RelayCfg:
    return parse_config(
        {
            "chat_model_default": "deepseek-coder",
            "chat_model_map": {"gpt-4": "deepseek-chat"},
            "chat_max_tokens": 4096,
            "chat_locale": "zh_CN",
        }
    )


def _chat(**fields: object) -> JsonDocument:
    body = {"model": "gpt-4", "messages": [{"role": "user", "content": "hi"}]}
    body.update(fields)
    return JsonDocument(body)


def test_resolve_model() -> None:
    mapping = {"gpt-4": "deepseek-chat", "": "empty"}
    assert resolve_model("gpt-4", mapping, "d") == "deepseek-chat"
    assert resolve_model("gpt-3.5-turbo", mapping, "d") == "d"
    assert resolve_model(None, {}, "d") == "d"
    assert resolve_model(42, mapping, "d") == "d"


def test_rewrite_chat_reference_example() -> None:
    cfg = parse_config({"chat_model_default": "deepseek-coder", "chat_locale": "zh_CN"})
    doc = JsonDocument.loads(b'{"model":"gpt-4","messages":[{"content":"hi"}]}')
    rewrite_chat(doc, cfg)
    assert doc.to_dict() == {
        "model": "deepseek-coder",
        "messages": [{"content": "hiRespond in the following locale: zh_CN."}],
    }


def test_rewrite_chat_mapped_model(cfg: RelayCfg) -> None:
    assert rewrite_chat(_chat(), cfg).get("model") == "deepseek-chat"


def test_rewrite_chat_missing_model_uses_default(cfg: RelayCfg) -> None:
    doc = JsonDocument({"messages": [{"content": "x"}]})
    assert rewrite_chat(doc, cfg).get("model") == "deepseek-coder"


def test_locale_injected_once(cfg: RelayCfg) -> None:
    doc = _chat()
    rewrite_chat(doc, cfg)
    rewrite_chat(doc, cfg)
    content = doc.get("messages.0.content")
    assert content.count("Respond in the following locale") == 1


def test_locale_only_on_last_message(cfg: RelayCfg) -> None:
    doc = JsonDocument({"messages": [{"content": "first"}, {"content": "second"}]})
    rewrite_chat(doc, cfg)
    assert doc.get("messages.0.content") == "first"
    assert doc.get("messages.1.content") == "secondRespond in the following locale: zh_CN."


def test_locale_skipped_with_function_call(cfg: RelayCfg) -> None:
    doc = _chat(function_call="auto")
    rewrite_chat(doc, cfg)
    assert doc.get("messages.0.content") == "hi"


def test_locale_defaults_when_unconfigured() -> None:
    doc = _chat()
    rewrite_chat(doc, parse_config({}))
    assert doc.get("messages.0.content") == "hiRespond in the following locale: zh_CN."


def test_locale_configured() -> None:
    doc = _chat()
    inject_locale(doc, "en_US")
    assert doc.get("messages.0.content") == "hiRespond in the following locale: en_US."


def test_locale_without_messages() -> None:
    assert inject_locale(JsonDocument({}), "zh_CN") is False
    assert inject_locale(JsonDocument({"messages": []}), "zh_CN") is False


def test_locale_missing_content() -> None:
    doc = JsonDocument({"messages": [{"role": "user"}]})
    assert inject_locale(doc, "zh_CN") is True
    assert doc.get("messages.0.content") == "Respond in the following locale: zh_CN."


def test_locale_multimodal_content() -> None:
    doc = JsonDocument({"messages": [{"content": [{"type": "text", "text": "look"}]}]})
    assert inject_locale(doc, "zh_CN") is True
    assert inject_locale(doc, "zh_CN") is False
    assert doc.get("messages.0.content") == [
        {"type": "text", "text": "look"},
        {"type": "text", "text": "Respond in the following locale: zh_CN."},
    ]


def test_intent_fields_removed(cfg: RelayCfg) -> None:
    doc = _chat(intent=True, intent_threshold=0.5, intent_content="x", temperature=0)
    rewrite_chat(doc, cfg)
    data = doc.to_dict()
    for name in ("intent", "intent_threshold", "intent_content"):
        assert name not in data
    assert data["temperature"] == 0


def test_max_tokens_clamped(cfg: RelayCfg) -> None:
    assert rewrite_chat(_chat(max_tokens=99999), cfg).get("max_tokens") == 4096


@pytest.mark.parametrize("value", [10, 4096, 1.5])
def test_max_tokens_within_bounds_untouched(cfg: RelayCfg, value: object) -> None:
    assert rewrite_chat(_chat(max_tokens=value), cfg).get("max_tokens") == value


def test_max_tokens_absent_stays_absent(cfg: RelayCfg) -> None:
    assert not rewrite_chat(_chat(), cfg).exists("max_tokens")


def test_clamp_ignores_non_numbers() -> None:
    doc = JsonDocument({"max_tokens": "lots"})
    assert clamp_max_tokens(doc, 10) is False
    doc = JsonDocument({"max_tokens": True})
    assert clamp_max_tokens(doc, 0) is False


def test_rewrite_codex() -> None:
    doc = JsonDocument({"model": "gpt-3.5-turbo-instruct", "extra": {"language": "py"}, "nwo": "a/b", "prompt": "def"})
    rewrite_codex(doc)
    assert doc.to_dict() == {"model": INSTRUCT_MODEL, "prompt": "def"}


def test_rewrite_codex_without_model() -> None:
    assert rewrite_codex(JsonDocument({"prompt": "x"})).get("model") == "deepseek-coder"


@pytest.mark.parametrize("last", [None, "hello", 42, ["nested"]])
def test_locale_skipped_when_last_message_not_an_object(cfg: RelayCfg, last: object) -> None:
    doc = _chat(messages=[{"content": "first"}, last])
    assert inject_locale(doc, "zh_CN") is False
    rewrite_chat(doc, cfg)
    assert doc.get("messages") == [{"content": "first"}, last]
