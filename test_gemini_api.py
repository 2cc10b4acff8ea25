import asyncio
import json

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from fortune_reading import (
    CAUTION_LABEL,
    GUIDANCE_LABEL,
    INCOMPLETE_SUMMARY,
    OVERVIEW_LABEL,
    LLMManager,
    MissingApiKeyError,
    PhoneReading,
    ReadingGenerationError,
    build_reading_messages,
    ensure_fortune_structure,
    fallback_structure,
    generate_phone_reading,
    parse_reading,
    to_readable,
)
from phone_numerology import analyze_thai_phone


@pytest.fixture
def result():
    return analyze_thai_phone("0812345678")


def run_reading(responses, result):
    llm = FakeListChatModel(responses=responses)
    return asyncio.run(generate_phone_reading(llm, result))


# --- Gemini reading pipeline ---

def test_reading_from_structured_answer(result):
    answer = json.dumps({
        "summary": "เบอร์นี้เด่นเรื่องบริหาร",
        "cardStructure": f"{OVERVIEW_LABEL}: งานรุ่ง {CAUTION_LABEL}: ระวังสัญญา {GUIDANCE_LABEL}: วางแผนก่อน",
    }, ensure_ascii=False)

    reading = run_reading([answer], result)

    assert reading.summary == "เบอร์นี้เด่นเรื่องบริหาร"
    assert reading.card_structure.startswith(f"{OVERVIEW_LABEL}: งานรุ่ง")


def test_reading_from_fenced_json(result):
    answer = '```json\n{"summary": "ดี", "cardStructure": "ทุกอย่างไปได้สวย"}\n```'

    reading = run_reading([answer], result)

    assert reading.summary == "ดี"
    assert reading.card_structure.split("\n") == [
        f"{OVERVIEW_LABEL}: ดี",
        f"{CAUTION_LABEL}: ทุกอย่างไปได้สวย",
        f"{GUIDANCE_LABEL}: ตั้งกรอบเวลาให้ชัด เช็กความเสี่ยง และตัดสินใจจากข้อเท็จจริง",
    ]


def test_reading_falls_back_on_plain_text(result):
    reading = run_reading(["not json at all"], result)

    assert reading.summary == INCOMPLETE_SUMMARY
    lines = reading.card_structure.split("\n")
    assert lines[0] == f"{OVERVIEW_LABEL}: {INCOMPLETE_SUMMARY}"
    assert lines[1] == f"{CAUTION_LABEL}: {fallback_structure(result)}"


def test_reading_failure_is_wrapped(result, failing_llm):
    with pytest.raises(ReadingGenerationError):
        asyncio.run(generate_phone_reading(failing_llm, result))


def test_prompt_carries_computed_result(result):
    system, human = build_reading_messages(result)

    assert "cardStructure" in system.content
    assert "0812345678" in human.content
    assert "84/99 (ดีมาก)" in human.content
    assert "เลขรวม: 44" in human.content
    assert "เลขราก: 8" in human.content
    assert result.themes.caution in human.content


# --- Response reshaping ---

def test_parse_reading_flattens_object_fields(result):
    reading = parse_reading('{"summary": ["a", "b"], "cardStructure": {"งาน": 1}}', result)

    assert reading.summary == "a\nb"
    assert f"{CAUTION_LABEL}: งาน: 1" in reading.card_structure


def test_parse_reading_missing_fields(result):
    reading = parse_reading("{}", result)

    assert reading.summary == INCOMPLETE_SUMMARY
    assert reading.card_structure.startswith(f"{OVERVIEW_LABEL}: ")
    assert CAUTION_LABEL in reading.card_structure


def test_parse_reading_rejects_non_object(result):
    reading = parse_reading("[1, 2, 3]", result)
    assert reading.summary == INCOMPLETE_SUMMARY


@pytest.mark.parametrize("value, expected", [
    ("text", "text"),
    (3, "3"),
    (2.0, "2"),
    (True, "true"),
    (None, ""),
    (["a", 1], "a\n1"),
    ({"k": "v", "n": [1, 2]}, "k: v\nn: 1\n2"),
])
def test_to_readable(value, expected):
    assert to_readable(value) == expected


def test_ensure_fortune_structure_keeps_labelled_text():
    text = f"{OVERVIEW_LABEL}:   ดีมาก\n\n{GUIDANCE_LABEL}: ลุย"
    assert ensure_fortune_structure(text, "s") == f"{OVERVIEW_LABEL}: ดีมาก {GUIDANCE_LABEL}: ลุย"


def test_ensure_fortune_structure_empty_text_uses_summary():
    lines = ensure_fortune_structure("   ", "สรุป").split("\n")
    assert lines[0] == f"{OVERVIEW_LABEL}: สรุป"
    assert len(lines) == 3


def test_phone_reading_serialises_with_api_names():
    reading = PhoneReading(summary="s", card_structure="c")
    assert reading.to_response() == {"summary": "s", "cardStructure": "c"}


# --- LLM Manager ---

def test_llm_manager_without_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    manager = LLMManager()

    assert not manager.is_configured()
    with pytest.raises(MissingApiKeyError):
        manager.get_llm()


def test_llm_manager_reuses_injected_model(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    manager = LLMManager()
    manager.llm = FakeListChatModel(responses=["{}"])

    assert manager.is_configured()
    assert manager.get_llm() is manager.llm


def test_reading_from_fenced_json_after_preamble(result):
    answer = 'นี่คือผลลัพธ์:\n```json\n{"summary": "ดี", "cardStructure": "ภาพรวมสถานการณ์: ราบรื่น"}\n```'

    reading = run_reading([answer], result)

    assert reading.summary == "ดี"
    assert reading.card_structure == "ภาพรวมสถานการณ์: ราบรื่น"


@pytest.mark.parametrize("raw", ['"text"', "null", "42"])
def test_parse_reading_json_scalar_falls_back(result, raw):
    reading = parse_reading(raw, result)

    assert reading.summary == INCOMPLETE_SUMMARY
    assert fallback_structure(result) in reading.card_structure
