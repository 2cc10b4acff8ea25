import os
import re
import logging
from typing import Any, Dict, List

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_core.output_parsers import PydanticOutputParser, StrOutputParser
from langchain_core.prompts import ChatPromptTemplate
from langchain_core.utils.json import parse_json_markdown
from pydantic import BaseModel, ConfigDict, Field

from phone_numerology import NumerologyResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
TEMPERATURE_DEFAULT = 0.7

INCOMPLETE_SUMMARY = "สรุปคำทำนายยังไม่สมบูรณ์"

OVERVIEW_LABEL = "ภาพรวมสถานการณ์"
CAUTION_LABEL = "จุดที่ควรระวัง"
GUIDANCE_LABEL = "แนวทางที่ควรทำ"
SECTION_LABELS = (OVERVIEW_LABEL, CAUTION_LABEL, GUIDANCE_LABEL)


class MissingApiKeyError(ValueError):
    """Raised when no Gemini API key is configured."""


class ReadingGenerationError(ValueError):
    """Raised when the Gemini call for a reading fails."""


# --- Pydantic Schemas for Output Parsing ---
class PhoneReading(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str = Field(description="สรุปคำทำนายเบอร์โทรศัพท์แบบกระชับ 2-3 ประโยค")
    card_structure: str = Field(
        alias="cardStructure",
        description="ข้อความล้วนสามบรรทัด: ภาพรวมสถานการณ์, จุดที่ควรระวัง, แนวทางที่ควรทำ",
    )

    def to_response(self) -> Dict[str, str]:
        return self.model_dump(by_alias=True)


parser = PydanticOutputParser(pydantic_object=PhoneReading)


# --- LLM Manager ---
class LLMManager:
    def __init__(self):
        self.llm = None

    @staticmethod
    def api_key():
        return os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")

    def is_configured(self) -> bool:
        return self.llm is not None or bool(self.api_key())

    def get_llm(self) -> BaseChatModel:
        if self.llm is not None:
            return self.llm

        google_api_key = self.api_key()
        if not google_api_key:
            logger.error("Neither GEMINI_API_KEY nor GOOGLE_API_KEY is set.")
            raise MissingApiKeyError("GEMINI_API_KEY is not set. Please set it to use the Generative AI models.")

        model = os.getenv("GEMINI_MODEL", DEFAULT_MODEL)
        try:
            self.llm = ChatGoogleGenerativeAI(model=model, google_api_key=google_api_key, temperature=TEMPERATURE_DEFAULT)
            logger.info(f"Gemini model '{model}' initialized.")
        except Exception as e:
            logger.error(f"Failed to initialize Gemini model: {e}")
            raise
        return self.llm


# --- Prompts ---
PHONE_READING_SYSTEM_PROMPT = """คุณคือผู้เชี่ยวชาญด้านเลขศาสตร์ไทยของ REFFORTUNE
ใช้แนวอ่านแบบ REFFORTUNE (ไทยธรรมชาติ กระชับ ใช้งานได้จริง)

บทบาทของคุณในการวิเคราะห์เบอร์โทรศัพท์:
- อธิบายความสำคัญของเลขราก (root number) และเลขรวม (total)
- ให้คำแนะนำที่สมดุลและสร้างสรรค์ ไม่ว่าคะแนนจะสูงหรือต่ำ
- วิเคราะห์แต่ละธีม (งาน เงิน ความสัมพันธ์ คำเตือน) ด้วยตัวอย่างเฉพาะเจาะจง

ตอบเป็น JSON เท่านั้น โดยมีคีย์ summary และ cardStructure
กติกา: cardStructure ต้องเป็นข้อความล้วน ห้ามแสดง key-value และห้ามเป็น object
""" + "{parser_instructions}"

PHONE_READING_HUMAN_PROMPT = """ข้อมูลที่วิเคราะห์ได้:
- เบอร์: {normalized_phone}
- คะแนน: {score}/99 ({tier})
- เลขรวม: {total}
- เลขราก: {root}
- งาน: {work}
- เงิน: {money}
- ความสัมพันธ์: {relationship}
- คำเตือน: {caution}"""


def build_reading_messages(result: NumerologyResult) -> List[BaseMessage]:
    """Builds the system and human messages for a phone numerology reading."""
    return [
        SystemMessage(content=PHONE_READING_SYSTEM_PROMPT.format(parser_instructions=parser.get_format_instructions())),
        HumanMessage(content=PHONE_READING_HUMAN_PROMPT.format(
            normalized_phone=result.normalized_phone,
            score=result.score,
            tier=result.tier.value,
            total=result.total,
            root=result.root,
            work=result.themes.work,
            money=result.themes.money,
            relationship=result.themes.relationship,
            caution=result.themes.caution,
        )),
    ]


# --- Response Reshaping ---

def to_readable(value: Any) -> str:
    """Flattens an arbitrary JSON value from the model into display text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list):
        return "\n".join(to_readable(item) for item in value)
    if isinstance(value, dict):
        return "\n".join(f"{key}: {to_readable(item)}" for key, item in value.items())
    return ""


def ensure_fortune_structure(text: str, summary: str) -> str:
    """
    Guarantees the three-section card layout (overview, caution, guidance).
    Text already carrying any of the section labels is kept as is.
    """
    text = re.sub(r'\s+', ' ', text).strip()
    if not text:
        return "\n".join([
            f"{OVERVIEW_LABEL}: {summary}",
            f"{CAUTION_LABEL}: อย่ารีบตัดสินใจจากอารมณ์หรือข้อมูลที่ยังไม่ครบ",
            f"{GUIDANCE_LABEL}: โฟกัส 1 ประเด็นหลัก วางขั้นตอน แล้วลงมือทีละส่วน",
        ])

    if any(label in text for label in SECTION_LABELS):
        return text

    return "\n".join([
        f"{OVERVIEW_LABEL}: {summary or text}",
        f"{CAUTION_LABEL}: {text}",
        f"{GUIDANCE_LABEL}: ตั้งกรอบเวลาให้ชัด เช็กความเสี่ยง และตัดสินใจจากข้อเท็จจริง",
    ])


def fallback_structure(result: NumerologyResult) -> str:
    return f"คะแนน {result.score}/99 ({result.tier.value}) • เลขรวม {result.total} • เลขราก {result.root}"


def parse_reading(raw: str, result: NumerologyResult) -> PhoneReading:
    """
    Reshapes the model's JSON answer into a PhoneReading. Undecodable or
    non-object answers fall back to a card built from the computed result.
    """
    try:
        data = parse_json_markdown(raw or "{}")
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    except ValueError as e:
        logger.warning(f"Could not parse Gemini reading, using fallback structure: {e}")
        return PhoneReading(
            summary=INCOMPLETE_SUMMARY,
            card_structure=ensure_fortune_structure(fallback_structure(result), INCOMPLETE_SUMMARY),
        )

    summary = to_readable(data.get("summary"))
    card = data.get("cardStructure", data.get("card_structure"))
    return PhoneReading(
        summary=summary or INCOMPLETE_SUMMARY,
        card_structure=ensure_fortune_structure(to_readable(card), summary),
    )


async def generate_phone_reading(llm_instance: BaseChatModel, result: NumerologyResult) -> PhoneReading:
    """Asks Gemini for a reading of an analyzed phone number."""
    prompt = ChatPromptTemplate.from_messages(build_reading_messages(result))
    chain = prompt | llm_instance | StrOutputParser()

    try:
        logger.info(f"Requesting phone reading for root {result.root}, score {result.score}.")
        raw = await chain.ainvoke({})
    except Exception as e:
        logger.error(f"Gemini phone reading request failed: {e}", exc_info=True)
        raise ReadingGenerationError(f"Failed to generate phone reading: {e}") from e

    return parse_reading(raw, result)
