import re
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from types import MappingProxyType
from typing import Dict, Optional, Tuple

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r'^0[0-9]{9}$')
REPEATED_PAIR_PATTERN = re.compile(r'(\d)\1')

BASE_SCORE = 55
MIN_SCORE = 35
MAX_SCORE = 99
EXCELLENT_THRESHOLD = 80
BALANCED_THRESHOLD = 65

FALLBACK_ROOT = 5


class InvalidPhoneFormat(ValueError):
    """Raised when a normalized phone number is not a 10-digit domestic number."""


class Tier(str, Enum):
    EXCELLENT = "ดีมาก"
    BALANCED = "สมดุล"
    NEEDS_ADJUSTMENT = "ต้องปรับ"


# --- Root Theme Table ---
# root -> (work, money, relationship)
ROOT_THEMES = MappingProxyType({
    1: (
        "เด่นเรื่องภาวะผู้นำ เหมาะเริ่มสิ่งใหม่",
        "รายรับขึ้นจากความกล้าตัดสินใจ",
        "ต้องบาลานซ์ความมั่นใจกับการรับฟัง",
    ),
    2: (
        "เก่งงานประสานและงานทีม",
        "รายได้ค่อยเป็นค่อยไปจากความร่วมมือ",
        "เสน่ห์จากความอ่อนโยนและเอาใจใส่",
    ),
    3: (
        "สื่อสารดี เหมาะงานคอนเทนต์/ขาย",
        "เงินมาจากความคิดสร้างสรรค์",
        "คุยเก่ง ทำให้ความสัมพันธ์สดใส",
    ),
    4: (
        "เด่นเรื่องระบบและความสม่ำเสมอ",
        "มั่นคงจากวินัยการเงิน",
        "จริงจังและให้ความมั่นคงกับคู่",
    ),
    5: (
        "เหมาะงานที่ต้องแก้ปัญหาไว",
        "โอกาสรายได้หลายทาง แต่ควบคุมรายจ่ายด้วย",
        "รักอิสระ ต้องสื่อสารขอบเขตให้ชัด",
    ),
    6: (
        "เด่นงานดูแลลูกค้า/บริการ",
        "เงินดีเมื่อสร้างคุณค่าระยะยาว",
        "อบอุ่น รับผิดชอบ และจริงใจ",
    ),
    7: (
        "เหมาะงานวิเคราะห์ วางกลยุทธ์",
        "ดีเมื่อวางแผนรอบคอบก่อนลงทุน",
        "ต้องการพื้นที่ส่วนตัวแต่ลึกซึ้ง",
    ),
    8: (
        "เด่นด้านบริหารและเป้าหมายใหญ่",
        "ศักยภาพการเงินสูง หากคุมความเสี่ยงดี",
        "จริงจังกับอนาคตและความมั่นคง",
    ),
    9: (
        "เหมาะงานที่มีผลต่อผู้คนวงกว้าง",
        "เงินไหลดีเมื่อทำสิ่งที่มีคุณค่าต่อสังคม",
        "ใจดี เห็นอกเห็นใจ แต่ต้องไม่แบกรับเกินไป",
    ),
})

TIER_CAUTIONS = MappingProxyType({
    Tier.EXCELLENT: "รักษาวินัยเดิมและอย่าประมาทเรื่องสัญญา/เอกสาร",
    Tier.BALANCED: "เพิ่มความชัดเจนเรื่องเป้าหมายการเงินและเวลา",
    Tier.NEEDS_ADJUSTMENT: "ควรเสริมวินัยการเงินและเลือกใช้คำพูดอย่างนุ่มนวล",
})


@dataclass(frozen=True)
class Themes:
    work: str
    money: str
    relationship: str
    caution: str


@dataclass(frozen=True)
class NumerologyResult:
    normalized_phone: str
    total: int
    root: int
    score: int
    tier: Tier
    themes: Themes

    def to_dict(self) -> Dict:
        """JSON-ready representation using the public API field names."""
        return {
            "normalizedPhone": self.normalized_phone,
            "total": self.total,
            "root": self.root,
            "score": self.score,
            "tier": self.tier.value,
            "themes": asdict(self.themes),
        }


# --- Helper Functions (Phone Numerology Calculations) ---

def normalize_thai_phone(text: str) -> str:
    """
    Strips every non-digit character. An 11-digit number carrying the Thai
    country code (66) is rewritten to the domestic 0XXXXXXXXX form.
    The result is not guaranteed to be a valid phone number.
    """
    digits = re.sub(r'[^0-9]', '', text or '')
    if digits.startswith('66') and len(digits) == 11:
        return '0' + digits[2:]
    return digits


def is_valid_thai_phone(normalized_phone: str) -> bool:
    return bool(PHONE_PATTERN.match(normalized_phone))


def sum_digits(text: str) -> int:
    """Sums the decimal digits of a string."""
    return sum(int(digit) for digit in text)


def reduce_to_root(total: int) -> int:
    """Repeatedly sums the digits of ``total`` until a single digit remains."""
    current = total
    while current > 9:
        current = sum_digits(str(current))
    return current


def count_repeated_pairs(digits: str) -> int:
    """Counts adjacent equal-digit pairs, scanning left to right without overlap ("888" -> 1)."""
    return len(REPEATED_PAIR_PATTERN.findall(digits))


def calculate_score(digits: str, root: int) -> int:
    """Weighted composite score of the nine subscriber digits, clamped to [35, 99]."""
    repeated_bonus = count_repeated_pairs(digits) * 3
    eight_bonus = digits.count('8') * 2
    four_bonus = digits.count('4')
    zero_penalty = digits.count('0') * 2

    raw_score = BASE_SCORE + root * 3 + repeated_bonus + eight_bonus + four_bonus - zero_penalty
    return max(MIN_SCORE, min(MAX_SCORE, raw_score))


def classify_tier(score: int) -> Tier:
    if score >= EXCELLENT_THRESHOLD:
        return Tier.EXCELLENT
    if score >= BALANCED_THRESHOLD:
        return Tier.BALANCED
    return Tier.NEEDS_ADJUSTMENT


def caution_for_tier(tier: Tier) -> str:
    return TIER_CAUTIONS[tier]


def root_themes(root: int) -> Tuple[str, str, str]:
    """Returns (work, money, relationship) for a root digit, falling back to root 5."""
    themes = ROOT_THEMES.get(root)
    if themes is None:
        logger.warning(f"No theme entry for root {root}, using root {FALLBACK_ROOT} themes.")
        themes = ROOT_THEMES[FALLBACK_ROOT]
    return themes


def analyze_thai_phone(text: str, strict: bool = False) -> Optional[NumerologyResult]:
    """
    Runs the full phone numerology pipeline on raw, user-supplied text.

    Returns ``None`` when the normalized number is not a 10-digit domestic
    number starting with 0. With ``strict=True`` an ``InvalidPhoneFormat`` is
    raised instead. A partially populated result is never returned.
    """
    normalized_phone = normalize_thai_phone(text)

    if not is_valid_thai_phone(normalized_phone):
        if strict:
            raise InvalidPhoneFormat(f"Invalid Thai phone number: '{normalized_phone}'")
        return None

    digits_only = normalized_phone[1:]
    total = sum_digits(digits_only)
    root = reduce_to_root(total)
    score = calculate_score(digits_only, root)
    tier = classify_tier(score)
    work, money, relationship = root_themes(root)

    return NumerologyResult(
        normalized_phone=normalized_phone,
        total=total,
        root=root,
        score=score,
        tier=tier,
        themes=Themes(
            work=work,
            money=money,
            relationship=relationship,
            caution=caution_for_tier(tier),
        ),
    )
