# src/kcal/features/terms.py
"""
24 solar terms (24절기).

- longitude 0..345 deg (15-deg step) => member / Hangul / Hanja / kind
- kind: longitude % 30 == 0 -> 중기 (principal), else 절기 (sectional)

Member names are romanized Korean; values are the Hangul names used by KASI.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple

JUNGGI = "중기"
JEOLGI = "절기"

LEAP_LABEL = "윤"
REGULAR_LABEL = "평"


class SolarTerm(str, Enum):
    CHUNBUN = "춘분"
    CHEONGMYEONG = "청명"
    GOGU = "곡우"
    IPHA = "입하"
    SOMAN = "소만"
    MANGJONG = "망종"
    HAJI = "하지"
    SOSEO = "소서"
    DAESEO = "대서"
    IPCHU = "입추"
    CHEOSEO = "처서"
    BAENGNO = "백로"
    CHUBUN = "추분"
    HALLO = "한로"
    SANGGANG = "상강"
    IPDONG = "입동"
    SOSEOL = "소설"
    DAESEOL = "대설"
    DONGJI = "동지"
    SOHAN = "소한"
    DAEHAN = "대한"
    IPCHUN = "입춘"
    USU = "우수"
    GYEONGCHIP = "경칩"

    @property
    def longitude(self) -> int:
        return longitude_of(self)

    @property
    def kind(self) -> str:
        return term_kind(self.longitude)

    @property
    def hanja(self) -> str:
        return TERM_HANJA[self]


SOLAR_TERMS: List[Tuple[int, SolarTerm, str]] = [
    (0,   SolarTerm.CHUNBUN,      "春分"),
    (15,  SolarTerm.CHEONGMYEONG, "淸明"),
    (30,  SolarTerm.GOGU,         "穀雨"),
    (45,  SolarTerm.IPHA,         "立夏"),
    (60,  SolarTerm.SOMAN,        "小滿"),
    (75,  SolarTerm.MANGJONG,     "芒種"),
    (90,  SolarTerm.HAJI,         "夏至"),
    (105, SolarTerm.SOSEO,        "小暑"),
    (120, SolarTerm.DAESEO,       "大暑"),
    (135, SolarTerm.IPCHU,        "立秋"),
    (150, SolarTerm.CHEOSEO,      "處暑"),
    (165, SolarTerm.BAENGNO,      "白露"),
    (180, SolarTerm.CHUBUN,       "秋分"),
    (195, SolarTerm.HALLO,        "寒露"),
    (210, SolarTerm.SANGGANG,     "霜降"),
    (225, SolarTerm.IPDONG,       "立冬"),
    (240, SolarTerm.SOSEOL,       "小雪"),
    (255, SolarTerm.DAESEOL,      "大雪"),
    (270, SolarTerm.DONGJI,       "冬至"),
    (285, SolarTerm.SOHAN,        "小寒"),
    (300, SolarTerm.DAEHAN,       "大寒"),
    (315, SolarTerm.IPCHUN,       "立春"),
    (330, SolarTerm.USU,          "雨水"),
    (345, SolarTerm.GYEONGCHIP,   "驚蟄"),
]

TERM_DEGS: List[int] = [deg for deg, _, _ in SOLAR_TERMS]
TERM_BY_DEG: Dict[int, SolarTerm] = {deg: term for deg, term, _ in SOLAR_TERMS}
DEG_BY_TERM: Dict[SolarTerm, int] = {term: deg for deg, term, _ in SOLAR_TERMS}
TERM_HANJA: Dict[SolarTerm, str] = {term: hanja for _, term, hanja in SOLAR_TERMS}


@dataclass(frozen=True)
class TermInfo:
    longitude: int
    term: SolarTerm
    name: str
    hanja: str
    kind: str


def normalize_term_deg(deg: float) -> int:
    """
    Normalize an arbitrary degree value into one of 0, 15, ..., 345.
    """
    d = float(deg) % 360.0
    k = int(round(d / 15.0)) % 24
    return k * 15


def term_from_longitude(deg: float) -> SolarTerm:
    return TERM_BY_DEG[normalize_term_deg(deg)]


def longitude_of(term: SolarTerm) -> int:
    return DEG_BY_TERM[SolarTerm(term)]


def term_kind(deg: float) -> str:
    return JUNGGI if normalize_term_deg(deg) % 30 == 0 else JEOLGI


def term_info(term: SolarTerm) -> TermInfo:
    term = SolarTerm(term)
    deg = DEG_BY_TERM[term]
    return TermInfo(longitude=deg, term=term, name=term.value, hanja=TERM_HANJA[term], kind=term_kind(deg))


def parse_term(value: str) -> SolarTerm:
    """
    Accept either a member name ("IPCHUN") or a Hangul name ("입춘").
    """
    if value in SolarTerm.__members__:
        return SolarTerm[value]
    try:
        return SolarTerm(value)
    except ValueError as e:
        raise ValueError(f"unknown solar term: {value!r}") from e


def leap_label(is_leap: bool) -> str:
    return LEAP_LABEL if is_leap else REGULAR_LABEL


def is_leap_label(label: str) -> bool:
    return str(label).strip().startswith(LEAP_LABEL)
