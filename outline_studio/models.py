"""Domain types for the outline studio.

Option lists follow the Fanqie web-novel categories. Each enum value is the
label shown in the UI and written into prompts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Union


class NovelTheme(str, Enum):
    FANTASY = "东方奇幻"
    EASTERN_FANTASY = "东方仙侠"
    SCIFI_FUTURE = "科幻末世"
    URBAN_GAOWU = "都市高武"
    URBAN_SUPERNATURAL = "悬疑灵异"
    SUSPENSE_BRAIN = "悬疑脑洞"
    ANTI_WAR = "抗战谍战"
    HISTORICAL_ANCIENT = "历史古代"
    HISTORICAL_BRAIN = "历史脑洞"
    URBAN_FARMING = "都市种田"
    URBAN_BRAIN = "都市脑洞"
    URBAN_DAILY = "都市日常"
    XUANHUAN_BRAIN = "玄幻脑洞"
    WARGOD = "战神赘婿"
    ANIME_DERIVATIVE = "动漫衍生"
    GAME_SPORTS = "游戏体育"
    TRADITIONAL_XUANHUAN = "传统玄幻"
    URBAN_CULTIVATION = "都市修真"
    NEW_GOD_DERIVATIVE = "新神衍生"
    TEN_DAY_DERIVATIVE = "十日衍生"
    JOURNEY_TO_WEST = "西游衍生"
    PUBLIC_DERIVATIVE = "公版衍生"
    RED_MANSION = "红楼衍生"


class CharacterArchetype(str, Enum):
    MULTI_FEMALE_LEAD = "多女主"
    ZHUIXU = "赘婿"
    ALMIGHTY = "全能"
    DALAO = "大佬"
    MISS = "大小姐"
    TEGONG = "特工"
    GAME_ANCHOR = "游戏主播"
    SHENTAN = "神探"
    PALACE_GUARD = "宫廷侯爵"
    EMPEROR = "皇帝"
    SINGLE_FEMALE_LEAD = "单女主"
    SCHOOL_BEAUTY = "校花"
    NO_FEMALE_LEAD = "无女主"
    EMPRESS = "女帝"
    SPECIAL_FORCES = "特种兵"
    VILLAIN = "反派"
    SHENYI = "神医"
    NAIBA = "奶爸"
    XUEBA = "学霸"
    GENIUS = "天才"
    FUHEI = "腹黑"
    PRETEND_TO_BE_WEAK = "扮猪吃虎"


class PlotTrope(str, Enum):
    DERIVATIVE = "衍生"
    INVINCIBLE = "无敌"
    OFFICIAL_CAREER = "仕途"
    FILM_TV_CROSSOVER = "综影视"
    CALAMITY = "天灾"
    FIRST_PERSON = "第一人称"
    CYBERPUNK = "赛博朋克"
    FOURTH_CALAMITY = "第四天灾"
    GOURMET = "美食"
    ANCIENT = "古代"
    SUSPENSE = "悬疑"
    CTHULHU = "克苏鲁"
    URBAN_SUPERPOWER = "都市异能"
    APOCALYPSE_SURVIVAL = "末日求生"
    SPIRIT_REVIVAL = "灵气复苏"
    GAOWU_WORLD = "高武世界"
    OTHER_WORLD = "异世大陆"
    EASTERN_XUANHUAN = "东方玄幻"
    CLASS_BATTLE = "课战"
    QING_DYNASTY = "清朝"
    SONG_DYNASTY = "宋朝"
    DISCONTINUITY = "断层"
    MILITARY_GENERAL = "武将"
    NATIONAL_FORTUNE = "国运"
    CROSSOVER = "综综"
    SYSTEM = "系统流"


class AuthorStyle(str, Enum):
    DEFAULT = "默认风格 | Default"
    WO_CHI_XI_HONG_SHI = "我吃西红柿 | I Eat Tomatoes"
    CHEN_DONG = "辰东 | Chen Dong"
    TANG_JIA_SAN_SHAO = "唐家三少 | Tang Jia San Shao"
    ER_GEN = "耳根 | Er Gen"


class NovelLength(str, Enum):
    SHORT = "短篇 (<5万字)"
    MEDIUM = "中篇 (5-20万字)"
    LONG = "长篇 (20-100万字)"
    EPIC = "超长篇 (100万字+)"


@dataclass(frozen=True)
class FixedChoice:
    """One of the bundled options of a selectable field."""

    value: Enum

    def resolve(self) -> str:
        return str(self.value.value)


@dataclass(frozen=True)
class CustomChoice:
    """A free-text override selected in place of a bundled option."""

    text: str = ""

    def resolve(self) -> str:
        return self.text.strip()


Choice = Union[FixedChoice, CustomChoice]


@dataclass
class CreativeSettings:
    title: str = ""
    length: NovelLength = NovelLength.LONG
    theme: Choice = field(default_factory=lambda: FixedChoice(NovelTheme.FANTASY))
    character: Choice = field(default_factory=lambda: FixedChoice(CharacterArchetype.GENIUS))
    plot: Choice = field(default_factory=lambda: FixedChoice(PlotTrope.SYSTEM))
    author_style: Choice = field(default_factory=lambda: FixedChoice(AuthorStyle.DEFAULT))
    world_background: str = ""
    power_system: str = ""
    unique_setting: str = ""
    chapter_count: int = 15

    @property
    def has_title(self) -> bool:
        return bool((self.title or "").strip())


@dataclass(frozen=True)
class OutlineEntry:
    title: str = ""
    beat: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"title": self.title, "beat": self.beat}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutlineEntry":
        return cls(title=str(data.get("title") or ""), beat=str(data.get("beat") or ""))


class AssetKind(str, Enum):
    CHAPTER = "chapter"
    SYNOPSIS = "synopsis"
    STORY_HOOK = "story_hook"
    GOLDEN_FINGER = "golden_finger"
    CORE_SETTING = "core_setting"
    CHARACTER_PROFILES = "character_profiles"
    FULL_WORLDVIEW = "full_worldview"


AUX_ASSET_KINDS = tuple(kind for kind in AssetKind if kind is not AssetKind.CHAPTER)
