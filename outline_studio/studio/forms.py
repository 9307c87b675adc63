from __future__ import annotations

from enum import Enum
from typing import List, Tuple, Type

from flask import current_app
from flask_wtf import FlaskForm
from wtforms import IntegerField, SelectField, StringField, SubmitField, TextAreaField
from wtforms.validators import InputRequired, Length, NumberRange, Optional, ValidationError

from ..models import (
    AuthorStyle,
    CharacterArchetype,
    Choice,
    CreativeSettings,
    CustomChoice,
    FixedChoice,
    NovelLength,
    NovelTheme,
    PlotTrope,
)

CUSTOM_VALUE = "custom"
CUSTOM_LABEL = "自定义... | Custom..."


def _choices(enum_cls: Type[Enum], *, with_custom: bool = True) -> List[Tuple[str, str]]:
    options = [(member.name, member.value) for member in enum_cls]
    if with_custom:
        options.append((CUSTOM_VALUE, CUSTOM_LABEL))
    return options


def _to_choice(enum_cls: Type[Enum], selected: str, custom_text: str) -> Choice:
    if selected == CUSTOM_VALUE:
        return CustomChoice((custom_text or "").strip())
    return FixedChoice(enum_cls[selected])


def _from_choice(choice: Choice) -> Tuple[str, str]:
    if isinstance(choice, CustomChoice):
        return CUSTOM_VALUE, choice.text
    return choice.value.name, ""


class CreativeSettingsForm(FlaskForm):
    title = StringField("小说标题 | Title", validators=[Optional(), Length(max=150)])
    length = SelectField("小说篇幅 | Length", choices=_choices(NovelLength, with_custom=False))
    theme = SelectField("主题 | Theme", choices=_choices(NovelTheme))
    custom_theme = StringField("自定义主题", validators=[Optional(), Length(max=200)])
    character = SelectField("角色 | Character", choices=_choices(CharacterArchetype))
    custom_character = StringField("自定义角色", validators=[Optional(), Length(max=200)])
    plot = SelectField("情节 | Plot", choices=_choices(PlotTrope))
    custom_plot = StringField("自定义情节", validators=[Optional(), Length(max=200)])
    author_style = SelectField("作者风格 | Author style", choices=_choices(AuthorStyle))
    custom_author_style = StringField("自定义风格", validators=[Optional(), Length(max=200)])
    world_background = TextAreaField("世界背景 | World background", validators=[Optional(), Length(max=4000)])
    power_system = TextAreaField("力量/规则体系 | Power system", validators=[Optional(), Length(max=4000)])
    unique_setting = TextAreaField("独特设定亮点 | Unique setting", validators=[Optional(), Length(max=4000)])
    chapter_count = IntegerField(
        "章节数量 | Chapters",
        validators=[InputRequired(), NumberRange(min=1)],
    )
    submit = SubmitField("保存设定 | Save settings")

    def validate_chapter_count(self, field: IntegerField) -> None:
        max_count = current_app.config.get("MAX_CHAPTER_COUNT", 100)
        if field.data is not None and field.data > max_count:
            raise ValidationError(f"最多 {max_count} 章 | At most {max_count} chapters.")

    def to_settings(self) -> CreativeSettings:
        return CreativeSettings(
            title=(self.title.data or "").strip(),
            length=NovelLength[self.length.data],
            theme=_to_choice(NovelTheme, self.theme.data, self.custom_theme.data),
            character=_to_choice(CharacterArchetype, self.character.data, self.custom_character.data),
            plot=_to_choice(PlotTrope, self.plot.data, self.custom_plot.data),
            author_style=_to_choice(AuthorStyle, self.author_style.data, self.custom_author_style.data),
            world_background=(self.world_background.data or "").strip(),
            power_system=(self.power_system.data or "").strip(),
            unique_setting=(self.unique_setting.data or "").strip(),
            chapter_count=self.chapter_count.data,
        )

    def load_settings(self, settings: CreativeSettings) -> None:
        self.title.data = settings.title
        self.length.data = settings.length.name
        self.theme.data, self.custom_theme.data = _from_choice(settings.theme)
        self.character.data, self.custom_character.data = _from_choice(settings.character)
        self.plot.data, self.custom_plot.data = _from_choice(settings.plot)
        self.author_style.data, self.custom_author_style.data = _from_choice(settings.author_style)
        self.world_background.data = settings.world_background
        self.power_system.data = settings.power_system
        self.unique_setting.data = settings.unique_setting
        self.chapter_count.data = settings.chapter_count
