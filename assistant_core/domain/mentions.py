"""@mention 相关的领域模型。"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Tuple, get_args

MentionType = Literal["person", "document", "organization", "issue", "log", "meeting", "letter"]

MENTION_TYPES: Tuple[str, ...] = get_args(MentionType)

# 旧版数据里 organization 曾叫 entity
LEGACY_TYPE_ALIASES = {"entity": "organization"}


def normalize_mention_type(raw: str) -> Optional[str]:
    """把外部传入的类型名规范化为 MentionType，无法识别时返回 None。"""

    value = LEGACY_TYPE_ALIASES.get(raw, raw)
    return value if value in MENTION_TYPES else None


@dataclass(frozen=True)
class MentionReference:
    """一个可以被 @ 引用的对象。

    aliases 有序，第一个别名是默认显示别名。
    """

    id: str
    name: str
    type: MentionType
    aliases: Tuple[str, ...] = ()

    @property
    def default_alias(self) -> Optional[str]:
        return self.aliases[0] if self.aliases else None


@dataclass(frozen=True)
class AnchorPosition:
    """候选下拉框在屏幕上的锚点，由宿主 UI 提供。"""

    x: float
    y: float


@dataclass(frozen=True)
class MentionQueryState:
    """一次激活中的 @ 查询。

    不变量：0 <= selected_index < len(candidates)。
    没有候选项时不存在 MentionQueryState。
    """

    query: str
    start: int
    candidates: Tuple[MentionReference, ...]
    selected_index: int = 0
    anchor: Optional[AnchorPosition] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.candidates:
            raise ValueError("MentionQueryState requires at least one candidate")
        if not 0 <= self.selected_index < len(self.candidates):
            raise ValueError(f"selected_index {self.selected_index} out of range")

    @property
    def selected(self) -> MentionReference:
        return self.candidates[self.selected_index]
