"""@mention 行内语法的编码与识别。

语法：

    @[type:name]
    @[type:name|alias]

type 与 name 原样写入，不做任何转义。name 中含有 "]" 或 "|"、alias 中含有 "]"
时编码结果无法被正确识别，这是已知缺口：这里只记录 WARNING，不改变语法。
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Protocol, Union

from assistant_core.domain.mentions import normalize_mention_type
from assistant_core.infrastructure.logging.logger import logger

MENTION_PATTERN = re.compile(r"@\[([A-Za-z0-9_]+):([^\]|]+)(?:\|([^\]]+))?\]")


class Mentionable(Protocol):
    type: str
    name: str


@dataclass(frozen=True)
class DecodedMention:
    """从文本中识别出的一个 mention。

    start/end 是原文中的切片位置，raw 为原始 token 文本。
    """

    type: str
    name: str
    alias: Optional[str]
    start: int
    end: int
    raw: str

    @property
    def display_text(self) -> str:
        return self.alias or self.name


def format_mention(type_: str, name: str, alias: Optional[str] = None) -> str:
    if "]" in name or "|" in name or (alias and "]" in alias):
        logger.warning(
            "Mention contains reserved characters and will not round-trip",
            extra={"extra": {"type": type_, "name": name, "alias": alias}},
        )
    suffix = f"|{alias}" if alias else ""
    return f"@[{type_}:{name}{suffix}]"


def encode(reference: Mentionable, alias: Optional[str] = None) -> str:
    """把引用编码成行内 token。

    例如 person「李克強」配别名「李總理」得到 "@[person:李克強|李總理]"。
    """

    return format_mention(reference.type, reference.name, alias)


def _decode_match(match: "re.Match[str]") -> Optional[DecodedMention]:
    type_ = normalize_mention_type(match.group(1))
    if type_ is None:
        return None
    alias = match.group(3)
    return DecodedMention(
        type=type_,
        name=match.group(2).strip(),
        alias=alias.strip() if alias is not None else None,
        start=match.start(),
        end=match.end(),
        raw=match.group(0),
    )


def find_mentions(text: str) -> List[DecodedMention]:
    """返回文本中所有类型合法的 mention，按出现顺序排列。"""

    found = []
    for match in MENTION_PATTERN.finditer(text):
        decoded = _decode_match(match)
        if decoded is not None:
            found.append(decoded)
    return found


def split_mentions(text: str) -> List[Union[str, DecodedMention]]:
    """把文本切成纯文本片段与 mention 交替的序列。

    类型无法识别的 token 作为纯文本保留；相邻的纯文本片段会被合并。
    """

    parts: List[Union[str, DecodedMention]] = []
    last = 0
    for mention in find_mentions(text):
        if mention.start > last:
            parts.append(text[last:mention.start])
        parts.append(mention)
        last = mention.end
    if last < len(text):
        parts.append(text[last:])
    return parts


decode_mentions = split_mentions


def is_mention_token(text: str) -> bool:
    """整个字符串恰好是一个合法的 mention token。"""

    match = MENTION_PATTERN.fullmatch(text)
    return match is not None and _decode_match(match) is not None
