from assistant_core.domain.mentions import MentionReference, normalize_mention_type
from assistant_core.mentions.codec import (
    DecodedMention,
    encode,
    find_mentions,
    format_mention,
    is_mention_token,
    split_mentions,
)


PREMIER = MentionReference(id="p1", name="李克強", type="person", aliases=("李總理", "克強"))


def test_encode_with_and_without_alias():
    assert encode(PREMIER, "李總理") == "@[person:李克強|李總理]"
    assert encode(PREMIER) == "@[person:李克強]"
    assert format_mention("document", "Q3 report") == "@[document:Q3 report]"


def test_find_mentions_positions_and_alias():
    text = "請問 @[person:李克強|李總理] 和 @[document:年報] 的關係"
    found = find_mentions(text)
    assert [(m.type, m.name, m.alias) for m in found] == [
        ("person", "李克強", "李總理"),
        ("document", "年報", None),
    ]
    first = found[0]
    assert text[first.start:first.end] == first.raw == "@[person:李克強|李總理]"
    assert first.display_text == "李總理"
    assert found[1].display_text == "年報"


def test_split_mentions_keeps_plain_text():
    parts = split_mentions("hi @[issue:42] there @[bogus:x] end")
    assert parts[0] == "hi "
    assert isinstance(parts[1], DecodedMention) and parts[1].type == "issue"
    assert parts[2] == " there @[bogus:x] end"
    assert split_mentions("no mentions") == ["no mentions"]
    assert split_mentions("") == []


def test_name_and_alias_are_trimmed():
    (mention,) = find_mentions("@[meeting: weekly sync | sync ]")
    assert mention.name == "weekly sync"
    assert mention.alias == "sync"


def test_legacy_entity_type():
    assert normalize_mention_type("entity") == "organization"
    assert normalize_mention_type("planet") is None
    (mention,) = find_mentions("@[entity:ACME]")
    assert mention.type == "organization"


def test_is_mention_token():
    assert is_mention_token("@[letter:to bob]")
    assert not is_mention_token("@[letter:to bob] tail")
    assert not is_mention_token("@[unknown:x]")
    assert not is_mention_token("@[person:]")


def test_reserved_characters_are_not_escaped(caplog):
    token = format_mention("person", "a]b")
    assert token == "@[person:a]b]"
    assert find_mentions(token)[0].name == "a"
    assert any("reserved characters" in r.getMessage() for r in caplog.records)
