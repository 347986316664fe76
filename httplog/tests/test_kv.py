# httplog/tests/test_kv.py
from httplog.kv import KeyValueBlock, parse_query
from httplog.masking import MaskingPolicy

POLICY = MaskingPolicy.from_keys(["secret"])


def test_repeated_keys_accumulate_in_order():
    block = parse_query("tag=a&x=1&tag=b")
    assert block.keys() == ["tag", "x"]
    assert block.get("tag") == ["a", "b"]


def test_parse_query_decoding():
    block = parse_query("q=hello+world&flag&enc=%C3%A9")
    assert block.get("q") == ["hello world"]
    assert block.get("flag") == [""]
    assert block.get("enc") == ["é"]


def test_parse_query_empty():
    assert not parse_query("")
    assert not parse_query(None)


def test_format_block():
    block = parse_query("tag=a&tag=b&secret=s&x=1")
    text = block.format_block("  ", POLICY)
    assert text == "  - tag: [a, b]\n  - secret: ****\n  - x: 1\n"


def test_format_block_joined_and_empty():
    block = KeyValueBlock([("accept", "a"), ("accept", "b")])
    assert block.format_block("", join_values=True) == "- accept: a, b\n"
    assert KeyValueBlock().format_block() == "(empty)\n"


def test_compact_and_raw():
    block = parse_query("a=1&a=2&secret=x")
    assert block.to_compact(POLICY) == {"a": ["1", "2"], "secret": "****"}
    assert block.to_raw(POLICY) == "a=1&a=2&secret=****"


def test_from_raw_headers():
    block = KeyValueBlock.from_raw_headers([(b"content-type", b"text/plain"), (b"x-a", b"1")])
    assert "content-type" in block
    assert len(block) == 2
    assert block == KeyValueBlock([("content-type", "text/plain"), ("x-a", "1")])
