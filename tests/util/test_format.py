from solvegate.util.format import format_bytes, format_ms, shorten, tail_lines


def test_tail_lines_skips_blank_lines():
    text = "a\n\nb\n  \nc\n"
    assert tail_lines(text, 2) == "b\nc"


def test_tail_lines_zero():
    assert tail_lines("a\nb", 0) == ""


def test_tail_lines_more_than_available():
    assert tail_lines("only\n", 5) == "only"


def test_shorten():
    assert shorten("abcdef", 10) == "abcdef"
    assert shorten("abcdefghij", 6) == "abc..."
    assert shorten("abcdef", 2) == "ab"


def test_format_ms():
    assert format_ms(None) == "-"
    assert format_ms(250) == "250ms"
    assert format_ms(1500) == "1.50s"
    assert format_ms(125000) == "2m05.0s"


def test_format_bytes():
    assert format_bytes(512) == "512B"
    assert format_bytes(2048) == "2.0KiB"
    assert format_bytes(1024 * 1024) == "1.0MiB"
