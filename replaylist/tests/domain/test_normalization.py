from replaylist.domain.entities import Track


def test_normalize_isrc_accepts_common_spellings():
    from replaylist.domain.normalization import normalize_isrc

    assert normalize_isrc("USRC17607839") == "USRC17607839"
    assert normalize_isrc("us-rc1-76-07839") == "USRC17607839"
    assert normalize_isrc(" GB AYE 05 00018 ") == "GBAYE0500018"


def test_normalize_isrc_rejects_non_isrc_values():
    from replaylist.domain.normalization import normalize_isrc

    assert normalize_isrc(None) is None
    assert normalize_isrc("") is None
    assert normalize_isrc("not-an-isrc") is None
    assert normalize_isrc("12RC17607839") is None  # country code must be letters
    assert normalize_isrc("USRC1760783") is None  # one digit short


def test_normalize_isrc_logs_dropped_value(caplog):
    import logging

    from replaylist.domain.normalization import normalize_isrc

    with caplog.at_level(logging.DEBUG, logger="replaylist.domain.normalization"):
        assert normalize_isrc("XX-BAD") is None
        assert normalize_isrc(None) is None

    dropped = [r.getMessage() for r in caplog.records if r.name == "replaylist.domain.normalization"]
    assert dropped == ["Dropping malformed ISRC 'XX-BAD', track will be matched by text"]


def test_normalize_cover_url_substitutes_template_tokens():
    from replaylist.domain.normalization import normalize_cover_url

    url = "https://is1-ssl.mzstatic.com/image/thumb/Music/abc/{w}x{h}bb.{f}"
    assert normalize_cover_url(url) == "https://is1-ssl.mzstatic.com/image/thumb/Music/abc/300x300bb.jpg"

    separate = "https://example.com/art?w={w}&h={h}&fmt={f}"
    assert normalize_cover_url(separate) == "https://example.com/art?w=300&h=300&fmt=jpg"


def test_normalize_cover_url_leaves_plain_urls_alone():
    from replaylist.domain.normalization import normalize_cover_url

    assert normalize_cover_url("https://example.com/cover.png") == "https://example.com/cover.png"
    assert normalize_cover_url(None) == ""
    assert normalize_cover_url("") == ""


def test_strip_topic_suffix():
    from replaylist.domain.normalization import strip_topic_suffix

    assert strip_topic_suffix("Daft Punk - Topic") == "Daft Punk"
    assert strip_topic_suffix("Daft Punk") == "Daft Punk"
    assert strip_topic_suffix("Topic") == "Topic"
    assert strip_topic_suffix(None) == ""


def test_text_query_joins_title_and_artist():
    from replaylist.domain.normalization import text_query

    assert text_query(Track(title="One  More   Time", artist="Daft Punk")) == "One More Time Daft Punk"
    assert text_query(Track(title="Intro")) == "Intro"
    assert text_query(Track()) == ""


def test_structured_query_uses_field_filters_without_quotes():
    from replaylist.domain.normalization import structured_query

    track = Track(title='Say "Hello"', artist="Adele")
    assert structured_query(track) == 'track:"Say Hello" artist:"Adele"'
    assert structured_query(Track(artist="Adele")) == 'artist:"Adele"'
    assert structured_query(Track()) == ""


def test_clean_text_applies_nfkc_and_collapses_whitespace():
    from replaylist.domain.normalization import clean_text

    # Full-width letters fold to ASCII under NFKC
    assert clean_text("ＡＢＣ  song\t") == "ABC song"
    assert clean_text(None) == ""
