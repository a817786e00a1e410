from bs4 import BeautifulSoup

from models import EPOCH
from normalizer import (
    canonicalize_audio_url,
    extract_channel,
    extract_episode,
    find_child,
    parse_episode_number,
    text_of,
)

NAMESPACES = (
    'xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd" '
    'xmlns:content="http://purl.org/rss/1.0/modules/content/" '
    'xmlns:media="http://search.yahoo.com/mrss/" '
    'xmlns:dc="http://purl.org/dc/elements/1.1/" '
    'xmlns:podcast="https://podcastindex.org/namespace/1.0"'
)


def channel_node(inner: str):
    xml = f'<?xml version="1.0" encoding="UTF-8"?><rss version="2.0" {NAMESPACES}><channel>{inner}</channel></rss>'
    soup = BeautifulSoup(xml, "xml")
    return find_child(find_child(soup, "rss"), "channel")


def item_node(inner: str):
    return find_child(channel_node(f"<item>{inner}</item>"), "item")


def test_channel_fields_and_defaults():
    channel = extract_channel(
        channel_node(
            "<title>Darknet Diaries</title>"
            "<link>https://darknetdiaries.com/</link>"
            "<description><![CDATA[True stories from the dark side of the Internet.]]></description>"
            "<itunes:author>Jack Rhysider</itunes:author>"
            '<itunes:image href="https://example.com/cover.jpg"/>'
        ),
        "darknetdiaries",
        "https://podcast.darknetdiaries.com",
    )
    assert channel.id == "darknetdiaries"
    assert channel.name == "Darknet Diaries"
    assert channel.website == "https://darknetdiaries.com/"
    assert channel.description == "True stories from the dark side of the Internet."
    assert channel.author == "Jack Rhysider"
    assert channel.image_url == "https://example.com/cover.jpg"
    assert channel.rss_url == "https://podcast.darknetdiaries.com"
    assert channel.language == "en"


def test_empty_channel_degrades_to_empty_strings():
    channel = extract_channel(channel_node(""), "acme")
    assert channel.name == ""
    assert channel.author == ""
    assert channel.image_url == ""
    assert channel.description == ""
    assert channel.language == "en"


def test_channel_author_falls_back_to_owner_then_managing_editor():
    owner = extract_channel(
        channel_node("<itunes:owner><itunes:name>Owner Name</itunes:name></itunes:owner>"), "acme"
    )
    assert owner.author == "Owner Name"

    editor = extract_channel(channel_node("<managingEditor>ed@example.com (Ed Itor)</managingEditor>"), "acme")
    assert editor.author == "ed@example.com"


def test_channel_image_from_legacy_image_block():
    channel = extract_channel(
        channel_node("<image><url>https://example.com/legacy.png</url></image><language>fr</language>"),
        "acme",
    )
    assert channel.image_url == "https://example.com/legacy.png"
    assert channel.language == "fr"


def test_prefixed_names_are_matched_exactly():
    node = item_node("<itunes:author>Jack</itunes:author>")
    assert text_of("author")(node) is None
    assert text_of("itunes:author")(node) == "Jack"


def test_episode_fields():
    episode = extract_episode(
        item_node(
            "<title>EP 165: Stuxnet</title>"
            "<link>https://darknetdiaries.com/episode/165/</link>"
            "<pubDate>Tue, 04 Nov 2025 05:00:00 GMT</pubDate>"
            "<itunes:episode>165</itunes:episode>"
            "<itunes:duration>01:02:03</itunes:duration>"
            "<itunes:author>Jack Rhysider</itunes:author>"
            "<itunes:summary><![CDATA[<p>A worm <b>story</b>.</p>]]></itunes:summary>"
            '<description><![CDATA[<p>Full <a href="https://example.com">notes</a></p>]]></description>'
            '<enclosure url="https://dts.podtrac.com/redirect.mp3/traffic.example.com/165.mp3" type="audio/mpeg"/>'
        ),
        "https://example.com/cover.jpg",
        "darknetdiaries",
    )
    assert episode.id == "20251104-darknetdiaries-ep165"
    assert episode.provider == "darknetdiaries"
    assert episode.title == "EP 165: Stuxnet"
    assert episode.episode_number == 165
    assert episode.url == "https://darknetdiaries.com/episode/165/"
    assert episode.duration == "01:02:03"
    assert episode.author == "Jack Rhysider"
    assert episode.summary == "A worm story."
    assert episode.description == '<p>Full <a href="https://example.com">notes</a></p>'
    assert episode.audio_url == "https://traffic.example.com/165.mp3"
    assert episode.image_url == "https://example.com/cover.jpg"


def test_episode_author_fallbacks():
    generic = extract_episode(item_node("<author>host@example.com (The Host)</author>"), "", "acme")
    assert generic.author == "host@example.com"

    creator = extract_episode(item_node("<dc:creator>Jane Doe</dc:creator>"), "", "acme")
    assert creator.author == "Jane Doe"

    missing = extract_episode(item_node("<title>x</title>"), "", "acme")
    assert missing.author == ""


def test_episode_image_resolution_order():
    attr = extract_episode(
        item_node('<itunes:image href="https://example.com/a.jpg"/><media:thumbnail url="https://example.com/t.jpg"/>'),
        "https://example.com/channel.jpg",
        "acme",
    )
    assert attr.image_url == "https://example.com/a.jpg"

    text = extract_episode(item_node("<itunes:image>https://example.com/text.jpg</itunes:image>"), "", "acme")
    assert text.image_url == "https://example.com/text.jpg"

    thumb = extract_episode(item_node('<media:thumbnail url="https://example.com/t.jpg"/>'), "", "acme")
    assert thumb.image_url == "https://example.com/t.jpg"

    media = extract_episode(item_node('<media:content url="https://example.com/m.jpg"/>'), "", "acme")
    assert media.image_url == "https://example.com/m.jpg"

    fallback = extract_episode(item_node("<title>x</title>"), "https://example.com/channel.jpg", "acme")
    assert fallback.image_url == "https://example.com/channel.jpg"


def test_summary_and_description_fallbacks():
    episode = extract_episode(
        item_node("<content:encoded><![CDATA[<p>Encoded body</p>]]></content:encoded>"
                  "<itunes:subtitle>Short subtitle</itunes:subtitle>"),
        "",
        "acme",
    )
    assert episode.description == "<p>Encoded body</p>"
    assert episode.summary == "Short subtitle"

    from_description = extract_episode(item_node("<description>&lt;p&gt;Plain &lt;i&gt;enough&lt;/i&gt;&lt;/p&gt;</description>"), "", "acme")
    assert from_description.summary == "Plain enough"
    assert from_description.description == "<p>Plain <i>enough</i></p>"


def test_literal_cdata_wrapper_is_unwrapped():
    episode = extract_episode(item_node("<title>&lt;![CDATA[ Escaped Title ]]&gt;</title>"), "", "acme")
    assert episode.title == "Escaped Title"


def test_episode_number_variants():
    assert parse_episode_number("165") == 165
    assert parse_episode_number(" 12 (bonus)") == 12
    assert parse_episode_number("bonus") is None
    assert parse_episode_number("") is None

    episode = extract_episode(
        item_node("<podcast:episode>12</podcast:episode><pubDate>2024-02-01</pubDate>"), "", "acme"
    )
    assert episode.episode_number == 12
    assert episode.id == "20240201-acme-ep12"


def test_unparseable_date_falls_back_to_epoch():
    episode = extract_episode(item_node("<pubDate>someday</pubDate><itunes:episode>3</itunes:episode>"), "", "acme")
    assert episode.date == EPOCH
    assert episode.id == "19700101-acme-ep3"


def test_dc_date_is_used_without_pubdate():
    episode = extract_episode(item_node("<dc:date>2025-03-09T10:00:00Z</dc:date>"), "", "acme")
    assert episode.id == "20250309-acme-epunknown"


def test_canonicalize_known_tracking_prefixes():
    assert canonicalize_audio_url(
        "https://dts.podtrac.com/redirect.mp3/traffic.example.com/ep1.mp3"
    ) == "https://traffic.example.com/ep1.mp3"
    assert canonicalize_audio_url(
        "http://www.podtrac.com/pts/redirect.mp3/cdn.example.com/ep2.mp3"
    ) == "https://cdn.example.com/ep2.mp3"
    assert canonicalize_audio_url(
        "https://pdst.fm/e/chrt.example.com/track/ep3.mp3"
    ) == "https://chrt.example.com/track/ep3.mp3"
    assert canonicalize_audio_url(
        "https://pfx.vpixl.com/abc123/media.example.com/ep4.mp3"
    ) == "https://media.example.com/ep4.mp3"
    assert canonicalize_audio_url(
        "https://pscrb.fm/rss/p/audio.example.com/ep5.mp3"
    ) == "https://audio.example.com/ep5.mp3"
    assert canonicalize_audio_url(
        "https://prfx.byspotify.com/e/op3.dev/e/origin.example.com/ep7.mp3"
    ) == "https://origin.example.com/ep7.mp3"


def test_canonicalize_is_case_insensitive_and_chains():
    assert canonicalize_audio_url(
        "HTTPS://DTS.PODTRAC.COM/redirect.mp3/host.example.com/x.mp3"
    ) == "https://host.example.com/x.mp3"
    assert canonicalize_audio_url(
        "https://pdst.fm/e/dts.podtrac.com/redirect.mp3/traffic.example.com/a.mp3"
    ) == "https://traffic.example.com/a.mp3"


def test_canonicalize_leaves_unknown_urls_alone():
    url = "https://cdn.example.com/episodes/ep1.mp3?source=rss"
    assert canonicalize_audio_url(url) == url
    assert canonicalize_audio_url("") == ""
    assert canonicalize_audio_url(None) == ""
