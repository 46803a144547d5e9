import pytest

from camlink.utils.pairing import (
    build_pairing_link,
    link_origin,
    parse_pairing_link,
    render_qr_ascii,
    render_qr_svg,
)


def test_build_pairing_link_format():
    assert (
        build_pairing_link("https://example.com/", "abc123")
        == "https://example.com/mobile-camera?sessionId=abc123"
    )


def test_build_pairing_link_requires_session_id():
    with pytest.raises(ValueError):
        build_pairing_link("https://example.com", "")


def test_parse_pairing_link_reads_session_id():
    link = build_pairing_link("http://10.0.0.5:8080", "f00d")
    assert parse_pairing_link(link) == "f00d"
    assert link_origin(link) == "http://10.0.0.5:8080"


def test_parse_pairing_link_without_id():
    with pytest.raises(ValueError):
        parse_pairing_link("https://example.com/mobile-camera")
    with pytest.raises(ValueError):
        parse_pairing_link("https://example.com/mobile-camera?sessionId=")


def test_link_origin_of_relative_link():
    assert link_origin("/mobile-camera?sessionId=x") is None


def test_qr_renderings():
    link = build_pairing_link("https://example.com", "abc")
    svg = render_qr_svg(link)
    assert svg.lstrip().startswith("<?xml") or "<svg" in svg
    ascii_qr = render_qr_ascii(link)
    assert len(ascii_qr.splitlines()) > 10
