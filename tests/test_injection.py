from __future__ import annotations

import pytest

from tracegate.inspection.injection import InjectionDetector, InjectionFamily, match_family


@pytest.mark.parametrize(
    ("value", "family"),
    [
        ("' OR '1'='1", InjectionFamily.sql),
        ("; DROP TABLE users;--", InjectionFamily.sql),
        ("1 UNION SELECT password FROM users", InjectionFamily.sql),
        ("admin'--", InjectionFamily.sql),
        ("1; WAITFOR DELAY '0:0:5'", InjectionFamily.sql),
        ("<script>alert(1)</script>", InjectionFamily.script),
        ("<img onerror=alert(1)>", InjectionFamily.script),
        ("javascript:alert(document.cookie)", InjectionFamily.script),
        ("<svg/onload=alert(1)>", InjectionFamily.script),
        ("x'||'1'='1", InjectionFamily.sql),
        ("name' || 'suffix", InjectionFamily.sql),
    ],
)
def test_known_attacks_are_flagged(value: str, family: InjectionFamily) -> None:
    assert match_family(value) is family


@pytest.mark.parametrize(
    "value",
    [
        "O'Brien's Pharmacy",
        "select a size",
        "Apples and oranges",
        "Order #42 for Jo and Sam",
        "lot-2024-07 batch",
        "contact: ops@example.com",
        "Ships in 3-5 days; fragile",
    ],
)
def test_benign_text_passes(value: str) -> None:
    assert match_family(value) is None


def test_encoded_variants_are_decoded_before_matching() -> None:
    assert match_family("%3Cscript%3Ealert(1)%3C%2Fscript%3E") is InjectionFamily.script
    assert match_family("&lt;script&gt;alert(1)&lt;/script&gt;") is InjectionFamily.script
    assert match_family("%27%20OR%20%271%27%3D%271") is InjectionFamily.sql


def test_scan_reports_field_path_not_value() -> None:
    finding = InjectionDetector().scan(
        {"query": {"page": "2"}, "body": {"items": [{"note": "fine"}, {"note": "<script>x</script>"}]}}
    )
    assert finding is not None
    assert finding.family is InjectionFamily.script
    assert finding.field == "body.items[1].note"


def test_scan_checks_mapping_keys() -> None:
    finding = InjectionDetector().scan({"body": {"<script>": "1"}})
    assert finding is not None
    assert finding.field == "body[key]"


def test_header_scan_skips_credentials_and_negotiation() -> None:
    detector = InjectionDetector()
    headers = {
        "accept": "*/*",
        "authorization": "Bearer abc--def",
        "content-type": "multipart/form-data; boundary=----x",
        "user-agent": "Mozilla/5.0 (X11; Linux x86_64)",
    }
    assert detector.scan_headers(headers) is None

    finding = detector.scan_headers({**headers, "x-forwarded-host": "<script>alert(1)</script>"})
    assert finding is not None
    assert finding.field == "headers.x-forwarded-host"


@pytest.mark.parametrize(
    "value",
    [
        "jav&#x09;ascript:alert(document.cookie)",
        "jav&#10;ascript:alert(1)",
        "java%09script:alert(1)",
        "java\tscript:alert(1)",
        "java\x00script:alert(1)",
    ],
)
def test_control_characters_inside_a_scheme_do_not_hide_it(value: str) -> None:
    assert match_family(value) is InjectionFamily.script


def test_multiline_text_is_not_flagged_after_control_removal() -> None:
    assert match_family("Line one\nLine two\tand three") is None
