from zoneinfo import ZoneInfo

from buddy.utils.timezones import resolve_timezone, validate_timezone, zone_for


def test_iana_keys_pass_through() -> None:
    assert validate_timezone("America/New_York") == "America/New_York"
    assert validate_timezone("  Europe/Berlin ") == "Europe/Berlin"


def test_city_names_map_to_zone_keys() -> None:
    assert validate_timezone("New York") == "America/New_York"
    assert validate_timezone("lima") == "America/Lima"


def test_numeric_offsets_use_posix_etc_zones() -> None:
    assert validate_timezone("-5") == "Etc/GMT+5"
    assert validate_timezone("+3") == "Etc/GMT-3"
    assert validate_timezone("UTC+2") == "Etc/GMT-2"
    assert validate_timezone("0") == "UTC"
    assert validate_timezone("+15") is None


def test_unresolvable_values_fall_back_to_utc() -> None:
    assert validate_timezone("Mars/Olympus_Mons") is None
    assert validate_timezone("") is None
    assert validate_timezone(None) is None
    assert resolve_timezone("Mars/Olympus_Mons") == "UTC"
    assert resolve_timezone(None) == "UTC"
    assert zone_for("nonsense") == ZoneInfo("UTC")
