from wifi_telescope.scope import commands


def test_object_identifier_collapses_whitespace():
    assert commands.object_identifier("M 42 Nebula") == "M_42_Nebula"
    assert commands.object_identifier("  NGC   7000 \t North America ") == "NGC_7000_North_America"
    assert commands.object_identifier("") == ""


def test_observation_payload_matches_wire_contract():
    payload = commands.observation_payload(10.0, 20.0, "M 42 Nebula", exposure_seconds=30.0, gain=20.0)

    assert payload["exposureMicroSec"] == 30000000
    assert payload["gain"] == 200
    assert payload["objectId"] == "M_42_Nebula"
    assert payload["objectName"] == "M 42 Nebula"
    assert payload["ra"] == 10.0
    assert payload["de"] == 20.0
    assert payload["isJ2000"] is True
    assert payload["rot"] == 0
    assert payload["doStacking"] is True
    assert payload["histogramEnabled"] is True
    assert payload["histogramLow"] == -0.75
    assert payload["histogramMedium"] == 5
    assert payload["histogramHigh"] == 0
    assert payload["backgroundEnabled"] is True
    assert payload["backgroundPolyorder"] == 4

    for key in ("gain", "exposureMicroSec", "rot", "histogramMedium", "histogramHigh", "backgroundPolyorder"):
        assert type(payload[key]) is int, key
    for key in ("ra", "de", "histogramLow"):
        assert type(payload[key]) is float, key


def test_observation_payload_keeps_field_order():
    payload = commands.observation_payload(1.0, 2.0, "Vega", exposure_seconds=1.0, gain=1.0)
    assert list(payload) == [
        "ra",
        "de",
        "isJ2000",
        "rot",
        "objectId",
        "objectName",
        "gain",
        "exposureMicroSec",
        "doStacking",
        "histogramEnabled",
        "histogramLow",
        "histogramMedium",
        "histogramHigh",
        "backgroundEnabled",
        "backgroundPolyorder",
    ]


def test_exposure_conversion_rounds_float_noise():
    assert commands.exposure_to_microseconds(4.35) == 4350000
    assert commands.exposure_to_microseconds(0.001) == 1000
    assert commands.gain_to_units(2.3) == 23


def test_goto_and_auto_init_payload_types():
    goto = commands.goto_payload(45, 180)
    assert goto == {"ALT": 45.0, "AZ": 180.0}
    assert type(goto["ALT"]) is float

    init = commands.auto_init_payload(48, 11.5, 1700000000123)
    assert init == {"latitude": 48.0, "longitude": 11.5, "time": 1700000000123}
    assert type(init["time"]) is int
