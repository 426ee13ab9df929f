import json

import pytest

from place_intel.__main__ import main

pytestmark = pytest.mark.unit


def test_ambiguous_query_prints_choices(capsys):
    assert main(["시청역"]) == 2
    out = json.loads(capsys.readouterr().out)
    assert out["ambiguous"] == "시청역"
    assert {c["select"] for c in out["candidates"]} == {"서울특별시", "부산광역시"}


def test_unresolvable_query_exits_with_error(capsys):
    assert main(["없는 장소 999"]) == 1
    assert "error: Could not resolve '없는 장소 999'" in capsys.readouterr().err


def test_invalid_hint_rejected():
    with pytest.raises(SystemExit):
        main(["강남역", "--hint", "galaxy"])
