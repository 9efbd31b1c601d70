from datetime import datetime, timezone

from budgetvote.utils.identifiers import (
    build_session_stem,
    extract_year,
    generate_session_id,
    slugify,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_slugify_folds_swedish_letters():
    assert slugify("Upplands Väsby") == "upplands-vasby"
    assert slugify("  Åre -- Östersund ") == "are-ostersund"
    assert slugify(None) == ""


def test_year_comes_from_name_or_creation_time():
    assert extract_year("Budget 2026") == "2026"
    assert extract_year("Budget", NOW) == "2025"


def test_stem_prefers_municipality():
    assert build_session_stem("Budget 2026", "Täby", NOW) == "taby-2026"
    assert build_session_stem("Park Budget 2024", None, NOW) == "park-budget-2024"
    assert build_session_stem("", None, NOW) == "session-2025"


def test_collisions_get_numeric_suffix(db_session, make_session):
    first = make_session(now=NOW)
    second = make_session(now=NOW)

    assert first.session_id == "vallentuna-2025"
    assert second.session_id == "vallentuna-2025-1"
    assert generate_session_id(db_session, "Vallentuna Budget 2025", "Vallentuna", NOW) == (
        "vallentuna-2025-2"
    )
