import pytest

from rfidvault.database import (
    LOG_CAPACITY,
    MAX_ACTION_LENGTH,
    MAX_NAME_LENGTH,
    MAX_UID_LENGTH,
    AccessLevel,
    CardDatabase,
    CardNotFoundError,
    DatabaseError,
    DuplicateCardError,
    KeyValueStore,
)


@pytest.fixture
def db():
    return CardDatabase(KeyValueStore(None))


@pytest.mark.parametrize(
    "level, value",
    [(AccessLevel.USER, 1), (AccessLevel.ADMIN, 2), (AccessLevel.MASTER, 3)],
)
def test_access_level_values(db, level, value):
    db.add_card("AA", "Alice", level)
    stored = db.get_card("AA")
    assert stored.access_level == value
    assert AccessLevel(stored.access_level) is level


def test_store_get_set_erase():
    store = KeyValueStore(None)
    assert store.get("missing", 7) == 7
    store.set("a", 5)
    assert store.get("a") == 5
    store.erase("a")
    assert store.get("a") is None
    with pytest.raises(KeyError):
        store.erase("a")


def test_store_persists_on_commit(tmp_path):
    path = tmp_path / "nvs.json"
    store = KeyValueStore(path)
    store.set("card_count", 3)
    store.commit()
    assert KeyValueStore(path).get("card_count") == 3


def test_store_uncommitted_not_persisted(tmp_path):
    path = tmp_path / "nvs.json"
    store = KeyValueStore(path)
    store.set("x", 1)
    assert KeyValueStore(path).get("x") is None


def test_add_and_get_card(db):
    added = db.add_card("AA:BB:CC:DD", "Alice", AccessLevel.ADMIN)
    got = db.get_card("AA:BB:CC:DD")
    assert got == added
    assert got.name == "Alice"
    assert got.access_level == AccessLevel.ADMIN
    assert got.access_count == 0
    assert got.first_seen == got.last_seen
    assert got.id == 1


def test_ids_follow_insertion(db):
    first = db.add_card("01", "a", 1)
    second = db.add_card("02", "b", 1)
    assert second.id == first.id + 1


def test_duplicate_card_rejected(db):
    db.add_card("AA", "Alice", 1)
    with pytest.raises(DuplicateCardError):
        db.add_card("AA", "Other", 2)
    assert db.get_stats()[0] == 1


def test_get_missing_card(db):
    with pytest.raises(CardNotFoundError):
        db.get_card("nope")
    db.add_card("AA", "Alice", 1)
    with pytest.raises(CardNotFoundError):
        db.get_card("BB")


def test_none_arguments_rejected(db):
    with pytest.raises(ValueError):
        db.add_card(None, "x", 1)
    with pytest.raises(ValueError):
        db.add_card("AA", None, 1)
    with pytest.raises(ValueError):
        db.add_access_log("AA", None)


def test_fields_are_truncated(db):
    card = db.add_card("U" * 100, "N" * 100, 1)
    assert len(card.uid) == MAX_UID_LENGTH - 1
    assert len(card.name) == MAX_NAME_LENGTH - 1
    log = db.add_access_log("AA", "X" * 40)
    assert len(log.action) == MAX_ACTION_LENGTH - 1


def test_access_level_stored_as_byte(db):
    card = db.add_card("AA", "Alice", 0x1FF)
    assert card.access_level == 0xFF


def test_update_card_access(db):
    db.add_card("AA", "Alice", 1)
    db.update_card_access("AA")
    updated = db.update_card_access("AA")
    assert updated.access_count == 2
    stored = db.get_card("AA")
    assert stored.access_count == 2
    assert stored.last_seen >= stored.first_seen


def test_update_missing_card(db):
    with pytest.raises(CardNotFoundError):
        db.update_card_access("AA")


def test_get_all_cards_in_order(db):
    uids = ["01", "02", "03"]
    for uid in uids:
        db.add_card(uid, f"card {uid}", 1)
    assert [c.uid for c in db.get_all_cards()] == uids


def test_get_all_cards_empty(db):
    assert db.get_all_cards() == []


def test_delete_card(db):
    db.add_card("01", "a", 1)
    db.add_card("02", "b", 1)
    db.delete_card("01")
    assert [c.uid for c in db.get_all_cards()] == ["02"]
    with pytest.raises(CardNotFoundError):
        db.get_card("01")
    assert db.get_stats()[0] == 2


def test_delete_missing_card_is_not_error(db):
    db.add_card("01", "a", 1)
    db.delete_card("zz")
    assert [c.uid for c in db.get_all_cards()] == ["01"]


def test_readd_after_delete(db):
    db.add_card("01", "a", 1)
    db.delete_card("01")
    card = db.add_card("01", "again", 1)
    assert db.get_card("01") == card


def test_logs_roundtrip(db):
    db.add_access_log("AA", "CARD_ADDED")
    db.add_access_log("AA", "ACCESS_GRANTED")
    logs = db.get_access_logs()
    assert [(log.uid, log.action) for log in logs] == [
        ("AA", "CARD_ADDED"),
        ("AA", "ACCESS_GRANTED"),
    ]


def test_logs_empty(db):
    assert db.get_access_logs(10) == []


def test_logs_limit(db):
    for i in range(5):
        db.add_access_log(f"U{i}", "ACCESS_GRANTED")
    logs = db.get_access_logs(2)
    assert [log.uid for log in logs] == ["U0", "U1"]


def test_logs_circular_buffer(db):
    total = LOG_CAPACITY + 5
    for i in range(total):
        db.add_access_log(f"U{i}", "ACCESS_GRANTED")
    logs = db.get_access_logs()
    assert len(logs) == LOG_CAPACITY
    assert logs[0].uid == f"U{LOG_CAPACITY}"
    assert logs[-1].uid == f"U{LOG_CAPACITY - 1}"
    assert db.get_stats()[1] == total


def test_stats(db):
    assert db.get_stats() == (0, 0)
    db.add_card("AA", "Alice", 1)
    db.add_access_log("AA", "CARD_ADDED")
    db.add_access_log("AA", "ACCESS_GRANTED")
    assert db.get_stats() == (1, 2)


def test_database_persists(tmp_path):
    path = tmp_path / "rfid.json"
    first = CardDatabase(KeyValueStore(path))
    first.add_card("AA", "Alice", 3)
    first.add_access_log("AA", "CARD_ADDED")
    first.close()
    second = CardDatabase(KeyValueStore(path))
    assert second.get_card("AA").access_level == AccessLevel.MASTER
    assert [log.action for log in second.get_access_logs()] == ["CARD_ADDED"]


def test_closed_database_raises(db):
    db.close()
    with pytest.raises(DatabaseError):
        db.get_stats()
    with pytest.raises(DatabaseError):
        db.add_card("AA", "Alice", 1)