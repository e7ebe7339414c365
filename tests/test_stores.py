import pytest
from pymongo.errors import AutoReconnect, NetworkTimeout, ServerSelectionTimeoutError

from duochat.errors import NotFound, Unavailable
from duochat.stores import DocumentStore, UserStore, pair_key


def test_user_sets_are_stored_sorted_without_duplicates(users, db):
    users.create_user("alice", "hash")
    users.update_user("alice", lambda u: u.contacts.update(["zed", "bob", "bob"]))
    users.update_user("alice", lambda u: u.contacts.add("bob"))

    doc = db.users.find_one({"_id": "alice"})
    assert doc["contacts"] == ["bob", "zed"]
    assert doc["_v"] == 3
    assert users.get_user("alice").contacts == {"bob", "zed"}


def test_create_user_twice_returns_false(users):
    assert users.create_user("alice", "hash")
    assert not users.create_user("alice", "other")


def test_update_missing_user_raises_not_found(users):
    with pytest.raises(NotFound):
        users.update_user("ghost", lambda u: u.contacts.add("x"))


def test_update_with_create_inserts_empty_profile(users):
    user = users.update_user("ghost", lambda u: u.contactRequests.add("alice"), create=True)
    assert user.contactRequests == {"alice"}
    assert user.is_placeholder


def test_transactional_update_retries_after_concurrent_write(db):
    store = DocumentStore(db.items, "Item")
    store.set("k", {"a": 0, "b": 0})
    calls = []

    def bump_a(doc):
        calls.append(doc["_v"])
        if len(calls) == 1:
            # a concurrent writer lands between our read and our write
            store.update("k", {"b": 1})
        doc["a"] += 1
        return doc

    result = store.transactional_update("k", bump_a)

    assert len(calls) == 2
    assert result["a"] == 1 and result["b"] == 1
    assert db.items.find_one({"_id": "k"})["_v"] == 3


def test_transactional_update_gives_up_when_always_conflicting(db):
    store = DocumentStore(db.items, "Item", update_retries=3)
    store.set("k", {"n": 0})

    def always_conflict(doc):
        store.update("k", {"n": doc["n"] + 100})
        return doc

    with pytest.raises(Unavailable):
        store.transactional_update("k", always_conflict)


def test_transactional_update_handles_documents_without_version(db):
    db.items.insert_one({"_id": "legacy", "n": 1})
    store = DocumentStore(db.items, "Item")

    result = store.transactional_update("legacy", lambda d: {**d, "n": d["n"] + 1})

    assert result["n"] == 2
    assert db.items.find_one({"_id": "legacy"})["_v"] == 1


class FlakyCollection:
    name = "flaky"

    def __init__(self, failures, error=AutoReconnect("connection reset")):
        self.failures = failures
        self.error = error
        self.calls = 0

    def find_one(self, query):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return {"_id": query["_id"]}


def test_reads_are_retried_on_transient_errors():
    coll = FlakyCollection(failures=2)
    store = DocumentStore(coll, "Item", read_retries=2)
    assert store.get("x") == {"_id": "x"}
    assert coll.calls == 3


def test_reads_give_up_after_retry_budget():
    store = DocumentStore(FlakyCollection(failures=5), "Item", read_retries=1)
    with pytest.raises(AutoReconnect):
        store.get("x")


@pytest.mark.parametrize("error", [NetworkTimeout("timed out"), ServerSelectionTimeoutError("no primary")])
def test_read_timeouts_are_not_retried(error):
    coll = FlakyCollection(failures=1, error=error)
    store = DocumentStore(coll, "Item", read_retries=2)
    with pytest.raises(type(error)):
        store.get("x")
    assert coll.calls == 1


def test_conversation_pair_is_unique(conversations):
    first = conversations.create("alice", "bob")
    assert first is not None
    assert first.pairKey == pair_key("bob", "alice") == "alice:bob"
    assert conversations.create("bob", "alice") is None
    assert conversations.find_by_pair("bob", "alice").id == first.id
    assert conversations.find_by_pair("alice", "carol") is None


def test_list_for_user_only_returns_own_conversations(conversations):
    conversations.create("alice", "bob")
    conversations.create("alice", "carol")
    conversations.create("bob", "carol")

    ids = sorted(sorted(c.participants) for c in conversations.list_for_user("alice"))
    assert ids == [["alice", "bob"], ["alice", "carol"]]


def test_set_typing_on_missing_conversation(conversations):
    assert not conversations.set_typing("nope", "alice", True)


def test_update_with_create_keeps_existing_password(users):
    users.create_user("alice", "hash")
    alice = users.update_user("alice", lambda u: u.contacts.add("bob"), create=True)
    assert alice.hashedPassword == "hash"
    assert alice.contacts == {"bob"}


def test_claim_placeholder_only_once(users: UserStore):
    users.update_user("bob", lambda u: None, create=True)
    assert users.claim_placeholder("bob", "h1")
    assert not users.claim_placeholder("bob", "h2")
    assert users.get_user("bob").hashedPassword == "h1"
