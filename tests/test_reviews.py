import pytest
from bson import ObjectId

from database import Database
from errors import Conflict, NotFound
from reviews import add_review


def _product(db, product):
    return db["product"].find_one({"_id": product["_id"]})


class _BeforeUpdate:
    def __init__(self, collection, owner):
        self._collection = collection
        self._owner = owner

    def __getattr__(self, name):
        return getattr(self._collection, name)

    def update_one(self, *args, **kwargs):
        hook, self._owner.before_update = self._owner.before_update, None
        hook()
        return self._collection.update_one(*args, **kwargs)


class _InterleavedDatabase(Database):
    """Runs `before_update` once, right before the next product update."""

    def __init__(self, db, before_update):
        super().__init__(db.db)
        self.before_update = before_update

    def __getitem__(self, collection_name):
        collection = super().__getitem__(collection_name)
        if collection_name == "product" and self.before_update is not None:
            return _BeforeUpdate(collection, self)
        return collection


def test_review_updates_count_and_average(db, make_user, make_product):
    dune = make_product()
    alice, bob = make_user("alice"), make_user("bob")

    add_review(db, str(dune["_id"]), str(alice["_id"]), 5, "Great")
    add_review(db, str(dune["_id"]), str(bob["_id"]), 2, "Meh")

    stored = _product(db, dune)
    assert stored["num_reviews"] == 2
    assert stored["rating"] == pytest.approx(3.5)
    assert [r["name"] for r in stored["reviews"]] == ["alice", "bob"]
    assert stored["reviews"][0]["user"] == alice["_id"]
    assert stored["reviews"][1]["comment"] == "Meh"


def test_second_review_by_same_user_is_rejected(db, make_user, make_product):
    dune, alice = make_product(), make_user("alice")
    add_review(db, str(dune["_id"]), str(alice["_id"]), 4, "Good")
    before = _product(db, dune)

    with pytest.raises(Conflict, match="already reviewed"):
        add_review(db, str(dune["_id"]), str(alice["_id"]), 1, "Changed my mind")

    after = _product(db, dune)
    assert after["num_reviews"] == before["num_reviews"] == 1
    assert after["rating"] == before["rating"] == 4
    assert len(after["reviews"]) == 1


def test_missing_product(db, make_user):
    with pytest.raises(NotFound, match="Product"):
        add_review(db, str(ObjectId()), str(make_user()["_id"]), 3)


def test_missing_user(db, make_product):
    dune = make_product()

    with pytest.raises(NotFound, match="User"):
        add_review(db, str(dune["_id"]), str(ObjectId()), 3)

    assert _product(db, dune)["num_reviews"] == 0


def test_interleaved_reviews_keep_count_in_step(db, make_user, make_product):
    dune = make_product()
    alice, bob = make_user("alice"), make_user("bob")
    # bob's review lands between alice reading the reviews and writing hers
    racing = _InterleavedDatabase(db, lambda: add_review(db, str(dune["_id"]), str(bob["_id"]), 2, "Meh"))

    add_review(racing, str(dune["_id"]), str(alice["_id"]), 5, "Great")

    stored = _product(db, dune)
    assert [r["name"] for r in stored["reviews"]] == ["bob", "alice"]
    assert stored["num_reviews"] == len(stored["reviews"]) == 2
    assert stored["rating"] == pytest.approx(3.5)


def test_first_review_on_product_without_reviews_field(db, make_user):
    pid = db["product"].insert_one({"name": "Emma", "price": 12.5, "count_in_stock": 1}).inserted_id

    add_review(db, str(pid), str(make_user()["_id"]), 3)

    stored = db["product"].find_one({"_id": pid})
    assert stored["num_reviews"] == len(stored["reviews"]) == 1
    assert stored["rating"] == 3
