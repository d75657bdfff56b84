import pytest

import wishlist as wishlists
from errors import NotFound, Rejected


def test_wishlist_created_lazily(db):
    assert wishlists.get_wishlist(db, "u1").items == []
    wishlists.get_wishlist(db, "u1")
    assert db["wishlist"].count_documents({"user_id": "u1"}) == 1


def test_add_and_duplicate(db, make_product):
    product = make_product()
    wl = wishlists.add_to_wishlist(db, "u1", product.id)
    assert wl.has_item(product.id)
    with pytest.raises(Rejected, match="already exists"):
        wishlists.add_to_wishlist(db, "u1", product.id)
    assert len(wishlists.get_wishlist(db, "u1").items) == 1


def test_add_unavailable_product(db, make_product):
    product = make_product(is_active=False)
    with pytest.raises(NotFound):
        wishlists.add_to_wishlist(db, "u1", product.id)


def test_remove_and_clear(db, make_product):
    a = make_product(name="A")
    b = make_product(name="B")
    wishlists.add_to_wishlist(db, "u1", a.id)
    wishlists.add_to_wishlist(db, "u1", b.id)

    wl = wishlists.remove_from_wishlist(db, "u1", a.id)
    assert [i.product_id for i in wl.items] == [b.id]
    # Removing something that is not there is fine.
    wishlists.remove_from_wishlist(db, "u1", a.id)

    assert wishlists.clear_wishlist(db, "u1").items == []
    assert wishlists.get_wishlist(db, "u1").items == []
