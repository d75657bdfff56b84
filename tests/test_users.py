import pytest
from fastapi import HTTPException

import auth
import users
from errors import NotFound


@pytest.fixture
def accounts(db):
    asha = auth.register_user(db, "Asha Rao", "asha@shop.io", "secret123")
    ravi = auth.register_user(db, "Ravi Kumar", "ravi@shop.io", "secret123")
    boss = auth.register_user(db, "Store Admin", "boss@shop.io", "secret123", is_admin=True)
    return asha, ravi, boss


def test_list_users_by_role(db, accounts):
    items, pagination = users.list_users(db)
    assert pagination.total == 3

    items, _ = users.list_users(db, role="admin")
    assert [u["email"] for u in items] == ["boss@shop.io"]

    items, _ = users.list_users(db, role="user")
    assert sorted(u["email"] for u in items) == ["asha@shop.io", "ravi@shop.io"]


def test_list_users_search_matches_name_or_email(db, accounts):
    items, _ = users.list_users(db, search="kumar")
    assert [u["name"] for u in items] == ["Ravi Kumar"]
    items, _ = users.list_users(db, search="ASHA@")
    assert [u["name"] for u in items] == ["Asha Rao"]
    items, _ = users.list_users(db, search=".*")
    assert items == []


def test_deactivated_user_cannot_sign_in(db, accounts):
    asha, _, _ = accounts
    updated = users.set_user_status(db, str(asha["_id"]), False)
    assert updated["is_active"] is False

    items, _ = users.list_users(db, is_active=False)
    assert [u["email"] for u in items] == ["asha@shop.io"]

    with pytest.raises(HTTPException) as exc:
        auth.authenticate(db, "asha@shop.io", "secret123")
    assert exc.value.status_code == 401

    users.set_user_status(db, str(asha["_id"]), True)
    assert auth.authenticate(db, "asha@shop.io", "secret123")["email"] == "asha@shop.io"


def test_set_status_of_unknown_user(db):
    with pytest.raises(NotFound, match="User not found"):
        users.set_user_status(db, "5f0000000000000000000000", False)
    with pytest.raises(NotFound):
        users.set_user_status(db, "garbage", False)
