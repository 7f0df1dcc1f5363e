"""HTTP tests for /api/v1/books and /api/v1/users."""
from library_app.core.utils import utcnow

API = "/api/v1"

BOOK = {
    "isbn": "978-0-262-03384-8",
    "title": "Introduction to Algorithms",
    "author": "Cormen",
    "genre": "Computer Science",
    "quantity": 3,
    "location": {"shelf": "B4", "section": "Reference"},
}


class TestBooks:

    async def test_create_and_fetch(self, client):
        response = await client.post(f"{API}/books/", json=BOOK)
        assert response.status_code == 201
        created = response.json()["data"]
        assert created["available_quantity"] == 3
        assert created["location"] == {"shelf": "B4", "section": "Reference"}

        response = await client.get(f"{API}/books/{created['id']}")
        assert response.status_code == 200
        assert response.json()["data"]["isbn"] == BOOK["isbn"]

    async def test_duplicate_isbn(self, client):
        assert (await client.post(f"{API}/books/", json=BOOK)).status_code == 201
        response = await client.post(f"{API}/books/", json={**BOOK, "title": "Another"})
        assert response.status_code == 409
        assert response.json()["success"] is False

    async def test_missing_fields(self, client):
        response = await client.post(f"{API}/books/", json={"title": "No ISBN"})
        assert response.status_code == 400
        assert len(response.json()["errors"]) == 2

    async def test_list_search_and_pagination(self, client):
        for i, title in enumerate(["Clean Code", "Clean Architecture", "Refactoring"]):
            await client.post(f"{API}/books/", json={"isbn": f"isbn-{i}", "title": title, "author": "Someone"})

        response = await client.get(f"{API}/books/", params={"title": "clean", "limit": 1})
        body = response.json()
        assert len(body["data"]) == 1
        assert body["data"][0]["title"] == "Clean Architecture"
        assert body["meta"]["pagination"] == {"total": 2, "page": 1, "limit": 1, "pages": 2}

        response = await client.get(f"{API}/books/", params={"title": "("})
        assert response.status_code == 200
        assert response.json()["data"] == []

    async def test_genre_and_isbn_filters(self, client):
        await client.post(f"{API}/books/", json=BOOK)
        await client.post(f"{API}/books/", json={**BOOK, "isbn": "isbn-fiction", "title": "Dune", "genre": "Fiction"})
        await client.post(f"{API}/books/", json={**BOOK, "isbn": "isbn-sf", "title": "Neuromancer", "genre": "Science Fiction"})

        response = await client.get(f"{API}/books/", params={"genre": "fiction"})
        assert [b["title"] for b in response.json()["data"]] == ["Dune"]
        assert response.json()["meta"]["pagination"]["total"] == 1

        response = await client.get(f"{API}/books/", params={"isbn": BOOK["isbn"]})
        assert [b["title"] for b in response.json()["data"]] == [BOOK["title"]]

        response = await client.get(f"{API}/books/", params={"isbn": "978-0-262"})
        assert response.json()["data"] == []

    async def test_available_only(self, client, make_member):
        book = (await client.post(f"{API}/books/", json={**BOOK, "quantity": 1})).json()["data"]
        await client.post(f"{API}/books/", json={**BOOK, "isbn": "other", "title": "Spare"})
        member = await make_member(membership_start=utcnow())
        await client.post(f"{API}/borrows/", json={"user_id": str(member.id), "book_id": book["id"]})

        response = await client.get(f"{API}/books/", params={"available_only": True})
        assert [b["title"] for b in response.json()["data"]] == ["Spare"]

    async def test_quantity_change_keeps_loans_on_loan(self, client, make_member):
        book = (await client.post(f"{API}/books/", json=BOOK)).json()["data"]
        member = await make_member(membership_start=utcnow())
        await client.post(f"{API}/borrows/", json={"user_id": str(member.id), "book_id": book["id"]})

        response = await client.put(f"{API}/books/{book['id']}", json={"quantity": 5})
        assert response.status_code == 200
        updated = response.json()["data"]
        assert (updated["quantity"], updated["available_quantity"]) == (5, 4)

        response = await client.put(f"{API}/books/{book['id']}", json={"quantity": 0})
        assert response.status_code == 400

        response = await client.put(f"{API}/books/{book['id']}", json={"quantity": 1})
        assert response.status_code == 200
        assert response.json()["data"]["available_quantity"] == 0

    async def test_update_metadata_only(self, client):
        book = (await client.post(f"{API}/books/", json=BOOK)).json()["data"]
        response = await client.put(f"{API}/books/{book['id']}", json={"title": "CLRS", "location": {"shelf": "A1"}})
        assert response.status_code == 200
        updated = response.json()["data"]
        assert updated["title"] == "CLRS"
        assert updated["quantity"] == 3
        assert updated["location"] == {"shelf": "A1", "section": None}

        assert (await client.put(f"{API}/books/{book['id']}", json={})).status_code == 400

    async def test_delete_blocked_while_on_loan(self, client, make_member):
        book = (await client.post(f"{API}/books/", json=BOOK)).json()["data"]
        member = await make_member(membership_start=utcnow())
        loan = (await client.post(f"{API}/borrows/", json={"user_id": str(member.id), "book_id": book["id"]})).json()["data"]

        response = await client.delete(f"{API}/books/{book['id']}")
        assert response.status_code == 400
        assert "on loan" in response.json()["message"]

        await client.post(f"{API}/borrows/{loan['id']}/return")
        assert (await client.delete(f"{API}/books/{book['id']}")).status_code == 200
        assert (await client.get(f"{API}/books/{book['id']}")).status_code == 404


class TestUsers:

    async def test_register(self, client):
        response = await client.post(f"{API}/users/", json={"name": "Ada", "email": "Ada@Example.com", "membership_type": "student"})
        assert response.status_code == 201
        user = response.json()["data"]
        assert user["email"] == "ada@example.com"
        assert user["membership_type"] == "student"
        assert user["member_code"].startswith("LIB-U")
        assert user["is_membership_valid"] is True
        assert user["membership_days_remaining"] == 365
        assert user["open_loans"] == []

    async def test_duplicate_email(self, client):
        await client.post(f"{API}/users/", json={"name": "Ada", "email": "ada@example.com"})
        response = await client.post(f"{API}/users/", json={"name": "Ada Two", "email": "ADA@example.com"})
        assert response.status_code == 409

    async def test_invalid_email(self, client):
        response = await client.post(f"{API}/users/", json={"name": "Ada", "email": "not-an-email"})
        assert response.status_code == 400

    async def test_update_and_list(self, client):
        ada = (await client.post(f"{API}/users/", json={"name": "Ada", "email": "ada@example.com"})).json()["data"]
        await client.post(f"{API}/users/", json={"name": "Bob", "email": "bob@example.com"})

        response = await client.put(f"{API}/users/{ada['id']}", json={"phone": "555-0100", "membership_type": "premium"})
        assert response.status_code == 200
        assert response.json()["data"]["membership_type"] == "premium"

        response = await client.put(f"{API}/users/{ada['id']}", json={"email": "bob@example.com"})
        assert response.status_code == 409

        response = await client.get(f"{API}/users/", params={"search": "ada"})
        assert [u["name"] for u in response.json()["data"]] == ["Ada"]

    async def test_deactivate_then_renew(self, client):
        ada = (await client.post(f"{API}/users/", json={"name": "Ada", "email": "ada@example.com"})).json()["data"]
        response = await client.put(f"{API}/users/{ada['id']}", json={"is_active": False})
        assert response.json()["data"]["is_membership_valid"] is False

        response = await client.post(f"{API}/users/{ada['id']}/renew-membership", json={"extension_days": 30})
        assert response.status_code == 200
        renewed = response.json()["data"]
        assert renewed["is_active"] is True
        assert renewed["membership_days_remaining"] == 395

    async def test_delete_blocked_with_open_loans(self, client):
        book = (await client.post(f"{API}/books/", json=BOOK)).json()["data"]
        ada = (await client.post(f"{API}/users/", json={"name": "Ada", "email": "ada@example.com"})).json()["data"]
        loan = (await client.post(f"{API}/borrows/", json={"user_id": ada["id"], "book_id": book["id"]})).json()["data"]

        response = await client.delete(f"{API}/users/{ada['id']}")
        assert response.status_code == 400

        await client.post(f"{API}/borrows/{loan['id']}/return")
        assert (await client.delete(f"{API}/users/{ada['id']}")).status_code == 200
        assert (await client.get(f"{API}/users/{ada['id']}")).status_code == 404
