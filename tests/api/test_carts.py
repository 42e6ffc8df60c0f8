"""Tests for cart API endpoints."""

from fastapi import status
from fastapi.testclient import TestClient


def add_item(client: TestClient, owner_id: str, **args) -> dict:
    response = client.post(
        "/intents",
        json={"owner_id": owner_id, "intent_name": "add_item", "args": args},
    )
    assert response.json()["ok"] is True
    return response.json()


class TestCartSummary:
    """Tests for GET /carts/{owner_id}/summary."""

    def test_no_active_cart(self, client: TestClient, owner_id: str) -> None:
        """Owners without a cart get a null summary."""
        response = client.get(f"/carts/{owner_id}/summary")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"owner_id": owner_id, "summary": None}

    def test_summary_after_add(self, client: TestClient, owner_id: str) -> None:
        """The summary reflects the active cart."""
        add_item(client, owner_id, name="Zen Hoodie", price=320000, quantity=2)
        add_item(client, owner_id, name="Gift Wrapping", type="service", price=15000)

        summary = client.get(f"/carts/{owner_id}/summary").json()["summary"]

        assert summary["total_items"] == 3
        assert summary["total_price"] == 655000
        assert [line["name"] for line in summary["items"]] == ["Zen Hoodie", "Gift Wrapping"]


class TestCartLifecycle:
    """Tests for listing, status changes and deletion."""

    def test_list_carts(self, client: TestClient, owner_id: str) -> None:
        """Carts are listed with their lines and version."""
        body = add_item(client, owner_id, name="Socks", price="3.50", quantity=2)

        response = client.get(f"/carts/{owner_id}")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total"] == 1
        cart = data["items"][0]
        assert cart["id"] == body["cart_id"]
        assert cart["status"] == "active"
        assert cart["total_price"] == 7
        assert cart["version"] >= 2

    def test_checkout_then_new_cart(self, client: TestClient, owner_id: str) -> None:
        """After checkout the next intent opens a new active cart."""
        first = add_item(client, owner_id, name="Socks", price=3)

        response = client.post(f"/carts/{first['cart_id']}/status", json={"status": "checked_out"})
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "checked_out"

        second = add_item(client, owner_id, name="Hat", price=9)
        assert second["cart_id"] != first["cart_id"]

        active = client.get(f"/carts/{owner_id}", params={"status": "active"}).json()
        assert [c["id"] for c in active["items"]] == [second["cart_id"]]

    def test_terminal_status_conflict(self, client: TestClient, owner_id: str) -> None:
        """Finished carts cannot change status again."""
        cart_id = add_item(client, owner_id, name="Socks", price=3)["cart_id"]
        client.post(f"/carts/{cart_id}/status", json={"status": "abandoned"})

        response = client.post(f"/carts/{cart_id}/status", json={"status": "checked_out"})

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error_code"] == "InvalidStateTransition"

    def test_status_of_unknown_cart(self, client: TestClient) -> None:
        response = client.post("/carts/missing/status", json={"status": "abandoned"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "CartNotFound"

    def test_delete_cart(self, client: TestClient, owner_id: str) -> None:
        """Deleting removes the cart; a second delete is 404."""
        cart_id = add_item(client, owner_id, name="Socks", price=3)["cart_id"]

        response = client.delete(f"/carts/{cart_id}")
        assert response.status_code == status.HTTP_204_NO_CONTENT

        assert client.get(f"/carts/{owner_id}/summary").json()["summary"] is None
        response = client.delete(f"/carts/{cart_id}")
        assert response.status_code == status.HTTP_404_NOT_FOUND
