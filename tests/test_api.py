"""Tests for the JSON API."""

from datetime import datetime, timedelta, timezone

import db


def _create(client, headers, **fields):
    body = {"front": "el perro", "back": "dog"}
    body.update(fields)
    resp = client.post("/api/flashcards", json=body, headers=headers)
    assert resp.status_code == 201
    return resp.get_json()


def test_requires_user(client):
    assert client.get("/api/review").status_code == 401
    assert client.get("/api/review", headers={"X-User-Id": "abc"}).status_code == 401


def test_boxes_metadata(client):
    boxes = client.get("/api/boxes").get_json()["boxes"]
    assert [b["box"] for b in boxes] == [1, 2, 3, 4, 5]
    assert [b["interval_days"] for b in boxes] == [1, 3, 7, 14, 30]
    assert boxes[0]["label"] == "Box 1 (New)"


def test_create_card(client, headers):
    card = _create(client, headers, part_of_speech="noun")
    assert card["box"] == 1
    assert card["is_due"] is True
    assert card["due_label"] == "Due now"
    assert card["box_label"] == "Box 1 (New)"
    assert card["part_of_speech"] == "noun"


def test_create_validation(client, headers):
    resp = client.post("/api/flashcards", json={"front": "", "back": "x" * 256}, headers=headers)
    assert resp.status_code == 400
    errors = resp.get_json()["errors"]
    assert set(errors) == {"front", "back"}

    resp = client.post("/api/flashcards", data="not json", headers=headers)
    assert resp.status_code == 400


def test_review_queue_and_count(client, headers):
    first = _create(client, headers, front="a")
    second = _create(client, headers, front="b")
    client.post("/api/review/update", json={"flashcard_id": first["id"], "knew_it": True}, headers=headers)

    data = client.get("/api/review", headers=headers).get_json()
    assert data["count"] == 1
    assert [c["id"] for c in data["flashcards"]] == [second["id"]]
    assert client.get("/api/review/count", headers=headers).get_json() == {"count": 1}


def test_review_queue_limit_validation(client, headers):
    assert client.get("/api/review?limit=0", headers=headers).status_code == 400
    assert client.get("/api/review?limit=101", headers=headers).status_code == 400
    assert client.get("/api/review?limit=x", headers=headers).status_code == 400


def test_review_update_correct(client, headers):
    card = _create(client, headers)
    resp = client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": True}, headers=headers)
    assert resp.status_code == 200
    data = resp.get_json()
    assert data["box"] == 2
    assert data["due_label"] == "Tomorrow"
    due = datetime.fromisoformat(data["due_at"])
    assert timedelta(hours=23) < due - datetime.now(timezone.utc) <= timedelta(days=1)


def test_review_update_incorrect(client, headers):
    card = _create(client, headers)
    client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": True}, headers=headers)
    resp = client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": False}, headers=headers)
    assert resp.get_json()["box"] == 1
    assert resp.get_json()["due_label"] == "Due now"


def test_review_update_validation(client, headers):
    resp = client.post("/api/review/update", json={"flashcard_id": "1", "knew_it": "yes"}, headers=headers)
    assert resp.status_code == 400
    resp = client.post("/api/review/update", json={"flashcard_id": True, "knew_it": True}, headers=headers)
    assert resp.status_code == 400


def test_review_update_not_found_for_other_user(client, headers):
    card = _create(client, headers)
    resp = client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": True},
                       headers={"X-User-Id": "2"})
    assert resp.status_code == 404
    assert db.get_flashcard(1, card["id"])["box"] == 1


def test_review_update_corrupt_box_is_generic_error(client, headers, caplog):
    card = _create(client, headers)
    with db.connect() as con:
        con.execute("PRAGMA ignore_check_constraints = ON")
        con.execute("UPDATE flashcards SET box=0 WHERE id=?", (card["id"],))
    resp = client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": True}, headers=headers)
    assert resp.status_code == 500
    assert resp.get_json() == {"message": "Couldn't update your review"}
    errors = [r for r in caplog.records if r.levelname == "ERROR"]
    assert errors and str(card["id"]) in errors[0].getMessage()


def test_review_update_conflict(client, headers, monkeypatch, caplog):
    card = _create(client, headers)

    def conflict(*args):
        raise db.ReviewConflict(card["id"])

    monkeypatch.setattr(db, "review_flashcard", conflict)
    resp = client.post("/api/review/update", json={"flashcard_id": card["id"], "knew_it": True}, headers=headers)
    assert resp.status_code == 409
    assert resp.get_json() == {"message": "Couldn't update your review"}
    assert f"card {card['id']}" in caplog.text


def test_bulk_import(client, headers):
    items = [{"front": f"w{i}", "back": f"t{i}"} for i in range(3)]
    resp = client.post("/api/flashcards/bulk", json={"flashcards": items}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()["count"] == 3
    listed = client.get("/api/flashcards?sort_by=front&order=asc", headers=headers).get_json()
    assert [c["front"] for c in listed["items"]] == ["w0", "w1", "w2"]
    assert all(c["ai_generated"] for c in listed["items"])


def test_bulk_import_limits(client, headers):
    assert client.post("/api/flashcards/bulk", json={"flashcards": []}, headers=headers).status_code == 400
    items = [{"front": "a", "back": "b"}] * 21
    assert client.post("/api/flashcards/bulk", json={"flashcards": items}, headers=headers).status_code == 400
    resp = client.post("/api/flashcards/bulk", json={"flashcards": [{"front": "a"}]}, headers=headers)
    assert resp.status_code == 400
    assert "back" in resp.get_json()["errors"]["flashcards"]["0"]


def test_list_query_validation(client, headers):
    assert client.get("/api/flashcards?sort_by=back", headers=headers).status_code == 400
    assert client.get("/api/flashcards?page_size=500", headers=headers).status_code == 400


def test_get_edit_delete(client, headers):
    card = _create(client, headers)
    url = f"/api/flashcards/{card['id']}"
    assert client.get(url, headers=headers).get_json()["front"] == "el perro"
    assert client.get(url, headers={"X-User-Id": "2"}).status_code == 404

    resp = client.patch(url, json={"back": "hound"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["back"] == "hound"
    assert client.patch(url, json={"front": ""}, headers=headers).status_code == 400

    assert client.delete(url, headers=headers).status_code == 204
    assert client.delete(url, headers=headers).status_code == 404


def test_ai_generated_must_be_boolean(client, headers):
    resp = client.post("/api/flashcards", json={"front": "a", "back": "b", "ai_generated": "false"},
                       headers=headers)
    assert resp.status_code == 400
    assert "ai_generated" in resp.get_json()["errors"]
    assert _create(client, headers, ai_generated=False)["ai_generated"] is False
    assert _create(client, headers, ai_generated=True)["ai_generated"] is True


def test_blank_text_rejected_and_text_trimmed(client, headers):
    resp = client.post("/api/flashcards", json={"front": "   ", "back": "b"}, headers=headers)
    assert resp.status_code == 400
    assert "front" in resp.get_json()["errors"]
    card = _create(client, headers, front="  la casa ", part_of_speech="")
    assert card["front"] == "la casa"
    assert card["part_of_speech"] is None


def test_non_ascii_user_id_is_unauthorized(client):
    assert client.get("/api/review", headers={"X-User-Id": "²"}).status_code == 401
    assert client.get("/api/review", headers={"X-User-Id": str(2**70)}).status_code == 401


def test_oversized_ids(client, headers):
    resp = client.post("/api/review/update", json={"flashcard_id": 2**70, "knew_it": True}, headers=headers)
    assert resp.status_code == 400
    assert "flashcard_id" in resp.get_json()["errors"]
    assert client.get(f"/api/flashcards/{2**70}", headers=headers).status_code == 404
    assert client.delete(f"/api/flashcards/{2**70}", headers=headers).status_code == 404


def test_list_total_pages(client, headers):
    for i in range(5):
        _create(client, headers, front=f"w{i}")
    data = client.get("/api/flashcards?page_size=2", headers=headers).get_json()
    assert (data["total"], data["total_pages"]) == (5, 3)
    assert len(data["items"]) == 2
    empty = client.get("/api/flashcards", headers={"X-User-Id": "9"}).get_json()
    assert (empty["total"], empty["total_pages"]) == (0, 0)


def test_profile_timezone(client, headers):
    assert client.get("/api/profile", headers=headers).get_json()["timezone"] == db.get_user_tz(1)
    resp = client.patch("/api/profile", json={"timezone": "Asia/Tokyo"}, headers=headers)
    assert resp.status_code == 200
    assert client.get("/api/profile", headers=headers).get_json()["timezone"] == "Asia/Tokyo"
    assert db.get_user_tz(1) == "Asia/Tokyo"

    resp = client.patch("/api/profile", json={"timezone": "Mars/Olympus"}, headers=headers)
    assert resp.status_code == 400
    assert "timezone" in resp.get_json()["errors"]
