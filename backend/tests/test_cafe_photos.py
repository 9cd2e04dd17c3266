"""Tests for cafe read and direct (moderator) photo management endpoints."""
import uuid

import pytest

from cafe_directory.errors import AlreadyExists
from cafe_directory.models.cafe import CafePhoto, PhotoKind
from cafe_directory.models.user import UserRole
from cafe_directory.services import catalog_repository
from tests.conftest import auth, create_test_cafe, create_test_user, image_bytes


def _add_photo(db, store, cafe_id, position, is_cover=False, kind=PhotoKind.cafe) -> CafePhoto:
    """Insert a photo row directly, with its object in the store."""
    key = f"cafes/{cafe_id}/{kind.value}/17000000{position:02d}_p.jpg"
    store.put(key, "image/jpeg", b"jpeg")
    photo = CafePhoto(
        id=str(uuid.uuid4()),
        cafe_id=cafe_id,
        kind=kind,
        object_key=key,
        mime_type="image/jpeg",
        size_bytes=4,
        position=position,
        is_cover=is_cover,
    )
    db.add(photo)
    db.commit()
    db.refresh(photo)
    return photo


def _listing(client, cafe_id, kind="cafe"):
    resp = client.get(f"/api/cafes/{cafe_id}/photos?kind={kind}")
    assert resp.status_code == 200, resp.text
    return resp.json()["photos"]


class TestCafeRead:
    def test_get_cafe_with_cover(self, client, db, store):
        cafe = create_test_cafe(db, description="Quiet")
        _add_photo(db, store, cafe.id, 1)
        cover = _add_photo(db, store, cafe.id, 2, is_cover=True)

        resp = client.get(f"/api/cafes/{cafe.id}")

        assert resp.status_code == 200
        data = resp.json()
        assert data["description"] == "Quiet"
        assert data["latitude"] == 59.93
        assert data["cover_photo_url"] == f"http://storage.test/{cover.object_key}"

    def test_unknown_cafe(self, client):
        resp = client.get(f"/api/cafes/{uuid.uuid4()}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "not_found"

    def test_listing_cover_first_then_position(self, client, db, store):
        cafe = create_test_cafe(db)
        first = _add_photo(db, store, cafe.id, 1)
        cover = _add_photo(db, store, cafe.id, 2, is_cover=True)
        third = _add_photo(db, store, cafe.id, 3)
        menu = _add_photo(db, store, cafe.id, 1, kind=PhotoKind.menu)

        assert [p["id"] for p in _listing(client, cafe.id)] == [cover.id, first.id, third.id]
        assert [p["id"] for p in _listing(client, cafe.id, "menu")] == [menu.id]

    def test_listing_bad_kind(self, client, db):
        cafe = create_test_cafe(db)
        assert client.get(f"/api/cafes/{cafe.id}/photos?kind=poster").status_code == 400


class TestDirectUpload:
    def test_requires_moderator(self, client, db):
        user = create_test_user(db)
        cafe = create_test_cafe(db)
        resp = client.post(
            f"/api/cafes/{cafe.id}/photos/presign",
            json={"content_type": "image/jpeg", "size_bytes": 10},
            headers=auth(user),
        )
        assert resp.status_code == 403

    def test_presign_key_layout(self, client, db):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        resp = client.post(
            f"/api/cafes/{cafe.id}/photos/presign",
            json={"content_type": "image/webp", "size_bytes": 10, "kind": "menu"},
            headers=auth(mod),
        )
        assert resp.status_code == 200, resp.text
        key = resp.json()["object_key"]
        assert key.startswith(f"cafes/{cafe.id}/menu/")
        assert key.endswith(".webp")

    def test_confirm_optimizes_and_attaches(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        key = f"cafes/{cafe.id}/cafe/1700000000_big.jpg"
        store.put(key, "image/jpeg", image_bytes(2500, 1000, quality=95))

        resp = client.post(f"/api/cafes/{cafe.id}/photos/confirm", json={"object_key": key}, headers=auth(mod))

        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["rewritten"] is True
        assert data["generated_variants"] == 4
        assert data["photo"]["is_cover"] is True
        assert data["photo"]["position"] == 1
        assert f"/cafes/{cafe.id}/cafe/optimized/" in data["photo"]["url"]
        row = db.query(CafePhoto).filter(CafePhoto.cafe_id == cafe.id).one()
        assert row.object_key.startswith(f"cafes/{cafe.id}/cafe/optimized/")
        assert row.uploaded_by == mod.id
        assert key not in store.keys()

    def test_confirm_duplicate_already_exists(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        key = f"cafes/{cafe.id}/cafe/1700000000_a.avif"
        store.put(key, "image/avif", b"fake-avif-content")

        first = client.post(f"/api/cafes/{cafe.id}/photos/confirm", json={"object_key": key}, headers=auth(mod))
        second = client.post(f"/api/cafes/{cafe.id}/photos/confirm", json={"object_key": key}, headers=auth(mod))

        assert first.status_code == 200, first.text
        assert first.json()["rewritten"] is False
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "already_exists"

    def test_confirm_foreign_key_rejected(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        key = f"cafes/{uuid.uuid4()}/cafe/1_a.jpg"
        store.put(key, "image/jpeg", image_bytes())
        resp = client.post(f"/api/cafes/{cafe.id}/photos/confirm", json={"object_key": key}, headers=auth(mod))
        assert resp.status_code == 400

    def test_confirm_missing_object(self, client, db):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        resp = client.post(
            f"/api/cafes/{cafe.id}/photos/confirm",
            json={"object_key": f"cafes/{cafe.id}/cafe/1_missing.jpg"},
            headers=auth(mod),
        )
        assert resp.status_code == 400

    def test_confirm_cover_replaces_previous(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        old_cover = _add_photo(db, store, cafe.id, 1, is_cover=True)
        key = f"cafes/{cafe.id}/cafe/1700000099_b.avif"
        store.put(key, "image/avif", b"fake-avif-content")

        resp = client.post(
            f"/api/cafes/{cafe.id}/photos/confirm", json={"object_key": key, "is_cover": True}, headers=auth(mod)
        )

        assert resp.status_code == 200, resp.text
        photos = _listing(client, cafe.id)
        assert [p["is_cover"] for p in photos] == [True, False]
        assert photos[1]["id"] == old_cover.id
        assert photos[0]["position"] == 2


class TestCuration:
    def test_set_cover(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        _add_photo(db, store, cafe.id, 1, is_cover=True)
        second = _add_photo(db, store, cafe.id, 2)

        resp = client.post(f"/api/cafes/{cafe.id}/photos/{second.id}/cover", headers=auth(mod))

        assert resp.status_code == 200, resp.text
        assert resp.json()["is_cover"] is True
        covers = [p["id"] for p in _listing(client, cafe.id) if p["is_cover"]]
        assert covers == [second.id]

    def test_menu_photo_cannot_be_cover(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        menu = _add_photo(db, store, cafe.id, 1, kind=PhotoKind.menu)
        resp = client.post(f"/api/cafes/{cafe.id}/photos/{menu.id}/cover?kind=menu", headers=auth(mod))
        assert resp.status_code == 400

    def test_reorder(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        a = _add_photo(db, store, cafe.id, 1)
        b = _add_photo(db, store, cafe.id, 2)
        c = _add_photo(db, store, cafe.id, 3)

        resp = client.put(
            f"/api/cafes/{cafe.id}/photos/order", json={"photo_ids": [c.id, a.id, b.id]}, headers=auth(mod)
        )

        assert resp.status_code == 200, resp.text
        photos = resp.json()["photos"]
        assert [(p["id"], p["position"]) for p in photos] == [(c.id, 1), (a.id, 2), (b.id, 3)]
        assert photos[0]["is_cover"] is True

    def test_reorder_requires_permutation(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        a = _add_photo(db, store, cafe.id, 1)
        _add_photo(db, store, cafe.id, 2)
        resp = client.put(f"/api/cafes/{cafe.id}/photos/order", json={"photo_ids": [a.id]}, headers=auth(mod))
        assert resp.status_code == 400

    def test_delete_cover_promotes_next(self, client, db, store):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        cover = _add_photo(db, store, cafe.id, 1, is_cover=True)
        b = _add_photo(db, store, cafe.id, 2)
        c = _add_photo(db, store, cafe.id, 3)

        resp = client.delete(f"/api/cafes/{cafe.id}/photos/{cover.id}", headers=auth(mod))

        assert resp.status_code == 200, resp.text
        photos = _listing(client, cafe.id)
        assert [(p["id"], p["position"], p["is_cover"]) for p in photos] == [(b.id, 1, True), (c.id, 2, False)]
        assert cover.object_key not in store.keys()

    def test_delete_unknown_photo(self, client, db):
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        resp = client.delete(f"/api/cafes/{cafe.id}/photos/{uuid.uuid4()}", headers=auth(mod))
        assert resp.status_code == 404


class TestCoverInsertRace:
    def test_duplicate_insert_keeps_existing_cover(self, db, session_factory, store, monkeypatch):
        cafe = create_test_cafe(db)
        cover = _add_photo(db, store, cafe.id, 1, is_cover=True)
        monkeypatch.setattr(catalog_repository, "photo_exists", lambda *args: False)

        session = session_factory()
        try:
            with pytest.raises(AlreadyExists):
                catalog_repository.insert_cafe_photo(
                    session, cafe.id, cover.object_key, "image/jpeg", 4, "cafe", 2, True
                )
            session.commit()
        finally:
            session.close()

        db.expire_all()
        assert db.get(CafePhoto, cover.id).is_cover is True
