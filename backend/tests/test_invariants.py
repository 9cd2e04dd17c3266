"""End-to-end scenarios and catalog-wide invariants of the moderation and photo pipeline.

Covers:
- Cafe create → approve → conflict on second approval
- Description length limit (code points, not bytes)
- Foreign pending prefix rejection
- Decision bookkeeping: pending ⇔ no decided_at ⇔ no moderator
- At most one cover per cafe; only allowed mime types stored
- The schema itself rejects rows that break the bookkeeping, kind and mime rules
- Optimizer output never exceeds 2048 px on the long side
"""
import io
import uuid

import pytest
from PIL import Image
from sqlalchemy.exc import IntegrityError

from cafe_directory.media import ALLOWED_MIME_TYPES
from cafe_directory.models.cafe import Cafe, CafePhoto, PhotoKind
from cafe_directory.models.submission import ActionType, EntityType, ModerationSubmission, SubmissionStatus
from cafe_directory.models.user import UserRole
from cafe_directory.services.photo_optimizer import PhotoOptimizer, variant_object_key
from tests.conftest import auth, create_test_cafe, create_test_user, image_bytes, stage_photo


class TestScenarios:
    def test_cafe_create_approved_then_conflict(self, client, db, store):
        author = create_test_user(db, name="U")
        mod = create_test_user(db, name="Mod", role=UserRole.moderator)
        key = stage_photo(store, author, name="1700000000_a.jpg")

        sub = client.post("/api/submissions/cafes", json={
            "name": "Zёrna",
            "address": "Rubinshteyna 9/3A",
            "latitude": 59.930449,
            "longitude": 30.344452,
            "amenities": ["WiFi", "wifi", "Power"],
            "photo_object_keys": [key],
        }, headers=auth(author))
        assert sub.status_code == 200, sub.text
        sub_id = sub.json()["id"]

        first = client.post(f"/api/moderation/submissions/{sub_id}/approve", headers=auth(mod))
        second = client.post(f"/api/moderation/submissions/{sub_id}/approve", headers=auth(mod))

        assert first.status_code == 200, first.text
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "conflict"
        cafe = db.query(Cafe).one()
        assert cafe.name == "Zёrna"
        assert cafe.amenities == ["wifi", "power"]
        photos = db.query(CafePhoto).filter(CafePhoto.cafe_id == cafe.id).all()
        assert [(p.is_cover, p.position, p.kind, p.object_key) for p in photos] == [
            (True, 1, PhotoKind.cafe, key)
        ]

        detail = client.get(f"/api/cafes/{cafe.id}").json()
        assert detail["cover_photo_url"] == f"http://storage.test/{key}"

    def test_description_too_long(self, client, db):
        author = create_test_user(db)
        cafe = create_test_cafe(db)
        resp = client.post(
            f"/api/cafes/{cafe.id}/submissions/description",
            json={"description": "é" * 2001},
            headers=auth(author),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["details"] == {"max_chars": 2000}
        assert db.query(ModerationSubmission).count() == 0

    def test_foreign_pending_prefix(self, client, db, store):
        author = create_test_user(db, name="U")
        other = create_test_user(db, name="V")
        cafe = create_test_cafe(db)
        key = stage_photo(store, other, name="x.jpg")

        for path, body in (
            ("/api/submissions/cafes", {
                "name": "C", "address": "A", "latitude": 0, "longitude": 0, "photo_object_keys": [key],
            }),
            (f"/api/cafes/{cafe.id}/submissions/photos", {"object_keys": [key]}),
        ):
            resp = client.post(path, json=body, headers=auth(author))
            assert resp.status_code == 400
            assert resp.json()["error"]["message"] == "invalid object_key"
        assert db.query(ModerationSubmission).count() == 0


class TestInvariants:
    def test_decision_bookkeeping(self, client, db, store):
        author = create_test_user(db)
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        ids = []
        for text in ("a", "b", "c"):
            resp = client.post(
                f"/api/cafes/{cafe.id}/submissions/description", json={"description": text}, headers=auth(author)
            )
            ids.append(resp.json()["id"])
        client.post(f"/api/moderation/submissions/{ids[0]}/approve", headers=auth(mod))
        client.post(f"/api/moderation/submissions/{ids[1]}/reject", json={"comment": "dup"}, headers=auth(mod))

        rows = db.query(ModerationSubmission).all()
        assert len(rows) == 3
        for row in rows:
            pending = row.status == SubmissionStatus.pending
            assert pending == (row.decided_at is None) == (row.moderator_id is None)

    def test_single_cover_and_allowed_mimes(self, client, db, store):
        author = create_test_user(db)
        mod = create_test_user(db, role=UserRole.moderator)
        cafe = create_test_cafe(db)
        batches = [
            [stage_photo(store, author, name="1_a.jpg"), stage_photo(store, author, name="2_b.jpg")],
            [stage_photo(store, author, name="3_c.png", data=image_bytes(fmt="PNG"), content_type="image/png")],
            [stage_photo(store, author, name="4_d.webp", data=image_bytes(fmt="WEBP"), content_type="image/webp")],
        ]
        for keys in batches:
            sub = client.post(
                f"/api/cafes/{cafe.id}/submissions/photos", json={"object_keys": keys}, headers=auth(author)
            ).json()
            client.post(f"/api/moderation/submissions/{sub['id']}/approve", headers=auth(mod))
        photos = db.query(CafePhoto).filter(CafePhoto.cafe_id == cafe.id).all()
        second = next(p for p in photos if p.position == 2)
        client.post(f"/api/cafes/{cafe.id}/photos/{second.id}/cover", headers=auth(mod))

        db.expire_all()
        photos = db.query(CafePhoto).filter(CafePhoto.cafe_id == cafe.id).all()
        assert len(photos) == 4
        assert sorted(p.position for p in photos) == [1, 2, 3, 4]
        assert sum(p.is_cover for p in photos) == 1
        assert all(p.mime_type in ALLOWED_MIME_TYPES for p in photos)

    def test_schema_rejects_undecided_non_pending_submission(self, db):
        author = create_test_user(db)
        db.add(ModerationSubmission(
            id=str(uuid.uuid4()),
            author_user_id=author.id,
            entity_type=EntityType.cafe_description,
            action_type=ActionType.update,
            payload={"description": "x"},
            status=SubmissionStatus.approved,
        ))
        with pytest.raises(IntegrityError):
            db.commit()
        db.rollback()
        assert db.query(ModerationSubmission).count() == 0

    @pytest.mark.parametrize("column, value", [("mime_type", "image/gif"), ("kind", "poster")])
    def test_schema_rejects_bad_photo_rows(self, db, column, value):
        cafe = create_test_cafe(db)
        photo = CafePhoto(
            id=str(uuid.uuid4()),
            cafe_id=cafe.id,
            kind=PhotoKind.cafe,
            object_key=f"cafes/{cafe.id}/cafe/1_a.jpg",
            mime_type="image/jpeg",
            size_bytes=10,
            position=1,
            is_cover=False,
        )
        db.add(photo)
        db.commit()

        with pytest.raises(IntegrityError):
            db.execute(
                CafePhoto.__table__.update().where(CafePhoto.__table__.c.id == photo.id).values({column: value})
            )
            db.commit()
        db.rollback()

    @pytest.mark.parametrize("size", [(5200, 3400), (1500, 4100), (2049, 2049)])
    def test_optimizer_long_side_bounded(self, store, size):
        key = "pending/submissions/u/1_a.jpg"
        store.put(key, "image/jpeg", image_bytes(*size, quality=90))

        result = PhotoOptimizer(store).optimize_and_persist("cafe-1", "cafe", key, "image/jpeg", 1)

        assert result.rewritten
        with Image.open(io.BytesIO(store.get(result.object_key)[0])) as img:
            assert max(img.size) == 2048
        assert result.generated_variants >= 2
        assert variant_object_key(result.object_key, 320) in store.keys()
