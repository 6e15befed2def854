import importlib

from reimburse.models import db as _db
from reimburse.models.user import AppUser

BASE64_IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQ=="


def _seed_users():
    _db.session.add_all([
        AppUser(uid="with-url", bank_book_image=BASE64_IMAGE,
                bank_book_url="/api/v1/files/raw/bankbook/with-url/1_book.jpg"),
        AppUser(uid="legacy-url", bank_book_image=BASE64_IMAGE, bank_book_drive_url="https://drive/book"),
        AppUser(uid="no-url", bank_book_image=BASE64_IMAGE),
        AppUser(uid="empty", bank_book_image=""),
    ])
    _db.session.commit()


def test_clear_dry_run_does_not_persist(app):
    _seed_users()

    mod = importlib.import_module("scripts.clear_bankbook_image")
    result = mod.clear_bankbook_images(apply=False)

    assert result == {"mode": "dry-run", "cleared": 2, "skipped_empty": 1, "skipped_no_url": 1}
    assert _db.session.get(AppUser, "with-url").bank_book_image == BASE64_IMAGE


def test_clear_apply_keeps_only_copy(app):
    _seed_users()

    mod = importlib.import_module("scripts.clear_bankbook_image")
    first = mod.clear_bankbook_images(apply=True)
    assert first["cleared"] == 2

    assert _db.session.get(AppUser, "with-url").bank_book_image == ""
    assert _db.session.get(AppUser, "legacy-url").bank_book_image == ""
    assert _db.session.get(AppUser, "no-url").bank_book_image == BASE64_IMAGE

    second = mod.clear_bankbook_images(apply=True)
    assert second["cleared"] == 0
    assert second["skipped_empty"] == 3
    assert second["skipped_no_url"] == 1
