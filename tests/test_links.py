"""
tests/test_links.py
"""
from __future__ import annotations

from inkwell.blog import app, get_db

CSRF = "test-token"


def _login(client) -> None:
    with client.session_transaction() as sess:
        sess["logged_in"] = True
        sess["csrf"] = CSRF


def _link_category(slug: str) -> int:
    return get_db().execute(
        "SELECT id FROM taxonomy WHERE type='link' AND slug=?", (slug,)
    ).fetchone()["id"]


def _save_link(client, **fields):
    _login(client)
    data = {
        "name": "Example",
        "url": "https://example.com",
        "description": "An example",
        "scope": "site",
        "status": "normal",
        "target": "_blank",
        "order": "0",
        "taxonomy_id": _link_category("friendlink"),
        **fields,
        "csrf": CSRF,
    }
    return client.post("/admin/link", data=data)


# ───────────────────────── admin CRUD ─────────────────────────────────
def test_admin_links_require_login(client):
    assert client.get("/admin/link").status_code == 403


def test_create_and_edit_link(client):
    rv = _save_link(client, name="LNK editable", url="https://edit.example")
    assert rv.status_code == 302
    row = get_db().execute("SELECT * FROM link WHERE name='LNK editable'").fetchone()
    assert row["scope"] == "site"

    html = client.get(f"/admin/link?id={row['id']}").data.decode()
    assert 'value="https://edit.example"' in html

    rv = _save_link(client, id=row["id"], name="LNK edited", url="https://edit.example")
    assert rv.status_code == 302
    assert get_db().execute(
        "SELECT name FROM link WHERE id=?", (row["id"],)
    ).fetchone()["name"] == "LNK edited"


def test_link_validation(client):
    rv = _save_link(client, name="LNK bad", url="javascript:alert(1)")
    assert rv.status_code == 200
    assert "must start with http" in rv.data.decode()

    rv = _save_link(client, name="LNK bad", target="_parent")
    assert b"Choose how the link opens." in rv.data

    rv = _save_link(client, name="LNK bad", taxonomy_id=987654)
    assert b"Choose a link category." in rv.data

    assert get_db().execute("SELECT 1 FROM link WHERE name='LNK bad'").fetchone() is None


def test_delete_links(client):
    _save_link(client, name="LNK doomed")
    lid = get_db().execute("SELECT id FROM link WHERE name='LNK doomed'").fetchone()["id"]
    rv = client.post("/admin/link/delete", data={"link_ids": [lid], "csrf": CSRF})
    assert rv.status_code == 302
    assert get_db().execute("SELECT 1 FROM link WHERE id=?", (lid,)).fetchone() is None


def test_link_counts_follow_status(client):
    _save_link(client, name="LNK counted", taxonomy_id=_link_category("quicklink"))
    before = get_db().execute(
        "SELECT count FROM taxonomy WHERE type='link' AND slug='quicklink'"
    ).fetchone()["count"]
    _save_link(client, name="LNK trashed", status="trash", taxonomy_id=_link_category("quicklink"))
    after = get_db().execute(
        "SELECT count FROM taxonomy WHERE type='link' AND slug='quicklink'"
    ).fetchone()["count"]
    assert before >= 1
    assert after == before


# ───────────────────────── sidebar ────────────────────────────────────
def test_homepage_scope_only_on_first_index_page(client):
    _save_link(client, name="LNK home only", url="https://home.example", scope="homepage")
    _save_link(client, name="LNK everywhere", url="https://site.example", scope="site")

    with app.test_client() as visitor:
        html = visitor.get("/").data.decode()
        assert 'href="https://home.example"' in html
        assert 'href="https://site.example"' in html

        html = visitor.get("/archive").data.decode()
        assert 'href="https://home.example"' not in html
        assert 'href="https://site.example"' in html


def test_trashed_links_are_not_shown(client):
    _save_link(client, name="LNK binned", url="https://binned.example", status="trash")
    with app.test_client() as visitor:
        assert b"https://binned.example" not in visitor.get("/").data


def test_links_in_sub_categories(client):
    _login(client)
    friends = _link_category("friendlink")
    for slug, status in (("lnk-blogs", "publish"), ("lnk-private", "publish")):
        rv = client.post(
            "/admin/taxonomy/link",
            data={"name": slug, "slug": slug, "parent_id": friends, "status": status, "csrf": CSRF},
        )
        assert rv.status_code == 302
    _save_link(client, url="https://blogroll.example", taxonomy_id=_link_category("lnk-blogs"))
    _save_link(client, url="https://private.example", taxonomy_id=_link_category("lnk-private"))

    # hide one sub-category
    client.post(
        "/admin/taxonomy/link",
        data={
            "id": _link_category("lnk-private"),
            "name": "lnk-private",
            "slug": "lnk-private",
            "parent_id": friends,
            "status": "hidden",
            "csrf": CSRF,
        },
    )

    with app.test_client() as visitor:
        html = visitor.get("/archive").data.decode()
    assert 'href="https://blogroll.example"' in html
    assert 'href="https://private.example"' not in html


def test_quick_links_in_sidebar(client):
    _save_link(
        client,
        url="https://quick.example",
        scope="homepage",
        taxonomy_id=_link_category("quicklink"),
    )
    with app.test_client() as visitor:
        html = visitor.get("/archive").data.decode()
    assert "Quick links" in html
    assert 'href="https://quick.example"' in html
