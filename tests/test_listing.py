"""
tests/test_listing.py

Category / tag / archive listings, hidden subtrees and the JSON API.
"""
from __future__ import annotations

import re

import pytest

import inkwell.blog as blog
from inkwell.blog import app, get_db

CSRF = "test-token"


def _login(client) -> None:
    with client.session_transaction() as sess:
        sess["logged_in"] = True
        sess["csrf"] = CSRF


def _category(client, slug: str, parent: int | None = None, **extra) -> int:
    """Create a post category via the admin form, return its id."""
    _login(client)
    data = {
        "name": slug.replace("-", " ").title(),
        "slug": slug,
        "parent_id": parent or "",
        "status": "publish",
        "csrf": CSRF,
        **extra,
    }
    rv = client.post("/admin/taxonomy/post", data=data)
    assert rv.status_code == 302, rv.data.decode()
    return get_db().execute(
        "SELECT id FROM taxonomy WHERE type='post' AND slug=?", (slug,)
    ).fetchone()["id"]


def _post(client, title: str, *category_ids: int, tags: str = "") -> int:
    _login(client)
    rv = client.post(
        "/admin/post/new",
        data={
            "title": title,
            "body": f"{title} body",
            "status": "publish",
            "category": list(category_ids),
            "tags": tags,
            "csrf": CSRF,
        },
    )
    assert rv.status_code == 302, rv.data.decode()
    return int(re.search(r"/admin/post/(\d+)/edit", rv.headers["Location"]).group(1))


def _hide(client, slug: str) -> None:
    node = get_db().execute(
        "SELECT * FROM taxonomy WHERE type='post' AND slug=?", (slug,)
    ).fetchone()
    _login(client)
    rv = client.post(
        "/admin/taxonomy/post",
        data={
            "id": node["id"],
            "name": node["name"],
            "slug": node["slug"],
            "parent_id": node["parent_id"] or "",
            "status": "hidden",
            "csrf": CSRF,
        },
    )
    assert rv.status_code == 302, rv.data.decode()


# ───────────────────────── categories ─────────────────────────────────
def test_category_lists_posts_of_all_descendants(client):
    lang = _category(client, "lst-lang")
    py = _category(client, "lst-py", lang)
    flask_ = _category(client, "lst-flask", py)
    _post(client, "LST deep post", flask_)
    _post(client, "LST top post", lang)
    _post(client, "LST elsewhere post", _category(client, "lst-other"))

    with app.test_client() as visitor:
        html = visitor.get("/category/lst-lang").data.decode()
        assert "LST deep post" in html
        assert "LST top post" in html
        assert "LST elsewhere post" not in html

        html = visitor.get("/category/lst-py").data.decode()
        assert "LST deep post" in html
        assert "LST top post" not in html


def test_category_breadcrumbs_follow_ancestors(client):
    a = _category(client, "lst-crumb-a", description="Crumb root")
    b = _category(client, "lst-crumb-b", a)
    _category(client, "lst-crumb-c", b)

    html = client.get("/category/lst-crumb-c").data.decode()
    crumbs = html[html.index('class="crumbs"'):]
    assert crumbs.index("/category/lst-crumb-a") < crumbs.index("/category/lst-crumb-b")
    assert 'title="Crumb root"' in crumbs
    assert '<span aria-current="page" title="Lst Crumb C">Lst Crumb C</span>' in crumbs


def test_unknown_category_is_404(client):
    assert client.get("/category/lst-does-not-exist").status_code == 404


def test_hidden_category_hides_whole_subtree(client):
    top = _category(client, "lst-hide")
    kid = _category(client, "lst-hide-kid", top)
    pid = _post(client, "LST hidden post", kid)
    _hide(client, "lst-hide")

    with app.test_client() as visitor:
        assert visitor.get("/category/lst-hide").status_code == 404
        assert visitor.get("/category/lst-hide-kid").status_code == 404
        assert visitor.get(f"/post/{pid}").status_code == 404
        data = visitor.get("/api/posts?keyword=LST+hidden+post").get_json()
        assert data["data"]["posts"] == []

    # the admin still sees everything
    assert client.get("/category/lst-hide").status_code == 200
    assert b"LST hidden post" in client.get("/category/lst-hide-kid").data
    data = client.get("/api/posts?keyword=LST+hidden+post").get_json()
    assert [p["id"] for p in data["data"]["posts"]] == [pid]


def test_post_in_hidden_and_visible_category_stays_public(client):
    shown = _category(client, "lst-both-shown")
    veiled = _category(client, "lst-both-veiled")
    pid = _post(client, "LST two homes", shown, veiled)
    _hide(client, "lst-both-veiled")

    with app.test_client() as visitor:
        rv = visitor.get(f"/post/{pid}")
        assert rv.status_code == 200
        assert b"/category/lst-both-shown" in rv.data
        assert b"/category/lst-both-veiled" not in rv.data


def test_post_crumbs_follow_referrer(client):
    first = _category(client, "lst-ref-first")
    second = _category(client, "lst-ref-second")
    pid = _post(client, "LST referred", first, second)

    html = client.get(
        f"/post/{pid}", headers={"Referer": "http://localhost/category/lst-ref-second"}
    ).data.decode()
    crumbs = html[html.index('class="crumbs"'):html.index("</nav>", html.index('class="crumbs"'))]
    assert "Lst Ref Second" in crumbs
    assert "Lst Ref First" not in crumbs


def test_category_pagination(client, monkeypatch):
    cat = _category(client, "lst-paged")
    _post(client, "LST paged older", cat)
    _post(client, "LST paged newer", cat)
    monkeypatch.setattr(blog, "page_size", lambda: 1)

    html = client.get("/category/lst-paged").data.decode()
    assert "LST paged newer" in html
    assert "LST paged older" not in html
    assert 'href="/category/lst-paged/page-2"' in html

    html = client.get("/category/lst-paged/page-2").data.decode()
    assert "LST paged older" in html
    assert "Page 2" in html                # title prefix

    # out-of-range pages clamp to the last one
    rv = client.get("/category/lst-paged/page-99")
    assert rv.status_code == 200
    assert b"LST paged older" in rv.data


# ───────────────────────── tags ───────────────────────────────────────
def test_tag_listing(client):
    _post(client, "LST tagged post", _category(client, "lst-for-tags"), tags="lst-tagged")
    with app.test_client() as visitor:
        rv = visitor.get("/tag/lst-tagged")
        assert rv.status_code == 200
        assert b"LST tagged post" in rv.data
        assert b"Tags" in rv.data
        assert visitor.get("/tag/lst-no-such-tag").status_code == 404


# ───────────────────────── archive ────────────────────────────────────
def test_archive_by_year_and_month(client):
    # the session clock starts at 2099-01-01
    _post(client, "LST archived", _category(client, "lst-archive"))
    with app.test_client() as visitor:
        assert b"LST archived" in visitor.get("/archive/2099").data
        assert b"LST archived" in visitor.get("/archive/2099/1").data
        assert b"LST archived" not in visitor.get("/archive/2098").data
        html = visitor.get("/archive").data.decode()
        assert 'href="/archive/2099"' in html
        assert 'href="/archive/2099/1"' in html


@pytest.mark.parametrize("path", ["/archive/2099/13", "/archive/2099/0"])
def test_archive_bad_month_is_404(client, path):
    assert client.get(path).status_code == 404


# ───────────────────────── index / API ────────────────────────────────
def test_index_keyword_search(client):
    _post(client, "LST needle in haystack", _category(client, "lst-search"))
    with app.test_client() as visitor:
        html = visitor.get("/?keyword=needle+in+haystack").data.decode()
        assert "LST needle in haystack" in html
        assert "Search results" in html


def test_api_posts_shape(client):
    _post(client, "LST api post", _category(client, "lst-api"))
    with app.test_client() as visitor:
        rv = visitor.get("/api/posts?keyword=LST+api+post")
        assert rv.status_code == 200
        body = rv.get_json()
    assert body["code"] == 0
    (post,) = body["data"]["posts"]
    assert post["title"] == "LST api post"
    assert post["excerpt"] == "LST api post body"
    assert post["commentCount"] == 0
    assert body["data"]["paginator"]["currentPage"] == 1
    assert body["data"]["paginator"]["totalPages"] == 1


def test_nav_shows_visible_root_categories(client):
    _category(client, "lst-nav-root")
    with app.test_client() as visitor:
        html = visitor.get("/").data.decode()
    assert 'href="/category/lst-nav-root"' in html
    assert 'href="/category/lst-hide"' not in html


def test_hidden_post_is_not_a_neighbour_and_takes_no_comments(client):
    shown = _category(client, "lst-nb-shown")
    veiled = _category(client, "lst-nb-veiled")
    first = _post(client, "LST neighbour shown", shown)
    second = _post(client, "LST neighbour veiled", veiled)
    _hide(client, "lst-nb-veiled")

    with app.test_client() as visitor:
        html = visitor.get(f"/post/{first}").data.decode()
        assert f'href="/post/{second}"' not in html
        assert "LST neighbour veiled" not in html

        rv = visitor.post(
            f"/post/{second}/comment",
            data={"author": "Ann", "email": "ann@example.com", "content": "LST sneaky"},
        )
        assert rv.status_code == 404
    assert get_db().execute(
        "SELECT 1 FROM comment WHERE content='LST sneaky'"
    ).fetchone() is None

    # the admin still walks through every post
    html = client.get(f"/post/{first}").data.decode()
    assert f'href="/post/{second}" rel="next"' in html


def test_search_pages_keep_the_keyword(client, monkeypatch):
    cat = _category(client, "lst-cpp")
    _post(client, "LST c++ older", cat)
    _post(client, "LST c++ newer", cat)
    monkeypatch.setattr(blog, "page_size", lambda: 1)

    with app.test_client() as visitor:
        html = visitor.get("/?keyword=c%2B%2B").data.decode()
        assert "LST c++ newer" in html
        assert 'href="/post/page-2?keyword=c%2B%2B"' in html

        html = visitor.get("/post/page-2?keyword=c%2B%2B").data.decode()
        assert "LST c++ older" in html


@pytest.mark.parametrize("keyword,slug", [("%", "lst-literal-pct"), ("_", "lst-literal-us")])
def test_search_wildcards_match_literally(client, keyword, slug):
    _post(client, f"LST literal {keyword} mark", _category(client, slug))
    with app.test_client() as visitor:
        body = visitor.get("/api/posts", query_string={"keyword": keyword}).get_json()
    titles = [p["title"] for p in body["data"]["posts"]]
    assert titles
    assert all(keyword in t for t in titles)
