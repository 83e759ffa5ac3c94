"""
tests/test_errors.py
"""
from __future__ import annotations

from inkwell.blog import app, get_setting


# ─────────────────────────■  tests  ■────────────────────────────────
def test_404_custom_page(client):
    """
    Any unknown URL yields the themed “Page not found” template.
    """
    resp = client.get("/this/route/does/not/exist")
    assert resp.status_code == 404
    # sanity-check that we really rendered *our* template, not Werkzeug’s
    assert b"Page not found" in resp.data
    # site title appears in the heading
    assert get_setting("site_name").encode() in resp.data


def test_missing_post_is_404(client):
    assert client.get("/post/987654").status_code == 404


def test_500_handler_renders_friendly_page(client, monkeypatch):
    """
    Temporarily replace ``index`` with a view that crashes, but disable
    exception propagation so the global 500-handler can render the page.
    """
    def _boom(page=1):
        raise RuntimeError("kaboom!")

    # ➊ monkey-patch the failing view
    monkeypatch.setitem(app.view_functions, "index", _boom)

    # ➋ turn *off* propagation just for this test
    monkeypatch.setitem(app.config, "PROPAGATE_EXCEPTIONS", False)

    resp = client.get("/")                 # handled by our 500-handler
    assert resp.status_code == 500
    assert b"Internal Server Error" in resp.data


def test_admin_routes_forbidden_for_visitors(client):
    for path in ("/admin/post", "/admin/taxonomy/tag", "/admin/link", "/settings"):
        assert client.get(path).status_code == 403
