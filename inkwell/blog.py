#!/usr/bin/env python3
"""
A single-file blog with hierarchical categories, tags, comments and links.
"""

import os
import re
import secrets
import sqlite3
from collections import Counter, OrderedDict, defaultdict, deque
from datetime import datetime, timezone
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from time import time
from typing import DefaultDict
from urllib.parse import urlencode, urlparse

import click
import markdown
from flask import (
    Flask,
    Response,
    abort,
    flash,
    redirect,
    g,
    render_template_string,
    request,
    session,
    url_for,
)
from itsdangerous import BadSignature, SignatureExpired, TimestampSigner
from markupsafe import Markup
from werkzeug.middleware.proxy_fix import ProxyFix
from werkzeug.security import check_password_hash as verify_token
from werkzeug.security import generate_password_hash as hash_token

from inkwell.paginator import PAGE_WINDOW, paginate, parse_page
from inkwell.taxonomy import (
    ROOT,
    Crumb,
    NotFoundError,
    StructuralError,
    TaxonomyCache,
    TaxonomyNode,
    TaxonomyStatus,
    TaxonomyTree,
    TaxonomyType,
    build_tree,
    resolve_path,
    resolve_subtree,
)

################################################################################
# Imports & constants
################################################################################

ROOT_DIR = Path(__file__).parent
DB_FILE = Path(os.environ.get("INKWELL_DB", str(ROOT_DIR / "blog.sqlite3")))

SECRET_FILE = ROOT_DIR / ".secret_key"
SECRET_KEY = (
    SECRET_FILE.read_text().strip() if SECRET_FILE.exists() else secrets.token_hex(32)
)
SECRET_FILE.write_text(SECRET_KEY)
TOKEN_LEN = 48
signer = TimestampSigner(SECRET_KEY, salt="login-token")

LOG_LEVEL = os.environ.get("INKWELL_LOG_LEVEL", "INFO").upper()
PAGE_DEFAULT = int(os.environ.get("INKWELL_PAGE_DEFAULT", "10"))
PAGE_WINDOW_SIZE = int(os.environ.get("INKWELL_PAGE_WINDOW", str(PAGE_WINDOW)))
COMMENT_RATE_LIMIT = int(os.environ.get("INKWELL_COMMENT_RATE_LIMIT", "5"))
SITE_NAME_DFLT = "inkwell"

POST_DESCRIPTION_LENGTH = 140
POST_STATUSES = OrderedDict(
    [
        ("publish", "Published"),
        ("draft", "Draft"),
        ("private", "Private"),
        ("trash", "Trash"),
    ]
)
COMMENT_STATUSES = OrderedDict(
    [
        ("normal", "Approved"),
        ("pending", "Pending"),
        ("reject", "Rejected"),
        ("spam", "Spam"),
        ("trash", "Trash"),
    ]
)
COMMENT_AUTHOR_MAX = 50
COMMENT_CONTENT_MAX = 1000
LINK_SCOPES = OrderedDict([("site", "Whole site"), ("homepage", "Homepage only")])
LINK_STATUSES = OrderedDict([("normal", "Normal"), ("trash", "Trash")])
LINK_TARGETS = ("_blank", "_self", "_top")
LINK_NAME_MAX = 100
LINK_URL_MAX = 255
LINK_DESCRIPTION_MAX = 255

TAXONOMY_LABELS = {
    TaxonomyType.POST: "Category",
    TaxonomyType.TAG: "Tag",
    TaxonomyType.LINK: "Link category",
}
FRIEND_LINK_SLUG = "friendlink"
QUICK_LINK_SLUG = "quicklink"
REQUIRED_TAXONOMIES = (
    (TaxonomyType.POST, "uncategorized", "Uncategorized"),
    (TaxonomyType.LINK, FRIEND_LINK_SLUG, "Friend links"),
    (TaxonomyType.LINK, QUICK_LINK_SLUG, "Quick links"),
)

SLUG_RE = re.compile(r"[a-z0-9][a-z0-9_-]*")
EMAIL_RE = re.compile(r"[^@\s]+@[^@\s]+\.[^@\s]+")
HTML_TAG_RE = re.compile(r"</?[^>]*>")

try:
    __version__ = version("inkwell")
except PackageNotFoundError:
    __version__ = "0.1.0-dev"


################################################################################
# App + template filters
################################################################################
app = Flask(__name__)
app.url_map.strict_slashes = False
app.config.update(SECRET_KEY=SECRET_KEY, DATABASE=str(DB_FILE))
app.config.update(
    SESSION_COOKIE_SAMESITE="Lax",
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SECURE=True,
    PAGE_WINDOW=PAGE_WINDOW_SIZE,
    LOG_LEVEL=LOG_LEVEL,
)
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)
app.logger.setLevel(LOG_LEVEL)

MD_EXTENSION_CONFIGS = {
    "pymdownx.highlight": {
        "guess_lang": True,
        "noclasses": True,
        "pygments_style": "nord",
    },
}
MD_EXTENSIONS = [
    "pymdownx.extra",
    "pymdownx.magiclink",
    "pymdownx.tilde",
    "pymdownx.mark",
    "pymdownx.superfences",
    "pymdownx.highlight",
    "pymdownx.betterem",
    "pymdownx.saneheaders",
]


def render_markdown(text: str | None) -> str:
    if not text:
        return ""
    # Markdown instances keep state between runs; one per call.
    md = markdown.Markdown(
        extensions=MD_EXTENSIONS, extension_configs=MD_EXTENSION_CONFIGS
    )
    return md.convert(text)


@app.template_filter("md")
def md_filter(text: str | None) -> Markup:
    return Markup(render_markdown(text))


@app.template_filter("day")
def day_filter(iso: str | None) -> str:
    if not iso:
        return ""
    try:
        return datetime.fromisoformat(iso).strftime("%Y-%m-%d")
    except ValueError:
        return iso


###############################################################################
# Database
###############################################################################
def get_db():
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DATABASE"])
        g.db.execute("PRAGMA foreign_keys = ON;")
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    db.executescript(
        """
        ------------------------------------------------------------
        -- 1.  Accounts
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS user (
            id          INTEGER PRIMARY KEY,
            username    TEXT UNIQUE NOT NULL,
            token_hash  TEXT NOT NULL
        );

        ------------------------------------------------------------
        -- 2.  Site-wide key/value settings
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS settings (
            key   TEXT PRIMARY KEY,
            value TEXT
        );

        ------------------------------------------------------------
        -- 3.  Taxonomies (post categories, tags, link categories)
        --     parent_id is validated by the tree builder, not by a FK
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS taxonomy (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            type        TEXT NOT NULL,               -- post | tag | link
            slug        TEXT NOT NULL,
            name        TEXT NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            parent_id   INTEGER,                     -- NULL = root
            term_order  INTEGER NOT NULL DEFAULT 0,
            status      TEXT NOT NULL DEFAULT 'publish',  -- publish | hidden | required
            count       INTEGER NOT NULL DEFAULT 0,
            UNIQUE (type, slug)
        );

        CREATE INDEX IF NOT EXISTS idx_taxonomy_parent ON taxonomy(parent_id);

        ------------------------------------------------------------
        -- 4.  Posts
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS post (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            title       TEXT NOT NULL,
            body        TEXT NOT NULL,
            excerpt     TEXT NOT NULL DEFAULT '',
            status      TEXT NOT NULL,               -- publish | draft | private | trash
            created_at  TEXT NOT NULL,
            updated_at  TEXT,
            view_count  INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_post_created ON post(created_at);

        CREATE TABLE IF NOT EXISTS post_taxonomy (
            post_id     INTEGER NOT NULL,
            taxonomy_id INTEGER NOT NULL,
            PRIMARY KEY (post_id, taxonomy_id),
            FOREIGN KEY (post_id)     REFERENCES post(id)     ON DELETE CASCADE,
            FOREIGN KEY (taxonomy_id) REFERENCES taxonomy(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_post_taxonomy_tax ON post_taxonomy(taxonomy_id);

        ------------------------------------------------------------
        -- 5.  Comments
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS comment (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            post_id     INTEGER NOT NULL,
            author      TEXT NOT NULL,
            email       TEXT NOT NULL,
            content     TEXT NOT NULL,
            status      TEXT NOT NULL,               -- normal | pending | reject | spam | trash
            created_at  TEXT NOT NULL,
            ip          TEXT NOT NULL DEFAULT '',
            user_agent  TEXT NOT NULL DEFAULT '',
            FOREIGN KEY (post_id) REFERENCES post(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_comment_post ON comment(post_id, status);

        ------------------------------------------------------------
        -- 6.  Links (friend links, quick links …)
        ------------------------------------------------------------
        CREATE TABLE IF NOT EXISTS link (
            id          INTEGER PRIMARY KEY AUTOINCREMENT,
            name        TEXT NOT NULL,
            url         TEXT NOT NULL,
            description TEXT NOT NULL,
            scope       TEXT NOT NULL,               -- site | homepage
            status      TEXT NOT NULL,               -- normal | trash
            target      TEXT NOT NULL,               -- _blank | _self | _top
            link_order  INTEGER NOT NULL DEFAULT 0,
            taxonomy_id INTEGER NOT NULL,
            created_at  TEXT NOT NULL,
            FOREIGN KEY (taxonomy_id) REFERENCES taxonomy(id)
        );
        """
    )
    db.executemany(
        "INSERT OR IGNORE INTO settings (key, value) VALUES (?,?)",
        [
            ("site_name", SITE_NAME_DFLT),
            ("site_description", ""),
            ("site_keywords", ""),
            ("site_author", ""),
            ("taxonomy_version", "0"),
        ],
    )
    db.executemany(
        "INSERT OR IGNORE INTO taxonomy (type, slug, name, status) VALUES (?,?,?,?)",
        [
            (t.value, slug, name, TaxonomyStatus.REQUIRED.value)
            for t, slug, name in REQUIRED_TAXONOMIES
        ],
    )
    db.commit()
    taxonomy_cache.invalidate()


# -------------------------------------------------------------------------
# Time helpers
# -------------------------------------------------------------------------
def utc_now() -> datetime:
    """Return an *aware* datetime in UTC."""
    return datetime.now(timezone.utc)


def _now_iso() -> str:
    return utc_now().isoformat(timespec="seconds")


###############################################################################
# Taxonomy snapshot
###############################################################################
def load_taxonomy_nodes(db) -> list[TaxonomyNode]:
    """Full snapshot of every taxonomy row, all types at once."""
    return [TaxonomyNode.from_row(r) for r in db.execute("SELECT * FROM taxonomy")]


taxonomy_cache = TaxonomyCache(
    lambda: load_taxonomy_nodes(get_db()), logger=app.logger
)


def taxonomy_tree() -> TaxonomyTree:
    """Current snapshot; rebuilt when another request bumped the version."""
    return taxonomy_cache.get(version=get_setting("taxonomy_version", "0"))


def bump_taxonomy_version(db) -> None:
    db.execute(
        "INSERT INTO settings (key, value) VALUES ('taxonomy_version', '1') "
        "ON CONFLICT(key) DO UPDATE SET value = CAST(value AS INTEGER) + 1"
    )
    db.commit()
    taxonomy_cache.invalidate()


def refresh_taxonomy_counts(db) -> None:
    """Recompute the denormalised `count` column for every taxonomy."""
    db.execute(
        """
        UPDATE taxonomy SET count = CASE type
            WHEN 'link' THEN (
                SELECT COUNT(*) FROM link l
                 WHERE l.taxonomy_id = taxonomy.id AND l.status = 'normal')
            ELSE (
                SELECT COUNT(*) FROM post_taxonomy pt
                  JOIN post p ON p.id = pt.post_id
                 WHERE pt.taxonomy_id = taxonomy.id AND p.status = 'publish')
        END
        """
    )
    bump_taxonomy_version(db)


def taxonomy_url(node: TaxonomyNode) -> str:
    if node.type is TaxonomyType.POST:
        return url_for("category", slug=node.slug)
    if node.type is TaxonomyType.TAG:
        return url_for("tag", slug=node.slug)
    return ""


def _taxonomy_type_or_404(raw: str) -> TaxonomyType:
    try:
        return TaxonomyType(raw)
    except ValueError:
        abort(404)


###############################################################################
# CLI – create admin + token, check taxonomy
###############################################################################
def _create_admin(db, *, username: str) -> str:
    handle = secrets.token_urlsafe(TOKEN_LEN)
    token = signer.sign(handle).decode()
    db.execute(
        "INSERT INTO user (username, token_hash) VALUES (?,?)",
        (username, hash_token(handle)),
    )
    db.commit()
    return token


def _rotate_token(db) -> str:
    """Generate + store a *new* one-time token, return it for display."""
    handle = secrets.token_urlsafe(TOKEN_LEN)
    token = signer.sign(handle).decode()
    db.execute("UPDATE user SET token_hash=? WHERE id=1", (hash_token(handle),))
    db.commit()
    return token


@app.cli.command("init")
@click.option(
    "--username", prompt=True, help="Admin username (will be created if DB empty)"
)
def cli_init(username: str):
    """Initialise DB *and* create the first admin account."""
    init_db()
    db = get_db()
    token = _create_admin(db, username=username.strip())

    click.secho("\n✅  Admin created.", fg="green")
    click.echo(f"\nOne-time login token:\n\n{token}\n")
    click.echo("Paste it into the login form at /login within 1 minute.")


@app.cli.command("token")
def cli_token():
    """Rotate the admin’s one-time login token."""
    db = get_db()
    token = _rotate_token(db)

    click.secho("\n🔑  Fresh login token generated.\n", fg="yellow")
    click.echo(f"{token}\n")
    click.echo("Paste it into the login form at /login within 1 minute.")


@app.cli.command("check-taxonomy")
def cli_check_taxonomy():
    """Validate the taxonomy table the same way a rebuild would."""
    try:
        tree = build_tree(load_taxonomy_nodes(get_db()))
    except StructuralError as exc:
        raise click.ClickException(f"taxonomy is broken: {exc}") from exc

    counts = Counter(n.type for n in tree.nodes.values())
    for taxonomy_type in TaxonomyType:
        click.echo(f"{TAXONOMY_LABELS[taxonomy_type]:<14} {counts[taxonomy_type]}")
    click.secho("\n✅  Taxonomy tree is consistent.", fg="green")


###############################################################################
# Content helpers
###############################################################################
def cut_str(text: str | None, length: int) -> str:
    """
    Shorten *text* to roughly *length* "wide" characters.  CJK (anything
    from U+00C0 up) and capital letters count as one, everything else
    as half.  A trailing "..." marks the cut.
    """
    if not text:
        return ""
    n, i = 0.0, 0
    while n < length and i < len(text):
        ch = text[i]
        if ord(ch) >= 192 or "A" <= ch <= "Z":
            n += 1
            if n <= length:
                i += 1
        else:
            n += 0.5
            i += 1
    return text[:i] + ("..." if len(text) > i else "")


def filter_html_tag(text: str | None) -> str:
    return HTML_TAG_RE.sub("", text or "")


def append_url_ref(url: str, ref: str) -> str:
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}ref={ref}"


def normalize_tag(raw: str) -> str:
    return " ".join(raw.split()).lower()


def unique_tags(raw: str | None) -> list[str]:
    """'a, B,a ,, c' → ['a', 'b', 'c'] (first occurrence wins)."""
    seen: dict[str, None] = {}
    for part in (raw or "").replace("，", ",").split(","):
        tag = normalize_tag(part)
        if tag:
            seen.setdefault(tag)
    return list(seen)


def get_title(parts) -> str:
    return " - ".join(p for p in parts if p)


def post_description(post) -> str:
    if post["excerpt"]:
        return post["excerpt"]
    return cut_str(
        filter_html_tag(render_markdown(post["body"])).strip(),
        POST_DESCRIPTION_LENGTH,
    )


def current_username() -> str:
    row = get_db().execute("SELECT username FROM user LIMIT 1").fetchone()
    return row["username"] if row else "admin"


def get_setting(key, default=None):
    row = get_db().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
    return row["value"] if row else default


def set_setting(key, value):
    db = get_db()
    db.execute(
        "INSERT INTO settings (key,value) VALUES (?,?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
        (key, value),
    )
    db.commit()


def site_name() -> str:
    return get_setting("site_name", SITE_NAME_DFLT)


# Pagination helpers
def page_size() -> int:
    try:
        size = int(get_setting("page_size", PAGE_DEFAULT))
    except (TypeError, ValueError):
        return PAGE_DEFAULT
    return size if size > 0 else PAGE_DEFAULT


def _paginate(total: int, page: int, per_page: int | None = None):
    return paginate(
        page,
        total,
        per_page or page_size(),
        window=app.config.get("PAGE_WINDOW", PAGE_WINDOW),
    )


def _marks(values) -> str:
    return ",".join("?" * len(values))


def _like(keyword: str) -> str:
    """Substring LIKE pattern; pair with `ESCAPE '\\'`."""
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _query(**params) -> str:
    """`?a=1&b=2` for the non-empty *params*, or ''."""
    params = {k: v for k, v in params.items() if v}
    return "?" + urlencode(params) if params else ""


class FormError(ValueError):
    """A submitted form breaks a content rule; shown to the admin via flash."""


###############################################################################
# Authentication
###############################################################################
def validate_token(token: str, max_age: int = 60) -> bool:
    try:
        handle = signer.unsign(token, max_age=max_age).decode()
    except SignatureExpired:
        return False
    except BadSignature:
        return False

    row = get_db().execute("SELECT token_hash FROM user LIMIT 1").fetchone()
    return bool(row) and verify_token(row["token_hash"], handle)


def is_admin() -> bool:
    return bool(session.get("logged_in"))


def login_required() -> None:
    if not is_admin():
        abort(403)


def client_ip() -> str:
    """Return best-effort client IP after ProxyFix."""
    return (
        request.access_route[0] if request.access_route else request.remote_addr
    ) or "unknown"


def rate_limit(max_requests: int, window: int = 60):
    hits: DefaultDict[str, deque] = defaultdict(deque)

    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            now = time()
            dq = hits[client_ip()]
            while dq and now - dq[0] > window:
                dq.popleft()

            if len(dq) >= max_requests:
                retry_after = int(window - (now - dq[0]))
                return Response(
                    "Too many requests – try again later.",
                    status=429,
                    headers={"Retry-After": str(retry_after)},
                )

            dq.append(now)
            return view(*args, **kwargs)

        return wrapped

    return decorator


def _csrf_token() -> str:
    """One token per session (rotates when the cookie does)."""
    return session.get("csrf", "")


SAFE_METHODS = {"GET", "HEAD", "OPTIONS", "TRACE"}


@app.before_request
def csrf_protect():
    if request.method in SAFE_METHODS:
        return

    # anonymous visitors (login form, comments) carry no session token
    if not session.get("logged_in"):
        return

    token = session.get("csrf", "")
    sent = request.form.get("csrf") or request.headers.get("X-CSRFToken", "")
    if not token or not secrets.compare_digest(token, sent):
        abort(403)


@app.after_request
def sec_headers(resp):
    resp.headers.update(
        {
            "X-Frame-Options": "DENY",
            "X-Content-Type-Options": "nosniff",
            "Referrer-Policy": "strict-origin-when-cross-origin",
        }
    )
    return resp


@app.route("/login", methods=["GET", "POST"])
@rate_limit(max_requests=5, window=60)
def login():
    token = request.form.get("token", "").strip()

    if request.method == "POST" and token and validate_token(token):
        # burn the token right away
        db = get_db()
        db.execute(
            "UPDATE user SET token_hash=? WHERE id=1",
            (hash_token(secrets.token_hex(16)),),
        )
        db.commit()

        session.clear()
        session.permanent = True
        session["logged_in"] = True
        session["csrf"] = secrets.token_hex(16)
        return redirect(url_for("index"))

    if request.method == "POST":
        app.logger.info("Rejected login attempt from %s", client_ip())
    return render_template_string(TEMPL_LOGIN, title=get_title(["Login", site_name()]))


@app.route("/logout")
def logout():
    session.clear()
    return redirect(url_for("index"))


###############################################################################
# Links
###############################################################################
def get_links(db, slug: str, scopes) -> list:
    """
    Normal links filed under the link category *slug* or any of its
    visible sub-categories.
    """
    try:
        sub = resolve_subtree(taxonomy_tree(), slug, TaxonomyType.LINK)
    except NotFoundError:
        return []
    ids = sorted(sub.descendant_ids)
    return db.execute(
        f"""SELECT name, url, description, target
              FROM link
             WHERE taxonomy_id IN ({_marks(ids)})
               AND scope IN ({_marks(scopes)})
               AND status = 'normal'
          ORDER BY link_order DESC, id""",
        (*ids, *scopes),
    ).fetchall()


def get_friend_links(db, *, from_page: str = "", page: int = 1) -> list:
    # homepage-only links appear on the first page of the home listing
    if from_page == "list" and page == 1:
        scopes = ("homepage", "site")
    else:
        scopes = ("site",)
    return get_links(db, FRIEND_LINK_SLUG, scopes)


def get_quick_links(db) -> list:
    return get_links(db, QUICK_LINK_SLUG, ("homepage", "site"))


def common_data(*, cur_nav: str = "", from_page: str = "", page: int = 1) -> dict:
    """Sidebar + navigation data shared by every public page."""
    db = get_db()
    tree = taxonomy_tree()
    return {
        "nav_categories": [n for n in tree.roots(TaxonomyType.POST) if not n.hidden],
        "friend_links": get_friend_links(db, from_page=from_page, page=page),
        "quick_links": get_quick_links(db),
        "cur_nav": cur_nav,
    }


###############################################################################
# Listing
###############################################################################
def _visibility_filter(is_admin: bool, alias: str = "p") -> tuple[list[str], list]:
    """
    Visitors see published posts filed under at least one visible
    category; the admin sees everything that is not in the trash.
    """
    if is_admin:
        return [f"{alias}.status != 'trash'"], []
    visible = sorted(taxonomy_tree().visible_ids(TaxonomyType.POST))
    return (
        [
            f"{alias}.status = 'publish'",
            f"""EXISTS (SELECT 1 FROM post_taxonomy pv
                         WHERE pv.post_id = {alias}.id
                           AND pv.taxonomy_id IN ({_marks(visible)}))""",
        ],
        list(visible),
    )


def comment_counts_for(post_ids, *, db) -> dict[int, int]:
    if not post_ids:
        return {}
    rows = db.execute(
        f"""SELECT post_id, COUNT(*) AS cnt
              FROM comment
             WHERE status = 'normal' AND post_id IN ({_marks(post_ids)})
          GROUP BY post_id""",
        tuple(post_ids),
    )
    return {r["post_id"]: r["cnt"] for r in rows}


def post_listing(
    db,
    *,
    page: int,
    is_admin: bool,
    taxonomy_ids=None,
    year: int | None = None,
    month: int | None = None,
    keyword: str | None = None,
    per_page: int | None = None,
) -> dict:
    """
    One page of posts for any public listing.

    *taxonomy_ids* is a descendant set from `resolve_subtree`: a post
    matches when it is attached to any of them.
    """
    where, params = _visibility_filter(is_admin)
    if taxonomy_ids is not None:
        ids = sorted(taxonomy_ids)
        where.append(
            f"""EXISTS (SELECT 1 FROM post_taxonomy pt
                         WHERE pt.post_id = p.id
                           AND pt.taxonomy_id IN ({_marks(ids)}))"""
        )
        params.extend(ids)
    if year:
        where.append("substr(p.created_at, 1, 4) = ?")
        params.append(f"{year:04d}")
    if month:
        where.append("substr(p.created_at, 6, 2) = ?")
        params.append(f"{month:02d}")
    if keyword:
        where.append("(p.title LIKE ? ESCAPE '\\' OR p.body LIKE ? ESCAPE '\\')")
        params.extend([_like(keyword)] * 2)

    where_sql = " AND ".join(where)
    total = db.execute(
        f"SELECT COUNT(*) FROM post p WHERE {where_sql}", params
    ).fetchone()[0]
    pager = _paginate(total, page, per_page)
    posts = db.execute(
        f"""SELECT p.* FROM post p
             WHERE {where_sql}
          ORDER BY p.created_at DESC, p.id DESC
             LIMIT ? OFFSET ?""",
        (*params, pager.page_size, pager.offset),
    ).fetchall()
    return {
        "posts": posts,
        "paginator": pager,
        "comment_counts": comment_counts_for([p["id"] for p in posts], db=db),
    }


def archive_dates(db, *, is_admin: bool) -> list[dict]:
    """[{year, months: [{month, count}], count}] newest first."""
    where, params = _visibility_filter(is_admin)
    rows = db.execute(
        f"""SELECT substr(p.created_at, 1, 4) AS year,
                   substr(p.created_at, 6, 2) AS month,
                   COUNT(*)                  AS cnt
              FROM post p
             WHERE {' AND '.join(where)}
          GROUP BY year, month
          ORDER BY year DESC, month DESC""",
        params,
    )
    years: OrderedDict = OrderedDict()
    for r in rows:
        entry = years.setdefault(r["year"], {"year": r["year"], "months": [], "count": 0})
        entry["months"].append({"month": r["month"], "count": r["cnt"]})
        entry["count"] += r["cnt"]
    return list(years.values())


def _list_page(*, titles, description, crumbs, listing, link_url, link_param="",
               cur_nav="", from_page=""):
    pager = listing["paginator"]
    if pager.current_page > 1:
        titles = [f"Page {pager.current_page}", *titles]
    return render_template_string(
        TEMPL_LIST,
        title=get_title(titles),
        description=description,
        crumbs=crumbs,
        link_url=link_url,
        link_param=link_param,
        **listing,
        **common_data(cur_nav=cur_nav, from_page=from_page, page=pager.current_page),
    )


###############################################################################
# Public views
###############################################################################
@app.route("/", defaults={"page": 1})
@app.route("/post/page-<int:page>")
def index(page):
    keyword = request.args.get("keyword", "").strip()
    listing = post_listing(get_db(), page=page, is_admin=is_admin(), keyword=keyword)
    titles = [keyword, "Search results", site_name()] if keyword else [site_name()]
    return _list_page(
        titles=titles,
        description=get_setting("site_description", ""),
        crumbs=[],
        listing=listing,
        link_url=url_for("index") + "post/page-",
        link_param=_query(keyword=keyword),
        cur_nav="index",
        from_page="list",
    )


@app.route("/api/posts")
def api_posts():
    keyword = request.args.get("keyword", "").strip()
    listing = post_listing(
        get_db(),
        page=parse_page(request.args.get("page")),
        is_admin=is_admin(),
        keyword=keyword,
    )
    counts = listing["comment_counts"]
    return {
        "code": 0,
        "data": {
            "posts": [
                {
                    "id": p["id"],
                    "title": p["title"],
                    "excerpt": post_description(p),
                    "status": p["status"],
                    "createdAt": p["created_at"],
                    "viewCount": p["view_count"],
                    "commentCount": counts.get(p["id"], 0),
                    "url": url_for("post_detail", post_id=p["id"]),
                }
                for p in listing["posts"]
            ],
            "paginator": listing["paginator"].to_dict(),
        },
    }


@app.route("/category/<slug>", defaults={"page": 1})
@app.route("/category/<slug>/page-<int:page>")
def category(slug, page):
    tree = taxonomy_tree()
    admin = is_admin()
    try:
        sub = resolve_subtree(tree, slug, TaxonomyType.POST, include_hidden=admin)
    except NotFoundError:
        abort(404)
    crumbs = resolve_path(tree, sub.root.id, taxonomy_url)
    listing = post_listing(
        get_db(), page=page, is_admin=admin, taxonomy_ids=sub.descendant_ids
    )
    name = sub.root.name
    return _list_page(
        titles=[name, "Categories", site_name()],
        description=sub.root.description or f"Posts filed under “{name}”.",
        crumbs=crumbs,
        listing=listing,
        link_url=url_for("category", slug=slug) + "/page-",
        cur_nav=crumbs[0].slug,
    )


@app.route("/tag/<slug>", defaults={"page": 1})
@app.route("/tag/<slug>/page-<int:page>")
def tag(slug, page):
    admin = is_admin()
    try:
        sub = resolve_subtree(taxonomy_tree(), slug, TaxonomyType.TAG, include_hidden=admin)
    except NotFoundError:
        abort(404)
    name = sub.root.name
    crumbs = [
        Crumb(label="Tags", tooltip="Tags", url="", slug="tag"),
        Crumb(label=name, tooltip=name, url=url_for("tag", slug=slug), is_current=True, slug=slug),
    ]
    listing = post_listing(
        get_db(), page=page, is_admin=admin, taxonomy_ids=sub.descendant_ids
    )
    return _list_page(
        titles=[name, "Tags", site_name()],
        description=f"Posts tagged “{name}”.",
        crumbs=crumbs,
        listing=listing,
        link_url=url_for("tag", slug=slug) + "/page-",
        cur_nav="tag",
    )


@app.route("/archive/<int:year>", defaults={"month": None, "page": 1})
@app.route("/archive/<int:year>/page-<int:page>", defaults={"month": None})
@app.route("/archive/<int:year>/<int:month>", defaults={"page": 1})
@app.route("/archive/<int:year>/<int:month>/page-<int:page>")
def archive(year, month, page):
    if not 1 <= year <= 9999 or (month is not None and not 1 <= month <= 12):
        abort(404)
    crumbs = [
        Crumb(label="Archive", tooltip="Archive", url=url_for("archive_list"), slug="archive"),
        Crumb(
            label=str(year),
            tooltip=str(year),
            url=url_for("archive", year=year),
            is_current=month is None,
            slug=str(year),
        ),
    ]
    label = str(year)
    if month is not None:
        label = f"{year}-{month:02d}"
        crumbs.append(
            Crumb(
                label=f"{month:02d}",
                tooltip=label,
                url=url_for("archive", year=year, month=month),
                is_current=True,
                slug=label,
            )
        )
    listing = post_listing(
        get_db(), page=page, is_admin=is_admin(), year=year, month=month
    )
    base = url_for("archive", year=year, month=month) if month else url_for("archive", year=year)
    return _list_page(
        titles=[label, "Archive", site_name()],
        description=f"Posts from {label}.",
        crumbs=crumbs,
        listing=listing,
        link_url=base + "/page-",
        cur_nav="archive",
    )


@app.route("/archive")
def archive_list():
    crumbs = [
        Crumb(label="Archive", tooltip="Archive", url=url_for("archive_list"), slug="archive"),
        Crumb(label="History", tooltip="History", url="", is_current=True, slug="history"),
    ]
    return render_template_string(
        TEMPL_ARCHIVES,
        title=get_title(["Archive", site_name()]),
        crumbs=crumbs,
        years=archive_dates(get_db(), is_admin=is_admin()),
        **common_data(cur_nav="archive"),
    )


def _post_taxonomies(db, tree: TaxonomyTree, post_id: int) -> list[TaxonomyNode]:
    rows = db.execute(
        "SELECT taxonomy_id FROM post_taxonomy WHERE post_id=?", (post_id,)
    )
    return [tree.nodes[r["taxonomy_id"]] for r in rows if r["taxonomy_id"] in tree]


def _crumb_category(categories: list[TaxonomyNode], referer: str | None) -> TaxonomyNode:
    """Prefer the category the visitor came from, else the first one."""
    path = urlparse(referer or "").path.rstrip("/")
    for node in categories:
        if path.endswith(f"/{node.slug}"):
            return node
    return categories[0]


@app.route("/post/<int:post_id>")
def post_detail(post_id):
    db = get_db()
    admin = is_admin()
    post = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
    if not post:
        abort(404)
    if not admin and post["status"] != "publish":
        app.logger.info("[Unauthorized] post %s is %s", post_id, post["status"])
        abort(404)

    tree = taxonomy_tree()
    attached = _post_taxonomies(db, tree, post_id)
    tree_order = {
        n.id: i for i, (n, _) in enumerate(tree.walk(TaxonomyType.POST, include_hidden=True))
    }
    categories = sorted(
        (
            n
            for n in attached
            if n.type is TaxonomyType.POST and (admin or tree.is_visible(n.id))
        ),
        key=lambda n: tree_order[n.id],
    )
    if not categories:
        app.logger.warning("Post %s has no visible category", post_id)
        abort(404)
    tags = sorted(
        (n for n in attached if n.type is TaxonomyType.TAG and (admin or not n.hidden)),
        key=lambda n: n.name,
    )
    crumbs = resolve_path(
        tree, _crumb_category(categories, request.referrer).id, taxonomy_url
    )

    comments = db.execute(
        "SELECT * FROM comment WHERE post_id=? AND status='normal' ORDER BY created_at, id",
        (post_id,),
    ).fetchall()
    vis_where, vis_params = _visibility_filter(admin)
    vis_sql = " AND ".join(vis_where)
    prev_post = db.execute(
        f"""SELECT p.id, p.title FROM post p
             WHERE {vis_sql} AND (p.created_at, p.id) < (?, ?)
          ORDER BY p.created_at DESC, p.id DESC LIMIT 1""",
        (*vis_params, post["created_at"], post_id),
    ).fetchone()
    next_post = db.execute(
        f"""SELECT p.id, p.title FROM post p
             WHERE {vis_sql} AND (p.created_at, p.id) > (?, ?)
          ORDER BY p.created_at, p.id LIMIT 1""",
        (*vis_params, post["created_at"], post_id),
    ).fetchone()
    db.execute("UPDATE post SET view_count = view_count + 1 WHERE id=?", (post_id,))
    db.commit()

    return render_template_string(
        TEMPL_POST,
        title=get_title([post["title"], site_name()]),
        description=post_description(post),
        keywords=",".join(
            k
            for k in dict.fromkeys([t.name for t in tags] + [get_setting("site_keywords", "")])
            if k
        ),
        post=post,
        crumbs=crumbs,
        categories=categories,
        tags=tags,
        comments=comments,
        prev_post=prev_post,
        next_post=next_post,
        share_url=append_url_ref(url_for("post_detail", post_id=post_id, _external=True), "share"),
        **common_data(cur_nav=crumbs[0].slug),
    )


@app.route("/post/<int:post_id>/comment", methods=["POST"])
@rate_limit(max_requests=COMMENT_RATE_LIMIT, window=60)
def add_comment(post_id):
    db = get_db()
    post = db.execute("SELECT id, status FROM post WHERE id=?", (post_id,)).fetchone()
    if not post:
        abort(404)
    if not is_admin():
        tree = taxonomy_tree()
        visible = any(
            n.type is TaxonomyType.POST and tree.is_visible(n.id)
            for n in _post_taxonomies(db, tree, post_id)
        )
        if post["status"] != "publish" or not visible:
            abort(404)

    author = request.form.get("author", "").strip()
    email = request.form.get("email", "").strip()
    content = request.form.get("content", "").strip()
    back = url_for("post_detail", post_id=post_id) + "#comments"

    errors = []
    if not author:
        errors.append("Name is required.")
    elif len(author) > COMMENT_AUTHOR_MAX:
        errors.append(f"Name must be at most {COMMENT_AUTHOR_MAX} characters.")
    if not EMAIL_RE.fullmatch(email):
        errors.append("A valid email address is required.")
    if not content:
        errors.append("Comment must not be empty.")
    elif len(content) > COMMENT_CONTENT_MAX:
        errors.append(f"Comment must be at most {COMMENT_CONTENT_MAX} characters.")
    if errors:
        for err in errors:
            flash(err)
        return redirect(back)

    status = "normal" if is_admin() else "pending"
    db.execute(
        """INSERT INTO comment
                  (post_id, author, email, content, status, created_at, ip, user_agent)
           VALUES (?,?,?,?,?,?,?,?)""",
        (
            post_id,
            author,
            email,
            content,
            status,
            _now_iso(),
            client_ip(),
            request.user_agent.string[:255],
        ),
    )
    db.commit()
    flash(
        "Comment published."
        if status == "normal"
        else "Thanks! Your comment is awaiting moderation."
    )
    return redirect(back)


###############################################################################
# Admin – posts
###############################################################################
def sync_post_tags(post_id: int, tags: list[str], *, db):
    """
    Bring the post's tag relations in sync with *tags*, creating missing
    tags and dropping tags no post uses any more.  Caller commits.
    """
    cur = {
        r["slug"]: r["id"]
        for r in db.execute(
            """SELECT t.id, t.slug FROM taxonomy t
                 JOIN post_taxonomy pt ON pt.taxonomy_id = t.id
                WHERE pt.post_id=? AND t.type='tag'""",
            (post_id,),
        )
    }
    want = set(tags)

    for name in want - cur.keys():
        db.execute(
            "INSERT OR IGNORE INTO taxonomy (type, slug, name, status) VALUES ('tag',?,?,'publish')",
            (name, name),
        )
        tag_id = db.execute(
            "SELECT id FROM taxonomy WHERE type='tag' AND slug=?", (name,)
        ).fetchone()["id"]
        db.execute("INSERT OR IGNORE INTO post_taxonomy VALUES (?,?)", (post_id, tag_id))

    for name in cur.keys() - want:
        db.execute(
            "DELETE FROM post_taxonomy WHERE post_id=? AND taxonomy_id=?",
            (post_id, cur[name]),
        )

    db.execute(
        """DELETE FROM taxonomy
            WHERE type='tag' AND status != 'required'
              AND id NOT IN (SELECT DISTINCT taxonomy_id FROM post_taxonomy)"""
    )


def validate_post_form(form: dict, tree: TaxonomyTree) -> list[str]:
    errors = []
    if not form["title"]:
        errors.append("Title is required.")
    if not form["body"]:
        errors.append("Content is required.")
    if form["status"] not in POST_STATUSES:
        errors.append("Unknown status.")
    elif form["status"] == "trash":
        errors.append("Use “Delete” to move a post to the trash.")
    if not form["category_ids"]:
        errors.append("Choose at least one category.")
    for cid in form["category_ids"]:
        node = tree.nodes.get(cid)
        if node is None or node.type is not TaxonomyType.POST:
            errors.append("Unknown category.")
            break
    if any("/" in t for t in form["tags"]):
        errors.append("Tags must not contain “/”.")
    return errors


def save_post(db, post_id: int | None, form: dict) -> int:
    now = _now_iso()
    try:
        if post_id is None:
            cur = db.execute(
                """INSERT INTO post (title, body, excerpt, status, created_at)
                   VALUES (?,?,?,?,?)""",
                (form["title"], form["body"], form["excerpt"], form["status"], now),
            )
            post_id = cur.lastrowid
        else:
            db.execute(
                """UPDATE post SET title=?, body=?, excerpt=?, status=?, updated_at=?
                    WHERE id=?""",
                (form["title"], form["body"], form["excerpt"], form["status"], now, post_id),
            )
        db.execute(
            """DELETE FROM post_taxonomy
                WHERE post_id=?
                  AND taxonomy_id IN (SELECT id FROM taxonomy WHERE type='post')""",
            (post_id,),
        )
        db.executemany(
            "INSERT INTO post_taxonomy (post_id, taxonomy_id) VALUES (?,?)",
            [(post_id, cid) for cid in form["category_ids"]],
        )
        sync_post_tags(post_id, form["tags"], db=db)
        db.commit()
    except sqlite3.Error:
        db.rollback()
        app.logger.exception("Saving post %r failed", form["title"])
        raise
    refresh_taxonomy_counts(db)
    return post_id


def _post_form_from_request() -> dict:
    ids = []
    for raw in request.form.getlist("category"):
        try:
            ids.append(int(raw))
        except ValueError:
            abort(400)
    return {
        "title": request.form.get("title", "").strip(),
        "body": request.form.get("body", "").strip(),
        "excerpt": request.form.get("excerpt", "").strip(),
        "status": request.form.get("status", "publish"),
        "category_ids": list(dict.fromkeys(ids)),
        "tags": unique_tags(request.form.get("tags")),
    }


@app.route("/admin/post", defaults={"page": 1})
@app.route("/admin/post/page-<int:page>")
def admin_posts(page):
    login_required()
    db = get_db()
    status = request.args.get("status", "").strip()
    keyword = request.args.get("keyword", "").strip()

    where, params = ["1=1"], []
    if status in POST_STATUSES:
        where.append("status=?")
        params.append(status)
    if keyword:
        where.append("(title LIKE ? ESCAPE '\\' OR body LIKE ? ESCAPE '\\')")
        params.extend([_like(keyword)] * 2)
    where_sql = " AND ".join(where)

    total = db.execute(f"SELECT COUNT(*) FROM post WHERE {where_sql}", params).fetchone()[0]
    pager = _paginate(total, page)
    posts = db.execute(
        f"""SELECT * FROM post WHERE {where_sql}
          ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?""",
        (*params, pager.page_size, pager.offset),
    ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_POSTS,
        title=get_title(["Posts", "Admin", site_name()]),
        posts=posts,
        paginator=pager,
        link_url=url_for("admin_posts") + "/page-",
        link_param=_query(status=status, keyword=keyword),
        statuses=POST_STATUSES,
        cur_status=status,
        cur_keyword=keyword,
    )


@app.route("/admin/post/new", methods=["GET", "POST"], defaults={"post_id": None})
@app.route("/admin/post/<int:post_id>/edit", methods=["GET", "POST"])
def admin_post_form(post_id):
    login_required()
    db = get_db()
    tree = taxonomy_tree()

    post = None
    if post_id is not None:
        post = db.execute("SELECT * FROM post WHERE id=?", (post_id,)).fetchone()
        if not post:
            abort(404)

    if request.method == "POST":
        form = _post_form_from_request()
        errors = validate_post_form(form, tree)
        if not errors:
            new_id = save_post(db, post_id, form)
            flash("Post saved.")
            return redirect(url_for("admin_post_form", post_id=new_id))
        for err in errors:
            flash(err)
    elif post is not None:
        attached = _post_taxonomies(db, tree, post_id)
        form = {
            "title": post["title"],
            "body": post["body"],
            "excerpt": post["excerpt"],
            "status": post["status"],
            "category_ids": [n.id for n in attached if n.type is TaxonomyType.POST],
            "tags": [n.name for n in attached if n.type is TaxonomyType.TAG],
        }
    else:
        form = {
            "title": "",
            "body": "",
            "excerpt": "",
            "status": "publish",
            "category_ids": [],
            "tags": [],
        }

    return render_template_string(
        TEMPL_ADMIN_POST_FORM,
        title=get_title(["Edit post" if post else "New post", "Admin", site_name()]),
        post=post,
        form=form,
        categories=list(tree.walk(TaxonomyType.POST, include_hidden=True)),
        statuses={k: v for k, v in POST_STATUSES.items() if k != "trash"},
    )


@app.route("/admin/post/<int:post_id>/delete", methods=["POST"])
def admin_post_delete(post_id):
    login_required()
    db = get_db()
    cur = db.execute("UPDATE post SET status='trash', updated_at=? WHERE id=?", (_now_iso(), post_id))
    if cur.rowcount < 1:
        abort(404)
    db.commit()
    refresh_taxonomy_counts(db)
    flash("Post moved to trash.")
    return redirect(url_for("admin_posts"))


###############################################################################
# Admin – taxonomies
###############################################################################
def save_taxonomy(db, tree: TaxonomyTree, taxonomy_type: TaxonomyType, form: dict) -> int:
    """
    Create or update one taxonomy after checking the rules the tree
    builder cannot see (slug clashes, reserved nodes, moving a node below
    itself).  Raises `FormError`.
    """
    label = TAXONOMY_LABELS[taxonomy_type]
    taxonomy_id = form["id"]
    name = form["name"]
    parent_id = form["parent_id"]
    status = form["status"]

    if not name:
        raise FormError("Name is required.")
    if taxonomy_type is TaxonomyType.TAG:
        slug = normalize_tag(form["slug"] or name)
        parent_id = ROOT
        if "/" in slug:
            raise FormError("Tags must not contain “/”.")
    else:
        slug = form["slug"].lower()
        if not SLUG_RE.fullmatch(slug):
            raise FormError("Slug may only contain a-z, 0-9, “-” and “_”.")
    if status not in (TaxonomyStatus.PUBLISH.value, TaxonomyStatus.HIDDEN.value):
        raise FormError("Unknown status.")

    current = None
    if taxonomy_id is not None:
        current = tree.get(taxonomy_id)
        if current.type is not taxonomy_type:
            raise NotFoundError(f"{label} {taxonomy_id} does not exist")

    clash = tree.slugs.get((taxonomy_type, slug))
    if clash is not None and clash != taxonomy_id:
        raise FormError(f"{label} “{slug}” already exists.")

    moved = current is None or current.parent_id != parent_id
    if parent_id is not ROOT:
        parent = tree.nodes.get(parent_id)
        if parent is None or parent.type is not taxonomy_type:
            raise FormError(f"Parent {label.lower()} does not exist.")
        if moved and parent.hidden:
            raise FormError(f"A hidden {label.lower()} cannot get sub-entries.")
    if current is not None:
        if current.required:
            if moved:
                raise FormError(f"“{current.name}” is reserved; its parent cannot change.")
            status = TaxonomyStatus.REQUIRED.value
        if parent_id is not ROOT and moved:
            sub = resolve_subtree(tree, current.slug, taxonomy_type, include_hidden=True)
            if parent_id in sub.descendant_ids:
                raise FormError(f"A {label.lower()} cannot be moved below itself.")

    values = (slug, name, form["description"], parent_id, form["order"], status)
    try:
        if current is None:
            cur = db.execute(
                """INSERT INTO taxonomy
                          (slug, name, description, parent_id, term_order, status, type)
                   VALUES (?,?,?,?,?,?,?)""",
                (*values, taxonomy_type.value),
            )
            taxonomy_id = cur.lastrowid
        else:
            db.execute(
                """UPDATE taxonomy
                      SET slug=?, name=?, description=?, parent_id=?, term_order=?, status=?
                    WHERE id=?""",
                (*values, taxonomy_id),
            )
        db.commit()
    except sqlite3.IntegrityError as exc:
        db.rollback()
        app.logger.exception("Saving %s %r failed", label, slug)
        raise FormError(f"{label} could not be saved.") from exc
    bump_taxonomy_version(db)
    return taxonomy_id


def delete_taxonomy(db, tree: TaxonomyTree, node: TaxonomyNode) -> None:
    label = TAXONOMY_LABELS[node.type]
    if node.required:
        raise FormError(f"“{node.name}” is reserved and cannot be deleted.")
    if tree.child_ids(node.id):
        raise FormError(f"“{node.name}” still has sub-entries; move or delete them first.")
    if node.type is TaxonomyType.LINK:
        related = db.execute(
            "SELECT COUNT(*) FROM link WHERE taxonomy_id=?", (node.id,)
        ).fetchone()[0]
        what = "links"
    else:
        related = db.execute(
            "SELECT COUNT(*) FROM post_taxonomy WHERE taxonomy_id=?", (node.id,)
        ).fetchone()[0]
        what = "posts"
    if related:
        raise FormError(f"{label} “{node.name}” still has {what}; remove them first.")
    db.execute("DELETE FROM taxonomy WHERE id=?", (node.id,))
    db.commit()
    bump_taxonomy_version(db)


def _taxonomy_form_from_request() -> dict:
    def _int_or_none(raw):
        raw = (raw or "").strip()
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            abort(400)

    order = _int_or_none(request.form.get("order"))
    return {
        "id": _int_or_none(request.form.get("id")),
        "name": request.form.get("name", "").strip(),
        "slug": request.form.get("slug", "").strip(),
        "description": request.form.get("description", "").strip(),
        "parent_id": _int_or_none(request.form.get("parent_id")),
        "order": order or 0,
        "status": request.form.get("status", TaxonomyStatus.PUBLISH.value),
    }


@app.route("/admin/taxonomy/<ttype>", methods=["GET", "POST"])
def admin_taxonomies(ttype):
    login_required()
    taxonomy_type = _taxonomy_type_or_404(ttype)
    label = TAXONOMY_LABELS[taxonomy_type]
    db = get_db()
    tree = taxonomy_tree()

    edit = None
    if request.method == "POST":
        form = _taxonomy_form_from_request()
        try:
            save_taxonomy(db, tree, taxonomy_type, form)
        except NotFoundError:
            abort(404)
        except FormError as exc:
            flash(str(exc))
            edit = form
        else:
            flash(f"{label} saved.")
            return redirect(url_for("admin_taxonomies", ttype=ttype))
    elif (edit_id := request.args.get("id", type=int)) is not None:
        node = tree.nodes.get(edit_id)
        if node is None or node.type is not taxonomy_type:
            abort(404)
        edit = {
            "id": node.id,
            "name": node.name,
            "slug": node.slug,
            "description": node.description,
            "parent_id": node.parent_id,
            "order": node.order,
            "status": node.status.value,
        }

    return render_template_string(
        TEMPL_ADMIN_TAXONOMY,
        title=get_title([f"{label} list", "Admin", site_name()]),
        ttype=taxonomy_type.value,
        label=label,
        rows=list(tree.walk(taxonomy_type, include_hidden=True)),
        hierarchical=taxonomy_type.hierarchical,
        edit=edit,
        broken=taxonomy_cache.last_error,
    )


@app.route("/admin/taxonomy/<ttype>/<int:taxonomy_id>/delete", methods=["POST"])
def admin_taxonomy_delete(ttype, taxonomy_id):
    login_required()
    taxonomy_type = _taxonomy_type_or_404(ttype)
    tree = taxonomy_tree()
    node = tree.nodes.get(taxonomy_id)
    if node is None or node.type is not taxonomy_type:
        abort(404)
    try:
        delete_taxonomy(get_db(), tree, node)
    except FormError as exc:
        flash(str(exc))
    else:
        flash(f"{TAXONOMY_LABELS[taxonomy_type]} “{node.name}” deleted.")
    return redirect(url_for("admin_taxonomies", ttype=ttype))


###############################################################################
# Admin – comments
###############################################################################
@app.route("/admin/comment", defaults={"page": 1})
@app.route("/admin/comment/page-<int:page>")
def admin_comments(page):
    login_required()
    db = get_db()
    status = request.args.get("status", "").strip()
    keyword = request.args.get("keyword", "").strip()

    where, params = ["1=1"], []
    if status in COMMENT_STATUSES:
        where.append("c.status=?")
        params.append(status)
    if keyword:
        where.append(
            "(c.content LIKE ? ESCAPE '\\' OR c.author LIKE ? ESCAPE '\\'"
            " OR c.email LIKE ? ESCAPE '\\')"
        )
        params.extend([_like(keyword)] * 3)
    where_sql = " AND ".join(where)

    total = db.execute(
        f"SELECT COUNT(*) FROM comment c WHERE {where_sql}", params
    ).fetchone()[0]
    pager = _paginate(total, page)
    comments = db.execute(
        f"""SELECT c.*, p.title AS post_title
              FROM comment c JOIN post p ON p.id = c.post_id
             WHERE {where_sql}
          ORDER BY c.created_at DESC, c.id DESC LIMIT ? OFFSET ?""",
        (*params, pager.page_size, pager.offset),
    ).fetchall()

    search_parts = [p for p in (keyword, COMMENT_STATUSES.get(status)) if p]
    titles = ["Comments", "Admin", site_name()]
    if search_parts:
        titles.insert(0, " | ".join(search_parts))
    if pager.current_page > 1:
        titles.insert(0, f"Page {pager.current_page}")
    return render_template_string(
        TEMPL_ADMIN_COMMENTS,
        title=get_title(titles),
        comments=comments,
        paginator=pager,
        link_url=url_for("admin_comments") + "/page-",
        link_param=_query(status=status, keyword=keyword),
        statuses=COMMENT_STATUSES,
        cur_status=status,
        cur_keyword=keyword,
    )


@app.route("/admin/comment/audit", methods=["POST"])
def admin_comment_audit():
    login_required()
    action = request.form.get("action", "").strip()
    if action not in COMMENT_STATUSES:
        abort(400)
    try:
        comment_id = int(request.form.get("comment_id", ""))
    except ValueError:
        abort(400)
    db = get_db()
    cur = db.execute("UPDATE comment SET status=? WHERE id=?", (action, comment_id))
    if cur.rowcount < 1:
        abort(404)
    db.commit()
    flash(f"Comment marked as {COMMENT_STATUSES[action].lower()}.")
    return redirect(request.referrer or url_for("admin_comments"))


###############################################################################
# Admin – links
###############################################################################
def _link_form_from_request() -> dict:
    try:
        order = int(request.form.get("order", "0").strip() or 0)
        taxonomy_id = int(request.form.get("taxonomy_id", "").strip() or 0)
        link_id = int(request.form.get("id", "").strip() or 0) or None
    except ValueError:
        abort(400)
    return {
        "id": link_id,
        "name": request.form.get("name", "").strip(),
        "url": request.form.get("url", "").strip(),
        "description": request.form.get("description", "").strip(),
        "scope": request.form.get("scope", ""),
        "status": request.form.get("status", "normal"),
        "target": request.form.get("target", ""),
        "order": order,
        "taxonomy_id": taxonomy_id,
    }


def save_link(db, tree: TaxonomyTree, form: dict) -> int:
    if not form["name"]:
        raise FormError("Name is required.")
    if len(form["name"]) > LINK_NAME_MAX:
        raise FormError(f"Name must be at most {LINK_NAME_MAX} characters.")
    if urlparse(form["url"]).scheme not in ("http", "https"):
        raise FormError("URL must start with http:// or https://.")
    if len(form["url"]) > LINK_URL_MAX:
        raise FormError(f"URL must be at most {LINK_URL_MAX} characters.")
    if not form["description"]:
        raise FormError("Description is required.")
    if len(form["description"]) > LINK_DESCRIPTION_MAX:
        raise FormError(f"Description must be at most {LINK_DESCRIPTION_MAX} characters.")
    if form["scope"] not in LINK_SCOPES:
        raise FormError("Choose where the link is shown.")
    if form["status"] not in LINK_STATUSES:
        raise FormError("Unknown status.")
    if form["target"] not in LINK_TARGETS:
        raise FormError("Choose how the link opens.")
    node = tree.nodes.get(form["taxonomy_id"])
    if node is None or node.type is not TaxonomyType.LINK:
        raise FormError("Choose a link category.")

    values = (
        form["name"],
        form["url"],
        form["description"],
        form["scope"],
        form["status"],
        form["target"],
        form["order"],
        form["taxonomy_id"],
    )
    try:
        if form["id"] is None:
            cur = db.execute(
                """INSERT INTO link
                          (name, url, description, scope, status, target,
                           link_order, taxonomy_id, created_at)
                   VALUES (?,?,?,?,?,?,?,?,?)""",
                (*values, _now_iso()),
            )
            link_id = cur.lastrowid
        else:
            cur = db.execute(
                """UPDATE link
                      SET name=?, url=?, description=?, scope=?, status=?, target=?,
                          link_order=?, taxonomy_id=?
                    WHERE id=?""",
                (*values, form["id"]),
            )
            if cur.rowcount < 1:
                raise FormError("Link does not exist.")
            link_id = form["id"]
        db.commit()
    except sqlite3.Error as exc:
        db.rollback()
        app.logger.exception("Saving link %r failed", form["name"])
        raise FormError("Link could not be saved.") from exc
    refresh_taxonomy_counts(db)
    return link_id


@app.route("/admin/link", methods=["GET", "POST"], defaults={"page": 1})
@app.route("/admin/link/page-<int:page>", methods=["GET", "POST"])
def admin_links(page):
    login_required()
    db = get_db()
    tree = taxonomy_tree()

    edit = None
    if request.method == "POST":
        form = _link_form_from_request()
        try:
            save_link(db, tree, form)
        except FormError as exc:
            flash(str(exc))
            edit = form
        else:
            flash("Link saved.")
            return redirect(url_for("admin_links"))
    elif (edit_id := request.args.get("id", type=int)) is not None:
        row = db.execute("SELECT * FROM link WHERE id=?", (edit_id,)).fetchone()
        if not row:
            abort(404)
        edit = dict(row)
        edit["order"] = edit.pop("link_order")

    total = db.execute("SELECT COUNT(*) FROM link").fetchone()[0]
    pager = _paginate(total, page)
    links = db.execute(
        """SELECT l.*, t.name AS category_name
             FROM link l LEFT JOIN taxonomy t ON t.id = l.taxonomy_id
         ORDER BY l.link_order DESC, l.id DESC LIMIT ? OFFSET ?""",
        (pager.page_size, pager.offset),
    ).fetchall()
    return render_template_string(
        TEMPL_ADMIN_LINKS,
        title=get_title(["Links", "Admin", site_name()]),
        links=links,
        paginator=pager,
        link_url=url_for("admin_links") + "/page-",
        link_param="",
        edit=edit,
        categories=list(tree.walk(TaxonomyType.LINK, include_hidden=True)),
        scopes=LINK_SCOPES,
        link_statuses=LINK_STATUSES,
        targets=LINK_TARGETS,
    )


@app.route("/admin/link/delete", methods=["POST"])
def admin_link_delete():
    login_required()
    try:
        ids = [int(v) for v in request.form.getlist("link_ids")]
    except ValueError:
        abort(400)
    if not ids:
        flash("Select the links to delete.")
        return redirect(url_for("admin_links"))
    db = get_db()
    db.execute(f"DELETE FROM link WHERE id IN ({_marks(ids)})", ids)
    db.commit()
    refresh_taxonomy_counts(db)
    flash(f"{len(ids)} link(s) deleted.")
    return redirect(url_for("admin_links"))


###############################################################################
# Settings
###############################################################################
@app.route("/settings", methods=["GET", "POST"])
def settings():
    login_required()
    db = get_db()

    if request.method == "POST" and request.form.get("action") == "rotate_token":
        session["one_time_token"] = _rotate_token(db)
        return redirect(url_for("settings") + "#new-token", code=303)

    if request.method == "POST":
        name = request.form.get("site_name", "").strip()
        if name:
            set_setting("site_name", name)
        for key in ("site_description", "site_keywords", "site_author"):
            set_setting(key, request.form.get(key, "").strip())

        username = request.form.get("username", "").strip()
        if username:
            db.execute("UPDATE user SET username=? WHERE id=1", (username,))
            db.commit()

        raw = request.form.get("page_size", "").strip()
        if raw.isdigit() and int(raw) > 0:
            set_setting("page_size", int(raw))
        elif raw:
            flash("Page size must be a positive number.")
            set_setting("page_size", PAGE_DEFAULT)

        flash("Settings saved.")
        return redirect(url_for("settings"))

    return render_template_string(
        TEMPL_SETTINGS,
        title=get_title(["Settings", site_name()]),
        username=current_username(),
        new_token=session.pop("one_time_token", None),
    )


###############################################################################
# Errors
###############################################################################
@app.errorhandler(404)
def not_found(exc):
    """Site-wide “Not Found” page."""
    return render_template_string(TEMPL_404, title=site_name()), 404


@app.errorhandler(500)
def internal_error(exc):
    return render_template_string(TEMPL_500, title=site_name()), 500


###############################################################################
# Templates
###############################################################################
# Expose helpers to templates
app.jinja_env.globals.update(
    csrf_token=_csrf_token,
    get_setting=get_setting,
    is_admin=is_admin,
    post_description=post_description,
    version=__version__,
)


def wrap(body: str) -> str:
    """Glue prolog + page-specific body + epilog."""
    return TEMPL_PROLOG + body + TEMPL_EPILOG


TEMPL_PROLOG = """
<!doctype html>
<html lang="en">
<title>{{ title or 'inkwell' }}</title>
<meta name="viewport" content="width=device-width, initial-scale=1">
<meta charset="utf-8">
<meta name="description" content="{{ description or get_setting('site_description', '') }}">
<meta name="keywords" content="{{ keywords or get_setting('site_keywords', '') }}">
<meta name="author" content="{{ get_setting('site_author', '') }}">
<style>
body{font:17px/1.6 -apple-system,BlinkMacSystemFont,"Segoe UI",Roboto,sans-serif;max-width:46em;margin:auto;padding:13px;color:#222}
a{color:#2a5db0;text-decoration:none}a:hover{text-decoration:underline}
nav.primary a{margin-right:1rem}nav.primary a[aria-current=page]{font-weight:700}
.crumbs{font-size:.9em;color:#666}.crumbs span[aria-current]{color:#222}
.pagebar{margin:2rem 0;display:flex;gap:.5rem;flex-wrap:wrap}.pagebar span[aria-current]{font-weight:700}
.meta{font-size:.85em;color:#777}.toast{background:#323232;color:#fff;padding:.6rem 1rem;border-radius:.3rem}
table{width:100%;border-collapse:collapse}td,th{padding:.4em;border-bottom:1px solid #ddd;text-align:left}
aside{margin-top:2rem;border-top:1px solid #ddd;font-size:.9em}
</style>
<body>
{% macro pagebar(p, link_url, link_param='') -%}
  {% if p and p.total_pages > 1 %}
  <nav class="pagebar" aria-label="Pagination">
    {% if p.has_prev %}<a href="{{ link_url }}{{ p.prev_page }}{{ link_param }}" rel="prev">&laquo; Prev</a>{% endif %}
    {% if p.show_first %}<a href="{{ link_url }}1{{ link_param }}">1</a><span>…</span>{% endif %}
    {% for n in p.display_range %}
      {% if n == p.current_page %}<span aria-current="page">{{ n }}</span>
      {% else %}<a href="{{ link_url }}{{ n }}{{ link_param }}">{{ n }}</a>{% endif %}
    {% endfor %}
    {% if p.show_last %}<span>…</span><a href="{{ link_url }}{{ p.total_pages }}{{ link_param }}">{{ p.total_pages }}</a>{% endif %}
    {% if p.has_next %}<a href="{{ link_url }}{{ p.next_page }}{{ link_param }}" rel="next">Next &raquo;</a>{% endif %}
  </nav>
  {% endif %}
{%- endmacro %}
{% macro breadcrumbs(crumbs) -%}
  {% if crumbs %}
  <nav class="crumbs" aria-label="Breadcrumb">
    {% for c in crumbs %}
      {% if c.is_current %}<span aria-current="page" title="{{ c.tooltip }}">{{ c.label }}</span>
      {% elif c.url %}<a href="{{ c.url }}" title="{{ c.tooltip }}">{{ c.label }}</a>
      {% else %}<span title="{{ c.tooltip }}">{{ c.label }}</span>{% endif %}
      {% if not loop.last %} &rsaquo; {% endif %}
    {% endfor %}
  </nav>
  {% endif %}
{%- endmacro %}
<header>
  <h1 style="margin-bottom:.3rem"><a href="{{ url_for('index') }}">{{ get_setting('site_name', 'inkwell') }}</a></h1>
  <nav class="primary" aria-label="Primary">
    <a href="{{ url_for('index') }}" {% if cur_nav == 'index' %}aria-current="page"{% endif %}>Home</a>
    {% for c in nav_categories|default([]) %}
      <a href="{{ url_for('category', slug=c.slug) }}" {% if cur_nav == c.slug %}aria-current="page"{% endif %}>{{ c.name }}</a>
    {% endfor %}
    <a href="{{ url_for('archive_list') }}" {% if cur_nav == 'archive' %}aria-current="page"{% endif %}>Archive</a>
    {% if is_admin() %}
      <a href="{{ url_for('admin_posts') }}">Posts</a>
      <a href="{{ url_for('admin_taxonomies', ttype='post') }}">Categories</a>
      <a href="{{ url_for('admin_taxonomies', ttype='tag') }}">Tags</a>
      <a href="{{ url_for('admin_comments') }}">Comments</a>
      <a href="{{ url_for('admin_links') }}">Links</a>
      <a href="{{ url_for('settings') }}">Settings</a>
      <a href="{{ url_for('logout') }}">Logout</a>
    {% else %}
      <a href="{{ url_for('login') }}">Login</a>
    {% endif %}
  </nav>
</header>
{% with msgs = get_flashed_messages() %}
{% if msgs %}
  <div role="status" class="toast">{% for m in msgs %}{{ m }}{% if not loop.last %}<br>{% endif %}{% endfor %}</div>
{% endif %}
{% endwith %}
<main id="main-content">
"""

TEMPL_EPILOG = """
</main>
{% if friend_links or quick_links %}
<aside>
  {% if quick_links %}
  <h4>Quick links</h4>
  <ul>{% for l in quick_links %}<li><a href="{{ l.url }}" target="{{ l.target }}" title="{{ l.description }}">{{ l.name }}</a></li>{% endfor %}</ul>
  {% endif %}
  {% if friend_links %}
  <h4>Friends</h4>
  <ul>{% for l in friend_links %}<li><a href="{{ l.url }}" target="{{ l.target }}" title="{{ l.description }}">{{ l.name }}</a></li>{% endfor %}</ul>
  {% endif %}
</aside>
{% endif %}
<footer class="meta" style="margin-top:2rem">Built with inkwell v{{ version }}</footer>
</body>
</html>
"""

TEMPL_LIST = wrap("""
{% block body %}
  {{ breadcrumbs(crumbs) }}
  <form action="{{ url_for('index') }}" method="get">
    <input type="search" name="keyword" aria-label="Search posts" placeholder="Search"
           value="{{ request.args.get('keyword', '') }}">
  </form>
  {% for p in posts %}
  <article class="post">
    <h2><a href="{{ url_for('post_detail', post_id=p.id) }}">{{ p.title }}</a></h2>
    <div class="meta">
      {{ p.created_at|day }} · {{ p.view_count }} views ·
      {{ comment_counts.get(p.id, 0) }} comments
      {% if p.status != 'publish' %} · <strong>{{ p.status }}</strong>{% endif %}
    </div>
    <p>{{ post_description(p) }}</p>
  </article>
  {% else %}
  <p>No posts yet.</p>
  {% endfor %}
  {{ pagebar(paginator, link_url, link_param) }}
{% endblock %}
""")

TEMPL_ARCHIVES = wrap("""
{% block body %}
  {{ breadcrumbs(crumbs) }}
  {% for y in years %}
    <h3><a href="{{ url_for('archive', year=y.year|int) }}">{{ y.year }}</a> ({{ y.count }})</h3>
    <ul>
    {% for m in y.months %}
      <li><a href="{{ url_for('archive', year=y.year|int, month=m.month|int) }}">{{ y.year }}-{{ m.month }}</a> ({{ m.count }})</li>
    {% endfor %}
    </ul>
  {% else %}
    <p>Nothing archived yet.</p>
  {% endfor %}
{% endblock %}
""")

TEMPL_POST = wrap("""
{% block body %}
  {{ breadcrumbs(crumbs) }}
  <article>
    <h2>{{ post.title }}</h2>
    <div class="meta">
      {{ post.created_at|day }} · {{ post.view_count + 1 }} views ·
      {% for c in categories %}<a href="{{ url_for('category', slug=c.slug) }}">{{ c.name }}</a>{% if not loop.last %}, {% endif %}{% endfor %}
      {% if post.status != 'publish' %} · <strong>{{ post.status }}</strong>{% endif %}
      {% if is_admin() %} · <a href="{{ url_for('admin_post_form', post_id=post.id) }}">Edit</a>{% endif %}
    </div>
    <div class="e-content">{{ post.body|md }}</div>
    {% if tags %}
    <p class="meta">Tags:
      {% for t in tags %}<a href="{{ url_for('tag', slug=t.slug) }}">#{{ t.name }}</a> {% endfor %}
    </p>
    {% endif %}
    <p class="meta">Share: <a href="{{ share_url }}">{{ share_url }}</a></p>
  </article>
  <nav class="meta">
    {% if prev_post %}<a href="{{ url_for('post_detail', post_id=prev_post.id) }}" rel="prev">&laquo; {{ prev_post.title }}</a>{% endif %}
    {% if next_post %}<a href="{{ url_for('post_detail', post_id=next_post.id) }}" rel="next" style="float:right">{{ next_post.title }} &raquo;</a>{% endif %}
  </nav>
  <section id="comments">
    <h3>Comments ({{ comments|length }})</h3>
    {% for c in comments %}
      <div class="comment">
        <div class="meta">{{ c.author }} · {{ c.created_at|day }}</div>
        <p>{{ c.content }}</p>
      </div>
    {% endfor %}
    <form method="post" action="{{ url_for('add_comment', post_id=post.id) }}">
      {% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
      <input name="author" placeholder="Name" required maxlength="50">
      <input name="email" type="email" placeholder="Email" required>
      <textarea name="content" rows="4" placeholder="Comment" required></textarea>
      <button type="submit">Post comment</button>
    </form>
  </section>
{% endblock %}
""")

TEMPL_LOGIN = wrap("""
{% block body %}
<form method="post" id="token-form">
  {% if csrf_token() %}<input type="hidden" name="csrf" value="{{ csrf_token() }}">{% endif %}
  <label for="token">Token</label>
  <input id="token" name="token" type="password" autocomplete="current-password" style="width:100%">
  <button type="submit">Sign in with Token</button>
</form>
{% endblock %}
""")

TEMPL_ADMIN_POSTS = wrap("""
{% block body %}
  <h2>Posts <a href="{{ url_for('admin_post_form') }}" style="font-size:.6em">+ New</a></h2>
  <form method="get" action="{{ url_for('admin_posts') }}">
    <select name="status">
      <option value="">All statuses</option>
      {% for k, v in statuses.items() %}<option value="{{ k }}" {% if k == cur_status %}selected{% endif %}>{{ v }}</option>{% endfor %}
    </select>
    <input type="search" name="keyword" value="{{ cur_keyword }}" placeholder="Keyword">
    <button type="submit">Filter</button>
  </form>
  <table>
    <tr><th>Title</th><th>Status</th><th>Created</th><th>Views</th><th></th></tr>
    {% for p in posts %}
    <tr>
      <td><a href="{{ url_for('post_detail', post_id=p.id) }}">{{ p.title }}</a></td>
      <td>{{ statuses[p.status] }}</td>
      <td>{{ p.created_at|day }}</td>
      <td>{{ p.view_count }}</td>
      <td>
        <a href="{{ url_for('admin_post_form', post_id=p.id) }}">Edit</a>
        {% if p.status != 'trash' %}
        <form method="post" action="{{ url_for('admin_post_delete', post_id=p.id) }}" style="display:inline">
          <input type="hidden" name="csrf" value="{{ csrf_token() }}">
          <button type="submit">Delete</button>
        </form>
        {% endif %}
      </td>
    </tr>
    {% else %}
    <tr><td colspan="5">No posts.</td></tr>
    {% endfor %}
  </table>
  {{ pagebar(paginator, link_url, link_param) }}
{% endblock %}
""")

TEMPL_ADMIN_POST_FORM = wrap("""
{% block body %}
  <h2>{{ 'Edit post' if post else 'New post' }}</h2>
  <form method="post">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <label>Title <input name="title" value="{{ form.title }}" style="width:100%"></label>
    <label>Content (Markdown)<textarea name="body" rows="14" style="width:100%">{{ form.body }}</textarea></label>
    <label>Excerpt<textarea name="excerpt" rows="3" style="width:100%">{{ form.excerpt }}</textarea></label>
    <label>Status
      <select name="status">
        {% for k, v in statuses.items() %}<option value="{{ k }}" {% if k == form.status %}selected{% endif %}>{{ v }}</option>{% endfor %}
      </select>
    </label>
    <label>Categories
      <select name="category" multiple size="8">
        {% for node, depth in categories %}
        <option value="{{ node.id }}" {% if node.id in form.category_ids %}selected{% endif %}>
          {{ '— ' * depth }}{{ node.name }}{% if node.hidden %} (hidden){% endif %}
        </option>
        {% endfor %}
      </select>
    </label>
    <label>Tags (comma separated) <input name="tags" value="{{ form.tags|join(', ') }}" style="width:100%"></label>
    <button type="submit">Save</button>
  </form>
{% endblock %}
""")

TEMPL_ADMIN_TAXONOMY = wrap("""
{% block body %}
  <h2>{{ label }} list</h2>
  {% if broken %}
    <p class="toast">The taxonomy table is inconsistent and the last change was not applied: {{ broken }}</p>
  {% endif %}
  <table>
    <tr><th>Name</th><th>Slug</th><th>Status</th><th>Order</th><th>Count</th><th></th></tr>
    {% for node, depth in rows %}
    <tr>
      <td>{{ '— ' * depth }}{{ node.name }}</td>
      <td>{{ node.slug }}</td>
      <td>{{ node.status.value }}</td>
      <td>{{ node.order }}</td>
      <td>{{ node.count }}</td>
      <td>
        <a href="{{ url_for('admin_taxonomies', ttype=ttype, id=node.id) }}">Edit</a>
        {% if not node.required %}
        <form method="post" action="{{ url_for('admin_taxonomy_delete', ttype=ttype, taxonomy_id=node.id) }}" style="display:inline">
          <input type="hidden" name="csrf" value="{{ csrf_token() }}">
          <button type="submit">Delete</button>
        </form>
        {% endif %}
      </td>
    </tr>
    {% else %}
    <tr><td colspan="6">Nothing here yet.</td></tr>
    {% endfor %}
  </table>

  <h3>{{ 'Edit' if edit and edit.id else 'New' }} {{ label|lower }}</h3>
  <form method="post" action="{{ url_for('admin_taxonomies', ttype=ttype) }}">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    {% if edit and edit.id %}<input type="hidden" name="id" value="{{ edit.id }}">{% endif %}
    <label>Name <input name="name" value="{{ edit.name if edit else '' }}"></label>
    <label>Slug <input name="slug" value="{{ edit.slug if edit else '' }}"></label>
    <label>Description <input name="description" value="{{ edit.description if edit else '' }}"></label>
    {% if hierarchical %}
    <label>Parent
      <select name="parent_id">
        <option value="">(none)</option>
        {% for node, depth in rows %}
        <option value="{{ node.id }}" {% if edit and edit.parent_id == node.id %}selected{% endif %}>{{ '— ' * depth }}{{ node.name }}</option>
        {% endfor %}
      </select>
    </label>
    {% endif %}
    <label>Order <input name="order" type="number" value="{{ edit.order if edit else 0 }}"></label>
    <label>Status
      <select name="status">
        <option value="publish">Published</option>
        <option value="hidden" {% if edit and edit.status == 'hidden' %}selected{% endif %}>Hidden</option>
      </select>
    </label>
    <button type="submit">Save</button>
  </form>
{% endblock %}
""")

TEMPL_ADMIN_COMMENTS = wrap("""
{% block body %}
  <h2>Comments</h2>
  <form method="get" action="{{ url_for('admin_comments') }}">
    <select name="status">
      <option value="">All statuses</option>
      {% for k, v in statuses.items() %}<option value="{{ k }}" {% if k == cur_status %}selected{% endif %}>{{ v }}</option>{% endfor %}
    </select>
    <input type="search" name="keyword" value="{{ cur_keyword }}" placeholder="Keyword">
    <button type="submit">Filter</button>
  </form>
  <table>
    <tr><th>Author</th><th>Comment</th><th>Post</th><th>Status</th><th></th></tr>
    {% for c in comments %}
    <tr>
      <td>{{ c.author }}<br><span class="meta">{{ c.email }}</span></td>
      <td>{{ c.content }}</td>
      <td><a href="{{ url_for('post_detail', post_id=c.post_id) }}">{{ c.post_title }}</a></td>
      <td>{{ statuses[c.status] }}</td>
      <td>
        <form method="post" action="{{ url_for('admin_comment_audit') }}">
          <input type="hidden" name="csrf" value="{{ csrf_token() }}">
          <input type="hidden" name="comment_id" value="{{ c.id }}">
          <select name="action">
            {% for k, v in statuses.items() %}<option value="{{ k }}" {% if k == c.status %}selected{% endif %}>{{ v }}</option>{% endfor %}
          </select>
          <button type="submit">Apply</button>
        </form>
      </td>
    </tr>
    {% else %}
    <tr><td colspan="5">No comments.</td></tr>
    {% endfor %}
  </table>
  {{ pagebar(paginator, link_url, link_param) }}
{% endblock %}
""")

TEMPL_ADMIN_LINKS = wrap("""
{% block body %}
  <h2>Links</h2>
  <form method="post" action="{{ url_for('admin_link_delete') }}">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <table>
      <tr><th></th><th>Name</th><th>URL</th><th>Category</th><th>Scope</th><th>Status</th><th>Order</th><th></th></tr>
      {% for l in links %}
      <tr>
        <td><input type="checkbox" name="link_ids" value="{{ l.id }}"></td>
        <td>{{ l.name }}</td>
        <td>{{ l.url }}</td>
        <td>{{ l.category_name }}</td>
        <td>{{ scopes[l.scope] }}</td>
        <td>{{ link_statuses[l.status] }}</td>
        <td>{{ l.link_order }}</td>
        <td><a href="{{ url_for('admin_links', id=l.id) }}">Edit</a></td>
      </tr>
      {% else %}
      <tr><td colspan="8">No links.</td></tr>
      {% endfor %}
    </table>
    <button type="submit">Delete selected</button>
  </form>
  {{ pagebar(paginator, link_url, link_param) }}

  <h3>{{ 'Edit' if edit and edit.id else 'New' }} link</h3>
  <form method="post" action="{{ url_for('admin_links') }}">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    {% if edit and edit.id %}<input type="hidden" name="id" value="{{ edit.id }}">{% endif %}
    <label>Name <input name="name" value="{{ edit.name if edit else '' }}"></label>
    <label>URL <input name="url" value="{{ edit.url if edit else '' }}"></label>
    <label>Description <input name="description" value="{{ edit.description if edit else '' }}"></label>
    <label>Category
      <select name="taxonomy_id">
        {% for node, depth in categories %}
        <option value="{{ node.id }}" {% if edit and edit.taxonomy_id == node.id %}selected{% endif %}>{{ '— ' * depth }}{{ node.name }}</option>
        {% endfor %}
      </select>
    </label>
    <label>Scope
      <select name="scope">{% for k, v in scopes.items() %}<option value="{{ k }}" {% if edit and edit.scope == k %}selected{% endif %}>{{ v }}</option>{% endfor %}</select>
    </label>
    <label>Status
      <select name="status">{% for k, v in link_statuses.items() %}<option value="{{ k }}" {% if edit and edit.status == k %}selected{% endif %}>{{ v }}</option>{% endfor %}</select>
    </label>
    <label>Open in
      <select name="target">{% for t in targets %}<option value="{{ t }}" {% if edit and edit.target == t %}selected{% endif %}>{{ t }}</option>{% endfor %}</select>
    </label>
    <label>Order <input name="order" type="number" value="{{ edit.order if edit else 0 }}"></label>
    <button type="submit">Save</button>
  </form>
{% endblock %}
""")

TEMPL_SETTINGS = wrap("""
{% block body %}
  <h2>Settings</h2>
  <form method="post">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <label>Site name <input name="site_name" value="{{ get_setting('site_name', '') }}"></label>
    <label>Description <input name="site_description" value="{{ get_setting('site_description', '') }}"></label>
    <label>Keywords <input name="site_keywords" value="{{ get_setting('site_keywords', '') }}"></label>
    <label>Author <input name="site_author" value="{{ get_setting('site_author', '') }}"></label>
    <label>Username <input name="username" value="{{ username }}"></label>
    <label>Posts per page <input name="page_size" type="number" min="1"
           value="{{ get_setting('page_size', PAGE_DEFAULT) }}"></label>
    <button type="submit">Save</button>
  </form>
  <form method="post">
    <input type="hidden" name="csrf" value="{{ csrf_token() }}">
    <input type="hidden" name="action" value="rotate_token">
    <button type="submit">Rotate login token</button>
  </form>
  {% if new_token %}
    <p id="new-token">New one-time token (valid for 1 minute): <code>{{ new_token }}</code></p>
  {% endif %}
{% endblock %}
""")

TEMPL_404 = wrap("""
{% block body %}
  <h2>Page not found</h2>
  <p>The URL you asked for doesn’t exist.
     <a href="{{ url_for('index') }}">Back to the front page</a>.</p>
{% endblock %}
""")

TEMPL_500 = wrap("""
{% block body %}
  <h2>Internal Server Error</h2>
  <p>Our fault, not yours. Please try again in a minute.</p>
{% endblock %}
""")

app.jinja_env.globals["PAGE_DEFAULT"] = PAGE_DEFAULT
