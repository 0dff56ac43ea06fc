import crud
import main
import pytest
from config import ADMIN_COOKIE

BROWSER_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256))


def upload(client, filename, data, qr=False):
    return client.post(
        "/api/upload",
        files={"content": (filename, data, "application/octet-stream")},
        data={"qr_required": "true" if qr else "false"},
    )


def shorten(client, link, qr=False):
    return client.post("/api/upload", data={"content": link, "qr_required": "true" if qr else "false"})


def code_of(response):
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["short_url"] == f"http://testserver/s/{body['code']}"
    return body["code"]


# ---------- links ----------

def test_link_round_trip(client):
    target = "https://example.com/a/b?c=d&e=f#g"
    code = code_of(shorten(client, target))

    for path in (f"/s/{code}", f"/resolve/{code}"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 308
        assert response.headers["location"] == target


@pytest.mark.parametrize(
    "target",
    [
        "https://example.com/a|b",
        "https://example.com/{x}",
        "https://example.com/a^b",
        'https://example.com/"y"',
        "https://example.com/`z`",
    ],
)
def test_redirect_location_is_the_stored_url_unchanged(client, target):
    code = code_of(shorten(client, target))

    response = client.get(f"/s/{code}", follow_redirects=False)
    assert response.status_code == 308
    assert response.headers["location"] == target


def test_non_ascii_location_is_sent_as_utf8():
    target = "https://example.com/ünïcode?q=ä"
    response = main.permanent_redirect(target)
    assert response.status_code == 308
    assert (b"location", target.encode("utf-8")) in response.raw_headers


@pytest.mark.parametrize("link", ["https://example.com/a\nb", "https://example.com/a\rb", "https://example.com/a\x7fb"])
def test_links_with_control_characters_are_rejected(client, link):
    response = shorten(client, link)
    assert response.status_code == 400
    assert response.json()["error"] == "URL contains control characters"


def test_link_with_qr(client):
    body = shorten(client, "https://example.com", qr=True).json()
    assert body["qr_code_data"].startswith("data:image/svg+xml;utf8,")

    assert shorten(client, "https://example.com").json()["qr_code_data"] is None


@pytest.mark.parametrize("link", ["example.com", "ftp://example.com/file", "https://" + "a" * 2050])
def test_invalid_links_are_rejected(client, link):
    response = shorten(client, link)
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_empty_submission(client):
    response = client.post("/api/upload", data={"content": "   "})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Provide content or file"}


def test_unknown_code_is_404(client):
    assert client.get("/s/nothere0", follow_redirects=False).status_code == 404
    assert client.get("/r/nothere0").status_code == 404
    assert client.get("/qr/nothere0").status_code == 404


# ---------- files ----------

def test_uploaded_file_is_served_unchanged(client, stored_files):
    code = code_of(upload(client, "report.pdf", b"%PDF-1.4 content"))
    [name] = stored_files()

    info = client.get(f"/s/{code}", headers={"Accept": BROWSER_ACCEPT})
    assert info.status_code == 200
    assert f"http://testserver/files/{name}" in info.text
    assert "application/pdf" in info.text

    served = client.get(f"/files/{name}")
    assert served.status_code == 200
    assert served.content == b"%PDF-1.4 content"
    assert served.headers["content-type"] == "application/pdf"


def test_image_content_negotiation(client, stored_files):
    code = code_of(upload(client, "cat.png", PNG_BYTES))
    [name] = stored_files()
    image_url = f"http://testserver/files/{name}"

    page = client.get(f"/s/{code}", headers={"Accept": BROWSER_ACCEPT})
    assert page.status_code == 200
    assert f'<meta property="og:image" content="{image_url}">' in page.text

    direct = client.get(f"/s/{code}", headers={"Accept": "image/*"}, follow_redirects=False)
    assert direct.status_code == 308
    assert direct.headers["location"] == image_url

    assert client.get(direct.headers["location"]).content == PNG_BYTES


def test_upload_size_boundary(client, stored_files, settings):
    max_bytes = settings.max_upload_bytes
    assert upload(client, "exact.txt", b"x" * max_bytes).status_code == 200
    assert len(stored_files()) == 1

    response = upload(client, "over.txt", b"x" * (max_bytes + 1))
    assert response.status_code == 413
    assert response.json()["success"] is False
    assert len(stored_files()) == 1


def test_failed_entry_insert_leaves_no_file(client, db, stored_files, monkeypatch):
    crud.insert_item(db, "AAAAAAAA", "url", "https://example.com/taken")
    create_item = crud.create_item

    def always_colliding(db, kind, value):
        return create_item(db, kind, value, generate=lambda: "AAAAAAAA")

    monkeypatch.setattr(crud, "create_item", always_colliding)

    response = upload(client, "doc.pdf", b"data")
    assert response.status_code == 500
    assert response.json() == {"success": False, "error": "Server error"}
    assert stored_files() == []


def test_disallowed_extension(client, stored_files):
    response = upload(client, "setup.exe", b"MZ")
    assert response.status_code == 400
    assert response.json()["error"] == "File type '.exe' not allowed"
    assert stored_files() == []


@pytest.mark.parametrize("name", ["missing0000000000000000000000000.txt", "..%2Fconftest.py", "test.db"])
def test_files_route_only_serves_generated_names(client, name):
    assert client.get(f"/files/{name}").status_code == 404


def test_upload_with_qr(client):
    body = upload(client, "a.txt", b"hi", qr=True).json()
    assert body["qr_code_data"].startswith("data:image/svg+xml;utf8,")


# ---------- form flow ----------

def test_submit_link_form(client):
    response = client.post(
        "/submit", data={"link": "https://example.com/form", "qr": "on"}, follow_redirects=False
    )
    assert response.status_code == 303
    location = response.headers["location"]
    assert location.startswith("/r/") and location.endswith("?qr=1")

    page = client.get(location)
    code = location[len("/r/"):-len("?qr=1")]
    assert page.status_code == 200
    assert f"http://testserver/s/{code}" in page.text
    assert "<svg" in page.text


def test_submit_file_form(client, stored_files):
    response = client.post(
        "/submit",
        data={"link": ""},
        files={"file": ("pic.jpg", b"jpegdata", "image/jpeg")},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("?qr=0")
    assert len(stored_files()) == 1

    page = client.get(response.headers["location"])
    assert "<svg" not in page.text


def test_submit_nothing(client):
    response = client.post("/submit", data={"link": ""})
    assert response.status_code == 400


def test_qr_endpoint(client):
    code = code_of(shorten(client, "https://example.com"))
    body = client.get(f"/qr/{code}").json()
    assert body["qr_base64"]
    assert body["qr_svg"].startswith("<svg")


def test_index_and_health(client):
    assert 'action="/submit"' in client.get("/").text
    assert client.get("/health").json()["status"] == "ok"


# ---------- admin ----------

def test_admin_bootstrap_then_authenticate(client, login):
    first = login("alice", "secret1")
    assert first.status_code == 200
    assert client.cookies.get(ADMIN_COOKIE)
    assert "httponly" in first.headers["set-cookie"].lower()

    client.cookies.clear()
    assert login("alice", "wrongpass").status_code == 401
    assert client.cookies.get(ADMIN_COOKIE) is None

    assert login("alice", "secret1").status_code == 200
    response = client.get("/admin/items")
    assert response.status_code == 200
    assert response.json()["total"] == 0


def test_admin_requires_session(client):
    assert client.get("/admin/items").status_code == 401
    assert client.delete("/admin/items/whatever").status_code == 401
    assert client.get("/admin/items", headers={"Cookie": f"{ADMIN_COOKIE}=forged"}).status_code == 401


def test_admin_list(client, login):
    codes = {code_of(shorten(client, f"https://example.com/{i}")) for i in range(3)}
    login()

    body = client.get("/admin/items", params={"limit": 2}).json()
    assert body["total"] == 3
    assert body["limit"] == 2
    assert len(body["items"]) == 2
    assert {item["code"] for item in body["items"]} <= codes

    assert client.get("/admin/items", params={"limit": 501}).status_code == 422


def test_admin_delete_file_entry(client, login, stored_files):
    code = code_of(upload(client, "doc.pdf", b"data"))
    assert len(stored_files()) == 1
    login()

    response = client.delete(f"/admin/items/{code}")
    assert response.status_code == 200
    assert response.json()["file_removed"] is True
    assert stored_files() == []
    assert client.get(f"/s/{code}", follow_redirects=False).status_code == 404

    assert client.delete(f"/admin/items/{code}").status_code == 404


def test_admin_delete_reports_missing_file(client, login, stored_files, settings):
    code = code_of(upload(client, "doc.pdf", b"data"))
    [name] = stored_files()
    (settings.upload_dir / name).unlink()
    login()

    body = client.delete(f"/admin/items/{code}").json()
    assert body["ok"] is True
    assert body["file_removed"] is False
    assert "could not be removed" in body["detail"]


def test_logout_invalidates_session(client, login):
    login()
    token = client.cookies.get(ADMIN_COOKIE)

    assert client.post("/admin/logout").status_code == 200
    assert client.post("/admin/logout").status_code == 200

    client.cookies.clear()
    response = client.get("/admin/items", headers={"Cookie": f"{ADMIN_COOKIE}={token}"})
    assert response.status_code == 401


def test_missing_credentials_are_a_client_error(client):
    response = client.post("/admin/login", data={"username": "alice"})
    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Username and password are required"}
    assert client.cookies.get(ADMIN_COOKIE) is None


# ---------- admin pages ----------

def test_admin_pages_send_visitors_to_login(client):
    for path in ("/admin", "/admin/entries"):
        response = client.get(path, follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"] == "/admin/login"

    response = client.post("/admin/entries/whatever/delete", follow_redirects=False)
    assert response.headers["location"] == "/admin/login"

    assert 'action="/admin/login"' in client.get("/admin/login").text


def test_admin_login_page_reports_failures(client, login):
    login("alice", "secret1")
    client.cookies.clear()

    def submit(username, password):
        return client.post(
            "/admin/login",
            data={"username": username, "password": password},
            headers={"Accept": BROWSER_ACCEPT},
            follow_redirects=False,
        )

    wrong = submit("alice", "wrongpass")
    assert wrong.status_code == 401
    assert "Invalid credentials" in wrong.text
    assert 'action="/admin/login"' in wrong.text

    empty = submit("alice", "")
    assert empty.status_code == 400
    assert "Username and password are required" in empty.text
    assert client.cookies.get(ADMIN_COOKIE) is None


def test_admin_browser_flow(client, stored_files):
    link_code = code_of(shorten(client, "https://example.com/listed"))
    file_code = code_of(upload(client, "doc.pdf", b"data"))

    response = client.post(
        "/admin/login",
        data={"username": "alice", "password": "secret1"},
        headers={"Accept": BROWSER_ACCEPT},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"] == "/admin"
    assert client.cookies.get(ADMIN_COOKIE)

    assert 'href="/admin/entries"' in client.get("/admin").text
    entries = client.get("/admin/entries").text
    assert link_code in entries and file_code in entries
    assert "https://example.com/listed" in entries

    response = client.post(f"/admin/entries/{file_code}/delete", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/admin/entries"
    assert stored_files() == []
    assert file_code not in client.get("/admin/entries").text

    response = client.post("/admin/logout", headers={"Accept": BROWSER_ACCEPT}, follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/admin/login"
    assert client.get("/admin", follow_redirects=False).status_code == 303
