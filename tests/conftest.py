"""Shared fixtures: an in-memory address book server.

The fake serves both the admin REST API and a small CardDAV subset over
``httpx.MockTransport``. CardDAV requests must carry valid Digest
credentials with an increasing nonce count, so the real client stack is
exercised end to end.
"""

import hashlib
import json
import secrets
from urllib.parse import unquote
from urllib.request import parse_http_list

import httpx
import pytest
import vobject
from lxml import etree

from py_mabctl.admin import AdminClient
from py_mabctl.booktoken import book_token
from py_mabctl.cardclient import CardClient
from py_mabctl.config import Config
from py_mabctl.digest import DigestSession

DAV = "DAV:"
CARD = "urn:ietf:params:xml:ns:carddav"
NSMAP = {"d": DAV, "card": CARD}

DAV_URL = "https://mab.example.org/dav.php"
ADMIN_URL = "https://mab.example.org:4443/bcc"
REALM = "BaikalDAV"
API_KEY = "test-api-key"


def _md5(data: str) -> str:
    return hashlib.md5(data.encode("utf-8")).hexdigest()


def _d(tag: str) -> str:
    return f"{{{DAV}}}{tag}"


def _c(tag: str) -> str:
    return f"{{{CARD}}}{tag}"


class FakeServer:
    """In-memory users, books and cards behind an admin API and CardDAV."""

    def __init__(self, dav_classes: str = "1, 3, addressbook"):
        self.dav_classes = dav_classes
        self.users: dict[str, dict] = {}
        self.nonce = secrets.token_hex(8)
        self.nonce_counts: dict[tuple[str, str], int] = {}
        self.dav_requests: list[tuple[str, str]] = []
        self.admin_requests: list[httpx.Request] = []
        self.fail_puts: set[str] = set()
        self.etag = 0

    # Direct state setup

    def add_user(self, username: str, password: str, displayname: str = "") -> None:
        self.users[username] = {
            "password": password,
            "displayname": displayname or username,
            "books": {"default": {"name": "default", "description": "Default Address Book", "cards": {}}},
        }

    def add_book(self, username: str, bookname: str, description: str = "") -> str:
        token = book_token(username, bookname)
        self.users[username]["books"][token] = {
            "name": bookname,
            "description": description or bookname,
            "cards": {},
        }
        return token

    def add_card(self, username: str, bookname: str, email: str) -> str:
        card = vobject.vCard()
        uid = secrets.token_hex(8)
        card.add("version").value = "3.0"
        card.add("uid").value = uid
        card.add("fn").value = email
        card.add("email").value = email
        self._store(username, book_token(username, bookname), f"{uid}.vcf", card.serialize())
        return uid

    def emails(self, username: str, bookname: str) -> list[str]:
        book = self.users[username]["books"][book_token(username, bookname)]
        return sorted(str(vobject.readOne(c["data"]).email.value) for c in book["cards"].values())

    def snapshot(self) -> dict:
        """Users mapped to their books mapped to the set of emails."""
        return {
            username: {book["name"]: set(self.emails(username, book["name"])) for book in user["books"].values()}
            for username, user in self.users.items()
        }

    def _store(self, username: str, token: str, filename: str, data: str) -> str:
        self.etag += 1
        etag = f"etag-{self.etag}"
        self.users[username]["books"][token]["cards"][filename] = {"data": data, "etag": etag}
        return etag

    # Transports

    def admin_transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.admin_handler)

    def dav_transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.dav_handler)

    # Admin API

    def admin_handler(self, request: httpx.Request) -> httpx.Response:
        self.admin_requests.append(request)
        if request.headers.get("x-api-key") != API_KEY:
            return httpx.Response(401, json={"success": False, "message": "bad api key", "request": ""})

        path = request.url.path.removeprefix("/bcc")
        method = request.method
        data = json.loads(request.content) if request.content else {}

        def ok(message: str, **extra) -> httpx.Response:
            return httpx.Response(
                200, json={"success": True, "message": message, "request": f"{method} {path}", **extra}
            )

        def fail(code: int, message: str) -> httpx.Response:
            return httpx.Response(
                code, json={"success": False, "message": message, "request": f"{method} {path}"}
            )

        if (method, path) == ("GET", "/users/"):
            users = [
                {"username": u, "displayname": v["displayname"], "uri": f"principals/{u}"}
                for u, v in self.users.items()
            ]
            return ok(f"users: {len(users)}", users=users)

        if method == "GET" and path.startswith("/books/"):
            username = unquote(path[len("/books/"):].strip("/"))
            if username and username not in self.users:
                return fail(404, f"unknown user: {username}")
            names = [username] if username else list(self.users)
            books = [
                {
                    "username": u,
                    "bookname": b["name"],
                    "description": b["description"],
                    "contacts": len(b["cards"]),
                    "token": token,
                    "uri": f"{DAV_URL}/addressbooks/{u}/{token}/",
                }
                for u in names
                for token, b in self.users[u]["books"].items()
            ]
            return ok(f"books: {len(books)}", books=books)

        if (method, path) == ("POST", "/user/"):
            username = data["username"]
            if username in self.users:
                return fail(409, f"user exists: {username}")
            self.add_user(username, data["password"], data["displayname"])
            return ok(f"added user {username}", user={"username": username, "displayname": data["displayname"]})

        if (method, path) == ("DELETE", "/user/"):
            if self.users.pop(data["username"], None) is None:
                return fail(404, f"unknown user: {data['username']}")
            return ok(f"deleted user {data['username']}")

        if (method, path) == ("POST", "/book/"):
            username = data["username"]
            if username not in self.users:
                return fail(404, f"unknown user: {username}")
            token = self.add_book(username, data["bookname"], data["description"])
            return ok(
                f"added book {data['bookname']}",
                book={"username": username, "bookname": data["bookname"], "token": token},
            )

        if (method, path) == ("DELETE", "/book/"):
            books = self.users.get(data["username"], {}).get("books", {})
            if books.pop(data["token"], None) is None:
                return fail(404, f"unknown book: {data['token']}")
            return ok(f"deleted book {data['token']}")

        if method == "GET" and path.startswith("/password/"):
            username = unquote(path[len("/password/"):].strip("/"))
            if username not in self.users:
                return fail(404, f"unknown user: {username}")
            return ok("password", username=username, password=self.users[username]["password"])

        if (method, path) == ("GET", "/accounts/"):
            return ok("accounts", accounts={u: v["password"] for u, v in self.users.items()})

        if (method, path) == ("POST", "/accounts/"):
            for username, password in data["accounts"].items():
                if username in self.users:
                    self.users[username]["password"] = password
            return ok("accounts", accounts={u: v["password"] for u, v in self.users.items()})

        if (method, path) == ("GET", "/status/"):
            return ok("status", status={"users": str(len(self.users))})

        if method in ("GET", "POST") and path in ("/uptime/", "/initialize/", "/reset/", "/shutdown/"):
            return ok(path.strip("/"))

        return fail(404, "not found")

    # CardDAV

    def _challenge(self, stale: bool = False) -> httpx.Response:
        header = f'Digest realm="{REALM}", nonce="{self.nonce}", qop="auth", algorithm=MD5'
        if stale:
            header += ", stale=true"
        return httpx.Response(401, headers={"WWW-Authenticate": header})

    def _authenticate(self, request: httpx.Request) -> str | None:
        header = request.headers.get("authorization", "")
        if not header.startswith("Digest "):
            return None
        params = {}
        for item in parse_http_list(header[len("Digest "):]):
            key, _, value = item.strip().partition("=")
            params[key] = value.strip('"')

        user = self.users.get(params.get("username", ""))
        if user is None or params.get("nonce") != self.nonce:
            return None
        if params.get("uri") != request.url.raw_path.decode("ascii"):
            return None

        ha1 = _md5(f"{params['username']}:{REALM}:{user['password']}")
        ha2 = _md5(f"{request.method}:{params['uri']}")
        expected = _md5(f"{ha1}:{params['nonce']}:{params['nc']}:{params['cnonce']}:auth:{ha2}")
        if params.get("response") != expected:
            return None

        key = (params["username"], params["cnonce"])
        nc = int(params["nc"], 16)
        if nc <= self.nonce_counts.get(key, 0):
            return None
        self.nonce_counts[key] = nc
        return params["username"]

    def dav_handler(self, request: httpx.Request) -> httpx.Response:
        self.dav_requests.append((request.method, request.url.path))
        username = self._authenticate(request)
        if username is None:
            return self._challenge()

        path = unquote(request.url.path)
        if request.method == "OPTIONS":
            return httpx.Response(200, headers={"DAV": self.dav_classes, "Allow": "OPTIONS, PROPFIND, REPORT, PUT, DELETE"})

        segments = [s for s in path.split("/") if s]
        if request.method == "PROPFIND":
            return self._propfind(username, segments)
        if request.method == "REPORT":
            return self._report(username, segments, request.content)
        if request.method == "PUT":
            if username in self.fail_puts:
                return httpx.Response(500, text="storage failure")
            book = self._book(username, segments)
            if book is None or len(segments) != 5:
                return httpx.Response(404)
            etag = self._store(username, segments[3], segments[4], request.content.decode("utf-8"))
            return httpx.Response(201, headers={"ETag": f'"{etag}"'})
        if request.method == "DELETE":
            book = self._book(username, segments)
            if book is None or len(segments) != 5 or book["cards"].pop(segments[4], None) is None:
                return httpx.Response(404)
            return httpx.Response(204)
        return httpx.Response(405)

    def _book(self, username: str, segments: list[str]) -> dict | None:
        if len(segments) < 4 or segments[1] != "addressbooks" or segments[2] != username:
            return None
        return self.users[username]["books"].get(segments[3])

    def _multistatus(self, responses: list[etree._Element]) -> httpx.Response:
        ms = etree.Element(_d("multistatus"), nsmap=NSMAP)
        ms.extend(responses)
        body = etree.tostring(ms, xml_declaration=True, encoding="utf-8")
        return httpx.Response(207, content=body, headers={"Content-Type": "application/xml; charset=utf-8"})

    def _response(self, href: str, props: list[etree._Element]) -> etree._Element:
        resp = etree.Element(_d("response"))
        etree.SubElement(resp, _d("href")).text = href
        propstat = etree.SubElement(resp, _d("propstat"))
        prop = etree.SubElement(propstat, _d("prop"))
        prop.extend(props)
        etree.SubElement(propstat, _d("status")).text = "HTTP/1.1 200 OK"
        return resp

    def _text(self, tag: str, text: str) -> etree._Element:
        el = etree.Element(tag)
        el.text = text
        return el

    def _href_prop(self, tag: str, href: str) -> etree._Element:
        el = etree.Element(tag)
        etree.SubElement(el, _d("href")).text = href
        return el

    def _propfind(self, username: str, segments: list[str]) -> httpx.Response:
        if segments == ["dav.php"]:
            principal = self._href_prop(_d("current-user-principal"), f"/dav.php/principals/{username}/")
            return self._multistatus([self._response("/dav.php/", [principal])])

        if segments == ["dav.php", "principals", username]:
            home = self._href_prop(_c("addressbook-home-set"), f"/dav.php/addressbooks/{username}/")
            return self._multistatus([self._response(f"/dav.php/principals/{username}/", [home])])

        if segments == ["dav.php", "addressbooks", username]:
            home_type = etree.Element(_d("resourcetype"))
            etree.SubElement(home_type, _d("collection"))
            responses = [self._response(f"/dav.php/addressbooks/{username}/", [home_type])]
            for token, book in self.users[username]["books"].items():
                book_type = etree.Element(_d("resourcetype"))
                etree.SubElement(book_type, _d("collection"))
                etree.SubElement(book_type, _c("addressbook"))
                responses.append(
                    self._response(
                        f"/dav.php/addressbooks/{username}/{token}/",
                        [
                            book_type,
                            self._text(_d("displayname"), book["name"]),
                            self._text(_c("addressbook-description"), book["description"]),
                        ],
                    )
                )
            return self._multistatus(responses)

        return httpx.Response(404)

    def _report(self, username: str, segments: list[str], body: bytes) -> httpx.Response:
        book = self._book(username, segments)
        if book is None:
            return httpx.Response(404)

        query = etree.fromstring(body)
        filters = []
        for pf in query.iter(_c("prop-filter")):
            tm = pf.find(_c("text-match"))
            filters.append((pf.get("name").lower(), (tm.text or "").lower() if tm is not None else None))

        responses = []
        for filename, stored in book["cards"].items():
            card = vobject.readOne(stored["data"])
            if filters and not any(
                text is not None
                and any(str(p.value).lower() == text for p in card.contents.get(name, []))
                for name, text in filters
            ):
                continue
            responses.append(
                self._response(
                    f"/dav.php/addressbooks/{username}/{segments[3]}/{filename}",
                    [
                        self._text(_d("getetag"), f'"{stored["etag"]}"'),
                        self._text(_c("address-data"), stored["data"]),
                    ],
                )
            )
        return self._multistatus(responses)


@pytest.fixture
def server():
    """An empty fake address book server."""
    return FakeServer()


@pytest.fixture
def config(tmp_path):
    """Configuration pointing at the fake server."""
    return Config(
        url="mab.example.org",
        admin_url=ADMIN_URL,
        dav_url=DAV_URL,
        admin_password="admin-secret",
        api_key=API_KEY,
        cert=str(tmp_path / "missing.pem"),
        key=str(tmp_path / "missing.key"),
        passwd=str(tmp_path / "passwd"),
        max_workers=4,
        operation_timeout=10.0,
    )


@pytest.fixture
def make_admin(server, config):
    """Build an AdminClient talking to the fake server."""

    def factory(cfg=None):
        cfg = cfg or config
        http_client = httpx.AsyncClient(base_url=cfg.admin_url, transport=server.admin_transport())
        return AdminClient(cfg, http_client=http_client)

    return factory


@pytest.fixture
def make_card_client(server):
    """Build a CardClient for a user of the fake server."""

    def factory(username, password):
        http_client = httpx.AsyncClient(
            auth=DigestSession(username, password), transport=server.dav_transport()
        )
        return CardClient(username, password, DAV_URL, http_client=http_client)

    return factory
