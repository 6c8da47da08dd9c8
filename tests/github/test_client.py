"""Tests for the GitHub REST client."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict, List
from urllib.error import HTTPError, URLError

import pytest

from depconf.errors import HostClientError
from depconf.github import GitHubClient
from depconf.models import Repository

APP = Repository(name="app", full_name="acme/app", default_branch="trunk")


class FakeResponse:
    def __init__(self, payload: Any, headers: Dict[str, str] | None = None) -> None:
        self._payload = payload
        self.headers = headers or {}

    def read(self) -> bytes:
        if self._payload is None:
            return b""
        return json.dumps(self._payload).encode("utf-8")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeUrlopen:
    """Replays queued responses and records every request."""

    def __init__(self, *responses: Any) -> None:
        self.responses: List[Any] = list(responses)
        self.requests: List[Any] = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _http_error(code: int) -> HTTPError:
    return HTTPError("https://api.github.com", code, "error", hdrs=None, fp=None)


def _client(fake: FakeUrlopen) -> GitHubClient:
    return GitHubClient(token="secret", urlopen_fn=fake)


def test_list_org_repositories_follows_pagination() -> None:
    fake = FakeUrlopen(
        FakeResponse(
            [{"name": "app", "full_name": "acme/app", "default_branch": "trunk"}],
            headers={"Link": '<https://api.github.com/orgs/acme/repos?page=2>; rel="next"'},
        ),
        FakeResponse([{"name": "old", "full_name": "acme/old", "archived": True}]),
    )

    repositories = _client(fake).list_org_repositories("acme")

    assert repositories == [
        Repository(name="app", full_name="acme/app", default_branch="trunk"),
        Repository(name="old", full_name="acme/old", default_branch="main", archived=True),
    ]
    assert fake.requests[0].full_url.startswith("https://api.github.com/orgs/acme/repos?")
    assert fake.requests[1].full_url == "https://api.github.com/orgs/acme/repos?page=2"
    headers = {key.lower(): value for key, value in fake.requests[0].header_items()}
    assert headers["authorization"] == "Bearer secret"


def test_list_tree_keeps_blobs_and_loads_lazily() -> None:
    fake = FakeUrlopen(
        FakeResponse(
            {
                "truncated": False,
                "tree": [
                    {"path": "backend", "type": "tree", "sha": "t1"},
                    {"path": "backend/Cargo.toml", "type": "blob", "sha": "b1"},
                    {"path": "package.json", "type": "blob", "sha": "b2"},
                ],
            }
        ),
        FakeResponse(
            {"type": "file", "sha": "b2", "content": base64.b64encode(b"{}").decode("ascii")}
        ),
    )

    tree = _client(fake).list_tree(APP)

    assert dict(tree.entries) == {"backend/Cargo.toml": "b1", "package.json": "b2"}
    assert "/repos/acme/app/git/trees/trunk?recursive=1" in fake.requests[0].full_url
    assert tree.read("package.json") == "{}"
    assert "/repos/acme/app/contents/package.json" in fake.requests[1].full_url


def test_list_tree_of_empty_repository_is_empty() -> None:
    fake = FakeUrlopen(_http_error(409))

    tree = _client(fake).list_tree(APP)

    assert dict(tree.entries) == {}


def test_get_file_returns_none_when_missing() -> None:
    fake = FakeUrlopen(_http_error(404))

    assert _client(fake).get_file(APP, ".github/dependabot.yml", ref="trunk") is None
    assert fake.requests[0].full_url.endswith("/contents/.github/dependabot.yml?ref=trunk")


def test_server_errors_raise_host_client_error() -> None:
    fake = FakeUrlopen(_http_error(500))

    with pytest.raises(HostClientError) as excinfo:
        _client(fake).get_file(APP, "package.json")

    assert excinfo.value.status == 500


def test_network_errors_raise_host_client_error() -> None:
    fake = FakeUrlopen(URLError("unreachable"))

    with pytest.raises(HostClientError):
        _client(fake).list_org_repositories("acme")


def test_find_open_pull_request_filters_by_owner_head() -> None:
    fake = FakeUrlopen(FakeResponse([{"number": 42}]))

    number = _client(fake).find_open_pull_request(APP, "depconf/update-dependabot", base="trunk")

    assert number == 42
    url = fake.requests[0].full_url
    assert "head=acme%3Adepconf%2Fupdate-dependabot" in url
    assert "state=open" in url


def test_put_file_sends_base64_content_and_sha() -> None:
    fake = FakeUrlopen(FakeResponse({"commit": {"sha": "c1"}}))

    commit = _client(fake).put_file(
        APP, ".github/dependabot.yml", "version: 2\n", "msg", branch="depconf/x", sha="old"
    )

    assert commit == "c1"
    request = fake.requests[0]
    assert request.get_method() == "PUT"
    body = json.loads(request.data.decode("utf-8"))
    assert base64.b64decode(body["content"]).decode("utf-8") == "version: 2\n"
    assert body["branch"] == "depconf/x"
    assert body["sha"] == "old"


def test_open_pull_request_returns_number_and_url() -> None:
    fake = FakeUrlopen(FakeResponse({"number": 7, "html_url": "https://github.com/acme/app/pull/7"}))

    number, url = _client(fake).open_pull_request(
        APP, head="depconf/x", base="trunk", title="t", body="b"
    )

    assert (number, url) == (7, "https://github.com/acme/app/pull/7")
    assert json.loads(fake.requests[0].data.decode("utf-8"))["base"] == "trunk"


def test_create_branch_posts_ref() -> None:
    fake = FakeUrlopen(FakeResponse({"ref": "refs/heads/depconf/x"}))

    _client(fake).create_branch(APP, "depconf/x", "abc")

    body = json.loads(fake.requests[0].data.decode("utf-8"))
    assert body == {"ref": "refs/heads/depconf/x", "sha": "abc"}
