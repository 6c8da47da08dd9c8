"""Minimal GitHub REST client used as the repository host."""

from __future__ import annotations

import base64
import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from ..errors import HostClientError
from ..logging import get_logger
from ..models import RemoteFile, RepoTree, Repository

_NEXT_LINK = re.compile(r'<([^>]+)>;\s*rel="next"')

_MISSING = object()


class GitHubClient:
    """Repository host operations backed by the GitHub REST API.

    Only plain requests are issued; pagination follows the ``Link`` header.
    """

    def __init__(
        self,
        *,
        token: str | None = None,
        api_base_url: str = "https://api.github.com",
        timeout_seconds: float = 30.0,
        urlopen_fn: Callable[..., Any] = urlopen,
    ) -> None:
        self._api_base_url = api_base_url.rstrip("/")
        self._token = token
        self._timeout_seconds = timeout_seconds
        self._urlopen_fn = urlopen_fn
        self.logger = get_logger("github")

    # ------------------------------------------------------------------
    # Read operations

    def list_org_repositories(self, org: str) -> List[Repository]:
        next_url: Optional[str] = self._url(
            f"/orgs/{quote(org, safe='')}/repos", {"per_page": 100, "type": "all"}
        )
        repositories: List[Repository] = []
        while next_url:
            payload, headers = self._request("GET", next_url)
            if not isinstance(payload, list):
                raise HostClientError("Unexpected GitHub payload: repository list expected")
            for item in payload:
                if not isinstance(item, dict):
                    continue
                repository = self._map_repository(item)
                if repository is not None:
                    repositories.append(repository)
            next_url = _next_link(headers)
        return repositories

    def list_tree(self, repository: Repository) -> RepoTree:
        url = self._url(
            f"/repos/{repository.full_name}/git/trees/{quote(repository.default_branch, safe='')}",
            {"recursive": 1},
        )
        payload, _ = self._request("GET", url, allow_missing=True)
        entries: Dict[str, str] = {}
        if payload is _MISSING:
            # empty repositories have no tree yet
            self.logger.debug("No tree for %s", repository.full_name)
        elif isinstance(payload, dict):
            if payload.get("truncated"):
                self.logger.warning(
                    "Tree listing for %s was truncated; detection may be incomplete",
                    repository.full_name,
                )
            for item in payload.get("tree", []):
                if not isinstance(item, dict) or item.get("type") != "blob":
                    continue
                path = item.get("path")
                if isinstance(path, str):
                    entries[path] = str(item.get("sha") or "")
        else:
            raise HostClientError("Unexpected GitHub payload: tree object expected")

        def _load(path: str) -> Optional[str]:
            remote = self.get_file(repository, path)
            return remote.content if remote is not None else None

        return RepoTree(repository=repository.full_name, entries=entries, loader=_load)

    def get_file(
        self, repository: Repository, path: str, ref: str | None = None
    ) -> Optional[RemoteFile]:
        params = {"ref": ref} if ref else None
        url = self._url(f"/repos/{repository.full_name}/contents/{quote(path)}", params)
        payload, _ = self._request("GET", url, allow_missing=True)
        if payload is _MISSING:
            return None
        if not isinstance(payload, dict) or payload.get("type") != "file":
            raise HostClientError(f"{path} in {repository.full_name} is not a file")
        raw = payload.get("content") or ""
        try:
            content = base64.b64decode(raw).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as exc:
            raise HostClientError(
                f"Could not decode {path} in {repository.full_name}"
            ) from exc
        return RemoteFile(path=path, content=content, sha=payload.get("sha"))

    def get_branch_sha(self, repository: Repository, branch: str) -> Optional[str]:
        url = self._url(f"/repos/{repository.full_name}/git/ref/heads/{quote(branch)}")
        payload, _ = self._request("GET", url, allow_missing=True)
        if payload is _MISSING:
            return None
        sha = payload.get("object", {}).get("sha") if isinstance(payload, dict) else None
        if not isinstance(sha, str):
            raise HostClientError(f"Unexpected ref payload for {branch} in {repository.full_name}")
        return sha

    def find_open_pull_request(
        self, repository: Repository, head: str, base: str | None = None
    ) -> Optional[int]:
        owner = repository.full_name.split("/", 1)[0]
        params: Dict[str, Any] = {"state": "open", "head": f"{owner}:{head}"}
        if base:
            params["base"] = base
        payload, _ = self._request("GET", self._url(f"/repos/{repository.full_name}/pulls", params))
        if not isinstance(payload, list):
            raise HostClientError("Unexpected GitHub payload: pull request list expected")
        for item in payload:
            if isinstance(item, dict) and isinstance(item.get("number"), int):
                return item["number"]
        return None

    # ------------------------------------------------------------------
    # Write operations

    def create_branch(self, repository: Repository, branch: str, sha: str) -> None:
        self._request(
            "POST",
            self._url(f"/repos/{repository.full_name}/git/refs"),
            {"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def put_file(
        self,
        repository: Repository,
        path: str,
        content: str,
        message: str,
        *,
        branch: str,
        sha: str | None = None,
    ) -> Optional[str]:
        body: Dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        payload, _ = self._request(
            "PUT", self._url(f"/repos/{repository.full_name}/contents/{quote(path)}"), body
        )
        if isinstance(payload, dict):
            commit = payload.get("commit")
            if isinstance(commit, dict):
                return commit.get("sha")
        return None

    def open_pull_request(
        self,
        repository: Repository,
        *,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> Tuple[int, Optional[str]]:
        payload, _ = self._request(
            "POST",
            self._url(f"/repos/{repository.full_name}/pulls"),
            {"title": title, "head": head, "base": base, "body": body},
        )
        if not isinstance(payload, dict) or not isinstance(payload.get("number"), int):
            raise HostClientError("Unexpected GitHub payload: pull request expected")
        return payload["number"], payload.get("html_url")

    # ------------------------------------------------------------------
    # Helpers

    def _url(self, path: str, params: Dict[str, Any] | None = None) -> str:
        url = f"{self._api_base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def _request(
        self,
        method: str,
        url: str,
        body: Dict[str, Any] | None = None,
        *,
        allow_missing: bool = False,
    ) -> Tuple[Any, Dict[str, str]]:
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = Request(url, data=data, headers=self._build_headers(), method=method)
        try:
            with self._urlopen_fn(request, timeout=self._timeout_seconds) as response:
                content = response.read()
                headers = dict(getattr(response, "headers", {}) or {})
        except HTTPError as error:
            if allow_missing and error.code in (404, 409):
                return _MISSING, {}
            raise HostClientError(
                f"GitHub API {method} failed with HTTP {error.code} for URL: {url}",
                status=error.code,
            ) from error
        except URLError as error:
            raise HostClientError(f"GitHub API request failed for URL: {url}: {error.reason}") from error

        if not content:
            return None, headers
        try:
            return json.loads(content), headers
        except json.JSONDecodeError as error:
            raise HostClientError(f"Invalid JSON received from GitHub API for URL: {url}") from error

    def _build_headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
            "User-Agent": "depconf",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _map_repository(payload: Dict[str, Any]) -> Optional[Repository]:
        name = payload.get("name")
        full_name = payload.get("full_name")
        if not isinstance(name, str) or not isinstance(full_name, str):
            return None
        default_branch = payload.get("default_branch")
        return Repository(
            name=name,
            full_name=full_name,
            default_branch=default_branch if isinstance(default_branch, str) and default_branch else "main",
            archived=bool(payload.get("archived", False)),
        )


def _next_link(headers: Dict[str, str]) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == "link":
            match = _NEXT_LINK.search(value)
            return match.group(1) if match else None
    return None


__all__ = ["GitHubClient"]
