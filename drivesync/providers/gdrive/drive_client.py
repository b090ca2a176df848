import json
import mimetypes
import secrets
import threading
import time
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlencode

import requests

from .models import DEFAULT_FIELDS, FOLDER_MIME_TYPE, PATH_PROPERTY, RemoteObject, Tag
from .query import QueryMatch, build_query, has_full_text

BASE = "https://www.googleapis.com"
OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"

# Google rejects batch requests with more than 100 parts.
BATCH_LIMIT = 100
SEARCH_PAGE_SIZE = 1000


class DriveClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        token_file: str,
        scope: str = "https://www.googleapis.com/auth/drive.file",
        root_folder_name: str = "DriveSync",
        timeout: int = 30,
        page_size: int = SEARCH_PAGE_SIZE,
    ):
        self.client_id = client_id or ""
        self.client_secret = client_secret or ""
        self.token_file = token_file or ""
        self.scope = scope
        self.root_folder_name = root_folder_name or "DriveSync"
        self.timeout = timeout
        self.page_size = page_size
        self._root_folder_id: Optional[str] = None
        self._root_lock = threading.Lock()

    # -- tokens ---------------------------------------------------------

    def _load_tokens(self) -> dict[str, Any] | None:
        if not self.token_file:
            return None
        p = Path(self.token_file).expanduser()
        if not p.exists():
            return None
        payload = json.loads(p.read_text(encoding="utf-8"))
        if isinstance(payload, dict):
            return payload
        return None

    def _save_tokens(self, data: dict[str, Any]) -> None:
        if not self.token_file:
            return
        p = Path(self.token_file).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")

    def create_oauth_authorize_url(self, redirect_uri: str, state: str) -> str:
        if not self.client_id:
            raise RuntimeError("client_id_missing")
        if not redirect_uri:
            raise RuntimeError("redirect_uri_missing")
        if not state:
            raise RuntimeError("oauth_state_missing")
        query = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": self.scope,
                "access_type": "offline",
                "prompt": "consent",
                "state": state,
            }
        )
        return f"{OAUTH_AUTHORIZE_URL}?{query}"

    def exchange_code_for_tokens(self, code: str, redirect_uri: str) -> dict[str, Any]:
        if not self.client_id or not self.client_secret:
            raise RuntimeError("auth_incomplete")
        code_text = (code or "").strip()
        if not code_text:
            raise RuntimeError("oauth_code_missing")

        res = requests.post(
            OAUTH_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code_text,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
            },
            timeout=self.timeout,
        )
        token_data = self._check_response(res, "token_exchange")
        token_data["created_at"] = int(time.time() * 1000)
        self._save_tokens(token_data)
        return token_data

    def _refresh_tokens(self, tokens: dict[str, Any]) -> dict[str, Any] | None:
        refresh = (tokens.get("refresh_token") or "").strip()
        if not refresh or not self.client_id or not self.client_secret:
            return None

        res = requests.post(
            OAUTH_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            timeout=self.timeout,
        )
        if res.status_code >= 400:
            return None
        payload = res.json()
        if not isinstance(payload, dict) or not payload.get("access_token"):
            return None

        # Google only returns a new refresh_token on consent; keep the stored one.
        refreshed = {**tokens, **payload}
        refreshed["created_at"] = int(time.time() * 1000)
        self._save_tokens(refreshed)
        return refreshed

    def get_access_token(self) -> str | None:
        tokens = self._load_tokens()
        if not tokens:
            return None

        access_token_raw = tokens.get("access_token")
        access_token = access_token_raw if isinstance(access_token_raw, str) and access_token_raw else None
        created = int(tokens.get("created_at", 0))
        expires_in = int(tokens.get("expires_in", 3600))

        expire_at = created + max(expires_in - 300, 300) * 1000
        if access_token and created and int(time.time() * 1000) < expire_at:
            return access_token

        refreshed = self._refresh_tokens(tokens)
        if not refreshed:
            return access_token
        return refreshed.get("access_token")

    def _auth_headers(self, content_type: str | None = "application/json") -> dict[str, str]:
        token = self.get_access_token()
        if not token:
            raise RuntimeError("no_token")
        headers = {"Authorization": f"Bearer {token}"}
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _check_response(self, res: requests.Response, action: str) -> dict[str, Any]:
        if res.status_code >= 400:
            text = (res.text or "").strip()
            raise RuntimeError(f"{action}_failed_status_{res.status_code}: {text[:200]}")
        try:
            payload = res.json()
        except ValueError:
            raise RuntimeError(f"{action}_invalid_response")
        if not isinstance(payload, dict):
            raise RuntimeError(f"{action}_invalid_response")
        return payload

    # -- search ---------------------------------------------------------

    def paginate_files(
        self,
        matches: Optional[list[QueryMatch]] = None,
        page_token: Optional[str] = None,
        page_size: int = 30,
        order: str = "descending",
        include: Optional[list[str]] = None,
    ) -> dict[str, Any]:
        """Fetch a single page of files matching ``matches``."""
        headers = self._auth_headers(content_type=None)
        fields = ",".join(include or DEFAULT_FIELDS)
        params: dict[str, str | int] = {
            "fields": f"nextPageToken,files({fields})",
            "pageSize": page_size,
            "q": build_query(matches),
        }
        # Drive refuses orderBy together with fullText; relevance ranking wins.
        if not has_full_text(matches):
            params["orderBy"] = "name" if order == "ascending" else "name desc"
        if page_token:
            params["pageToken"] = page_token

        res = requests.get(f"{BASE}/drive/v3/files", params=params, headers=headers, timeout=self.timeout)
        body = self._check_response(res, "list_files")
        files_raw = body.get("files", []) or []
        files = [RemoteObject.from_api(item) for item in files_raw if isinstance(item, dict)]
        next_page_token_raw = body.get("nextPageToken")
        return {
            "files": files,
            "next_page_token": str(next_page_token_raw) if next_page_token_raw else None,
        }

    def search_files(
        self,
        matches: Optional[list[QueryMatch]] = None,
        order: str = "descending",
        include: Optional[list[str]] = None,
        include_root: bool = False,
    ) -> list[RemoteObject]:
        """Return every matching file, following continuation tokens to the end.

        The sync-root container is filtered out unless ``include_root`` is set.
        """
        items: list[RemoteObject] = []
        page_token: Optional[str] = None
        while True:
            page = self.paginate_files(
                matches=matches,
                page_token=page_token,
                page_size=self.page_size,
                order=order,
                include=include,
            )
            items.extend(page.get("files", []))
            page_token = page.get("next_page_token")
            if not page_token:
                break

        if include_root:
            return items
        return [item for item in items if item.tag != Tag.ROOT]

    def get_root_folder_id(self) -> str:
        if self._root_folder_id:
            return self._root_folder_id

        # Upload workers call this concurrently on a first sync; one of them
        # looks up or creates the root, the rest reuse its id.
        with self._root_lock:
            if self._root_folder_id:
                return self._root_folder_id
            self._root_folder_id = self._find_or_create_root()
            return self._root_folder_id

    def _find_or_create_root(self) -> str:
        found = self.search_files([QueryMatch(properties=Tag.ROOT.as_property())], include_root=True)
        if found:
            return found[0].id

        res = requests.post(
            f"{BASE}/drive/v3/files",
            json={
                "name": self.root_folder_name,
                "mimeType": FOLDER_MIME_TYPE,
                "properties": Tag.ROOT.as_property(),
            },
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        data = self._check_response(res, "create_root_folder")
        root_id = data.get("id")
        if not isinstance(root_id, str) or not root_id:
            raise RuntimeError("create_root_folder_no_id")
        return root_id

    def id_from_path(self, path: str) -> Optional[str]:
        files = self.search_files([QueryMatch(properties={PATH_PROPERTY: path})])
        if not files:
            return None
        return files[0].id

    def ids_from_paths(self, paths: list[str]) -> list[tuple[str, str]]:
        if not paths:
            return []
        files = self.search_files([QueryMatch(properties={PATH_PROPERTY: p}) for p in paths])
        return [(f.id, f.path) for f in files if f.path]

    # -- mutations ------------------------------------------------------

    def create_folder(
        self,
        name: str,
        parent: Optional[str] = None,
        description: Optional[str] = None,
        properties: Optional[dict[str, str]] = None,
        modified_time: Optional[str] = None,
    ) -> str:
        parent = parent or self.get_root_folder_id()
        body: dict[str, Any] = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent],
        }
        if description is not None:
            body["description"] = description
        if properties:
            body["properties"] = properties
        if modified_time:
            body["modifiedTime"] = modified_time

        res = requests.post(
            f"{BASE}/drive/v3/files",
            params={"fields": "id"},
            json=body,
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        data = self._check_response(res, "create_folder")
        folder_id = data.get("id")
        if not isinstance(folder_id, str) or not folder_id:
            raise RuntimeError("create_folder_no_id")
        return folder_id

    def upload_file(
        self,
        content: bytes,
        name: str,
        parent: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        parent = parent or self.get_root_folder_id()
        mime_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        meta = {"name": name, "mimeType": mime_type, "parents": [parent], **(metadata or {})}
        body, content_type = _multipart_related(meta, content, mime_type)

        res = requests.post(
            f"{BASE}/upload/drive/v3/files",
            params={"uploadType": "multipart", "fields": "id"},
            data=body,
            headers=self._auth_headers(content_type=content_type),
            timeout=self.timeout,
        )
        data = self._check_response(res, "upload_file")
        file_id = data.get("id")
        if not isinstance(file_id, str) or not file_id:
            raise RuntimeError("upload_file_no_id")
        return file_id

    def update_file(self, file_id: str, content: bytes, metadata: Optional[dict[str, Any]] = None) -> str:
        meta = dict(metadata or {})
        mime_type = meta.get("mimeType") or "application/octet-stream"
        body, content_type = _multipart_related(meta, content, mime_type)

        res = requests.patch(
            f"{BASE}/upload/drive/v3/files/{file_id}",
            params={"uploadType": "multipart", "fields": "id"},
            data=body,
            headers=self._auth_headers(content_type=content_type),
            timeout=self.timeout,
        )
        data = self._check_response(res, "update_file")
        return str(data.get("id") or file_id)

    def update_file_metadata(self, file_id: str, metadata: dict[str, Any]) -> str:
        res = requests.patch(
            f"{BASE}/drive/v3/files/{file_id}",
            params={"fields": "id"},
            json=metadata,
            headers=self._auth_headers(),
            timeout=self.timeout,
        )
        data = self._check_response(res, "update_metadata")
        return str(data.get("id") or file_id)

    def delete_file(self, file_id: str) -> bool:
        res = requests.delete(
            f"{BASE}/drive/v3/files/{file_id}",
            headers=self._auth_headers(content_type=None),
            timeout=self.timeout,
        )
        if res.status_code >= 400:
            raise RuntimeError(f"delete_failed_status_{res.status_code}")
        return True

    def batch_delete(self, ids: list[str]) -> str:
        """Delete ``ids`` through Drive's batch endpoint.

        Only the transport outcome is checked. Individual sub-request statuses
        in the multipart response are not inspected.
        """
        responses: list[str] = []
        for start in range(0, len(ids), BATCH_LIMIT):
            chunk = ids[start:start + BATCH_LIMIT]
            boundary = f"batch_{secrets.token_hex(8)}"
            parts = []
            for index, file_id in enumerate(chunk, start=start + 1):
                parts.append(
                    "\r\n".join(
                        [
                            f"--{boundary}",
                            "Content-Type: application/http",
                            f"Content-ID: <item{index}>",
                            "",
                            f"DELETE /drive/v3/files/{file_id} HTTP/1.1",
                            "",
                            "",
                        ]
                    )
                )
            body = "".join(parts) + f"--{boundary}--\r\n"
            res = requests.post(
                f"{BASE}/batch/drive/v3",
                data=body.encode("utf-8"),
                headers=self._auth_headers(content_type=f"multipart/mixed; boundary={boundary}"),
                timeout=self.timeout,
            )
            if res.status_code >= 400:
                raise RuntimeError(f"batch_delete_failed_status_{res.status_code}")
            responses.append(res.text or "")
        return "".join(responses)

    # -- reads ----------------------------------------------------------

    def get_file(self, file_id: str) -> bytes:
        res = requests.get(
            f"{BASE}/drive/v3/files/{file_id}",
            params={"alt": "media"},
            headers=self._auth_headers(content_type=None),
            timeout=self.timeout,
        )
        if res.status_code >= 400:
            raise RuntimeError(f"download_failed_status_{res.status_code}")
        return res.content

    def get_file_metadata(self, file_id: str, include: Optional[list[str]] = None) -> RemoteObject:
        res = requests.get(
            f"{BASE}/drive/v3/files/{file_id}",
            params={"fields": ",".join(include or [*DEFAULT_FIELDS, "modifiedTime"])},
            headers=self._auth_headers(content_type=None),
            timeout=self.timeout,
        )
        return RemoteObject.from_api(self._check_response(res, "get_metadata"))


def _multipart_related(metadata: dict[str, Any], content: bytes, mime_type: str) -> tuple[bytes, str]:
    boundary = f"drivesync_{secrets.token_hex(12)}"
    head = (
        f"--{boundary}\r\n"
        "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        f"{json.dumps(metadata, ensure_ascii=False)}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: {mime_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + content + tail, f"multipart/related; boundary={boundary}"
