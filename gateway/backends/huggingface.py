"""Hugging Face dataset repository backend."""

import base64
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from gateway.backends.base import BackendObject, StorageBackend
from gateway.backends.http import open_download, send_with_retry
from gateway.config import Settings
from gateway.exceptions import BackendFailureError
from gateway.types import BackendType, HuggingFaceLocator
from gateway.utils import file_extension, generate_object_name

logger = logging.getLogger(__name__)

HF_BASE_URL = "https://huggingface.co"
HF_UPLOAD_DIR = "uploads"


class HuggingFaceBackend(StorageBackend):
    """
    Stores files under ``uploads/`` of a dataset repo via the commit API.
    """

    backend_type = BackendType.HUGGINGFACE

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.client = client
        self.token = settings.hf_token
        self.repo = settings.hf_repo

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    def commit_url(self) -> str:
        return f"{HF_BASE_URL}/api/datasets/{self.repo}/commit/main"

    def resolve_url(self, path: str) -> str:
        return f"{HF_BASE_URL}/datasets/{self.repo}/resolve/main/{path}"

    async def _commit(self, summary: str, operations: List[Dict[str, Any]]) -> httpx.Response:
        lines = [{"key": "header", "value": {"summary": summary}}] + operations
        body = "\n".join(json.dumps(line) for line in lines).encode("utf-8")
        headers = dict(self._headers(), **{"Content-Type": "application/x-ndjson"})

        def build() -> httpx.Request:
            return self.client.build_request("POST", self.commit_url(), headers=headers, content=body)

        return await send_with_retry(self.client, build, operation="huggingface commit")

    async def put(self, data: bytes, file_name: str, content_type: str) -> HuggingFaceLocator:
        path = f"{HF_UPLOAD_DIR}/{generate_object_name('hf', file_extension(file_name))}"
        response = await self._commit(
            f"Upload {file_name}",
            [{
                "key": "file",
                "value": {
                    "content": base64.b64encode(data).decode("ascii"),
                    "path": path,
                    "encoding": "base64",
                },
            }],
        )
        if not response.is_success:
            raise BackendFailureError(f"HuggingFace upload failed with HTTP {response.status_code}: {response.text[:200]}")

        logger.info(f"Uploaded to HuggingFace [path={path}, size={len(data)}]")
        return HuggingFaceLocator(hf_path=path)

    async def get(self, locator: HuggingFaceLocator, range_header: Optional[str] = None) -> Optional[BackendObject]:
        headers = self._headers()
        if range_header:
            headers["Range"] = range_header

        def build() -> httpx.Request:
            return self.client.build_request("GET", self.resolve_url(locator.hf_path), headers=headers)

        response = await send_with_retry(self.client, build, stream=True, operation="huggingface download")
        return await open_download(response, "HuggingFace download", range_header)

    async def delete(self, locator: HuggingFaceLocator) -> bool:
        response = await self._commit(
            f"Delete {locator.hf_path}",
            [{"key": "deletedFile", "value": {"path": locator.hf_path}}],
        )
        return response.is_success
