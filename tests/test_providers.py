"""Tests for the HTTP sandbox and fix providers against mocked backends."""

from __future__ import annotations

import json

import httpx
import pytest

from remedy.providers.ai.http import HttpFixProvider
from remedy.providers.sandbox.base import (
    SandboxCommandError,
    SandboxUnreachableError,
    UnsupportedOperationError,
    is_manifest_path,
)
from remedy.providers.sandbox.container import ContainerSandboxProvider
from remedy.providers.sandbox.vm import VMSandboxProvider


def _client(handler, base_url="http://backend.test"):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


class TestManifestFilter:
    def test_excluded_paths(self):
        assert is_manifest_path("src/App.tsx")
        assert is_manifest_path(".env.local")
        assert not is_manifest_path("node_modules/react/index.js")
        assert not is_manifest_path("packages/ui/dist/index.js")
        assert not is_manifest_path(".gitignore")


class TestContainerProvider:
    async def test_create_seeds_files(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path == "/v1/sandboxes":
                return httpx.Response(200, json={
                    "sandbox_id": "c-1", "url": "https://c-1.run",
                    "expires_at": "2030-01-01T00:00:00Z", "status": "running",
                })
            return httpx.Response(200, json={})

        provider = ContainerSandboxProvider({}, client=_client(handler))
        record = await provider.create("p1", {"src/App.tsx": "x"})

        assert record.sandbox_id == "c-1"
        assert record.expires_at.year == 2030
        create_body = json.loads(requests[0].content)
        assert create_body["template"] == "database"
        upload = json.loads(requests[1].content)
        assert upload == {"files": {"/workspace/src/App.tsx": "x"}}

    async def test_get_missing_returns_none(self):
        provider = ContainerSandboxProvider(
            {}, client=_client(lambda r: httpx.Response(404, json={}))
        )
        assert await provider.get("gone") is None

    async def test_list_files_parses_find_output(self):
        stdout = (
            "/workspace/src/App.tsx\t120\t1700000000.0\n"
            "/workspace/package.json\t30\t1700000000.0\n"
            "/workspace/.gitignore\t10\t1700000000.0\n"
            "garbage line\n"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["command"].startswith("find /workspace")
            return httpx.Response(200, json={"stdout": stdout, "stderr": "", "exit_code": 0})

        provider = ContainerSandboxProvider({}, client=_client(handler))
        manifest = await provider.list_files(provider.handle("c-1"))
        assert set(manifest) == {"src/App.tsx", "package.json"}
        assert manifest["src/App.tsx"].size == 120

    async def test_list_files_failure_is_unreachable(self):
        provider = ContainerSandboxProvider({}, client=_client(
            lambda r: httpx.Response(200, json={"stdout": "", "stderr": "no such container",
                                                "exit_code": 1})
        ))
        with pytest.raises(SandboxUnreachableError):
            await provider.list_files(provider.handle("c-1"))

    async def test_transport_error_is_unreachable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = ContainerSandboxProvider({}, client=_client(handler))
        with pytest.raises(SandboxUnreachableError):
            await provider.exec(provider.handle("c-1"), "ls")

    async def test_git_commit_unsupported(self):
        provider = ContainerSandboxProvider({}, client=_client(lambda r: httpx.Response(200)))
        with pytest.raises(UnsupportedOperationError):
            await provider.create_git_commit(provider.handle("c-1"), "msg")

    async def test_health(self):
        provider = ContainerSandboxProvider(
            {}, client=_client(lambda r: httpx.Response(503))
        )
        status = await provider.health_check()
        assert not status.healthy


class TestVMProvider:
    async def test_create_uses_project_branch(self):
        bodies = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(201, json={
                "id": "vm-1", "state": "started", "preview_url": "https://vm-1.dev",
                "branch": "project/p1", "commit": "abc",
            })

        provider = VMSandboxProvider({}, client=_client(handler))
        record = await provider.create("p1")
        assert bodies[0]["branch"] == "project/p1"
        assert bodies[0]["template"] == "vite-template"
        assert record.metadata["branch"] == "project/p1"
        assert record.url == "https://vm-1.dev"

    async def test_create_failure(self):
        provider = VMSandboxProvider({}, client=_client(lambda r: httpx.Response(500, text="x")))
        with pytest.raises(SandboxCommandError):
            await provider.create("p1")

    async def test_list_files_walks_tree(self):
        tree = {
            "/home/sandbox/workspace": [
                {"name": "src", "is_dir": True},
                {"name": "node_modules", "is_dir": True},
                {"name": "package.json", "is_dir": False, "size": 30, "mod_time": "t1"},
            ],
            "/home/sandbox/workspace/src": [
                {"name": "App.tsx", "is_dir": False, "size": 120, "mod_time": "t2"},
            ],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            path = request.url.params["path"]
            assert "node_modules" not in path
            return httpx.Response(200, json=tree[path])

        provider = VMSandboxProvider({}, client=_client(handler))
        manifest = await provider.list_files(provider.handle("vm-1"))
        assert set(manifest) == {"package.json", "src/App.tsx"}
        assert manifest["src/App.tsx"].modified == "t2"

    async def test_stopped_vm_is_unreachable(self):
        provider = VMSandboxProvider({}, client=_client(lambda r: httpx.Response(409)))
        with pytest.raises(SandboxUnreachableError):
            await provider.list_files(provider.handle("vm-1"))

    async def test_write_files_uploads_each_file(self):
        uploads = []

        def handler(request: httpx.Request) -> httpx.Response:
            uploads.append(request.url.params["path"])
            return httpx.Response(200)

        provider = VMSandboxProvider({}, client=_client(handler))
        await provider.write_files(provider.handle("vm-1"), {"src/a.ts": "a", "/b.ts": "b"})
        assert uploads == ["/home/sandbox/workspace/src/a.ts", "/home/sandbox/workspace/b.ts"]

    async def test_git_commit_returns_hash(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert "git commit --allow-empty -m 'fix: nav links'" in body["command"]
            return httpx.Response(200, json={
                "exit_code": 0, "result": "[main 1a2b3c] fix\n1a2b3c4d5e\n",
            })

        provider = VMSandboxProvider({}, client=_client(handler))
        assert await provider.create_git_commit(provider.handle("vm-1"), "fix: nav links") \
            == "1a2b3c4d5e"

    async def test_git_commit_failure(self):
        provider = VMSandboxProvider({}, client=_client(
            lambda r: httpx.Response(200, json={"exit_code": 128, "result": "fatal"})
        ))
        with pytest.raises(SandboxCommandError):
            await provider.create_git_commit(provider.handle("vm-1"), "msg")


class TestHttpFixProvider:
    async def test_propose_fix(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen.update(json.loads(request.content))
            return httpx.Response(200, json={
                "success": True,
                "fixedFiles": {"src/App.tsx": "fixed"},
                "strategy": "rewrite import",
            })

        provider = HttpFixProvider({}, client=_client(handler))
        proposal = await provider.propose_fix({"error_id": "e1"}, {"src/App.tsx": "broken"})
        assert proposal.success
        assert proposal.fixed_files == {"src/App.tsx": "fixed"}
        assert seen["error"] == {"error_id": "e1"}
        assert "sandbox" not in seen

    async def test_server_error_raises(self):
        provider = HttpFixProvider({}, client=_client(lambda r: httpx.Response(500)))
        with pytest.raises(httpx.HTTPStatusError):
            await provider.propose_fix({"error_id": "e1"}, {})
