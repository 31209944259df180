"""
HTTP-level tests for the compilation service.
"""

import dataclasses
import os
import time

from fastapi.testclient import TestClient

from pdfservice.app.main import create_app
from pdfservice.app.services.latex import CompilerOrchestrator
from pdfservice.tests.fixtures.pdf_factory import compiled_listing, compiled_source

DOCUMENT = b"\\documentclass{article}\\begin{document}%s\\end{document}\n"


def _workspace_entries(settings):
    return list(settings.tmp_dir.iterdir())


class TestHealth:
    def test_reports_toolchain(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["service"] == "pdfservice"
        assert body["toolchain"]["strategy"] == "latexmk"
        assert body["toolchain"]["pdflatex"]["present"] is True
        assert body["runtime"].startswith("python ")

    def test_degraded_without_toolchain(self, client, fake_tex):
        fake_tex.remove(fake_tex.latexmk)
        fake_tex.remove(fake_tex.pdflatex)

        body = client.get("/health").json()

        assert body["status"] == "degraded"
        assert body["toolchain"]["strategy"] is None


class TestStartup:
    def test_orphaned_workspaces_are_swept(self, settings):
        orphan = settings.tmp_dir / "ws-orphan"
        orphan.mkdir(parents=True)
        (orphan / "doc.tex").write_text("left behind", encoding="utf-8")

        with TestClient(create_app(settings)) as client:
            assert not orphan.exists()
            assert client.get("/health").status_code == 200

        assert _workspace_entries(settings) == []

    def test_age_gated_sweep_keeps_fresh_entries(self, settings):
        settings = settings.model_copy(update={"purge_tmp_on_startup": False})
        stale = settings.tmp_dir / "ws-stale"
        fresh = settings.tmp_dir / "ws-fresh"
        stale.mkdir(parents=True)
        fresh.mkdir()
        long_ago = time.time() - settings.tmp_max_age_seconds - 60
        os.utime(stale, (long_ago, long_ago))

        with TestClient(create_app(settings)):
            assert not stale.exists()
            assert fresh.exists()


class TestCompile:
    def test_minimal_document(self, client, settings):
        response = client.post("/compile", json={"_minimal": True})

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF-")
        assert "Hello PDF!" in compiled_source(response.content)
        assert _workspace_entries(settings) == []

    def test_data_is_escaped_into_proposal(self, client):
        response = client.post("/compile", json={"title": "R&D 100%"})

        assert response.status_code == 200
        assert r"R\&D 100\%" in compiled_source(response.content)

    def test_compile_failure_is_structured_json(self, client, settings):
        response = client.post("/compile", json={"summary": "FORCE-COMPILE-ERROR"})

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "LaTeX compilation failed"
        assert body["errorCode"] == "NONZERO_EXIT"
        assert body["exitCode"] == 1
        assert body["command"][-1] == "doc.tex"
        assert "Undefined control sequence" in body["logTail"]
        assert "doc.tex" in body["workspaceFiles"]
        assert "EXIT:1" in body["detail"]
        assert _workspace_entries(settings) == []

    def test_toolchain_unavailable_is_503(self, client, fake_tex):
        fake_tex.remove(fake_tex.latexmk)
        fake_tex.remove(fake_tex.pdflatex)

        response = client.post("/compile", json={"_minimal": True})

        assert response.status_code == 503
        assert response.json()["errorCode"] == "TOOLCHAIN_UNAVAILABLE"

    def test_timeout_is_reported(self, client):
        orchestrator: CompilerOrchestrator = client.app.state.orchestrator
        orchestrator.toolchain = dataclasses.replace(orchestrator.toolchain, timeout_seconds=1)

        response = client.post("/compile", json={"summary": "FORCE-HANG"})

        assert response.status_code == 500
        assert response.json()["errorCode"] == "TIMEOUT"

    def test_non_object_body_is_rejected(self, client):
        response = client.post("/compile", json=["a", "b"])

        assert response.status_code == 422

    def test_oversized_json_is_rejected(self, client, settings):
        response = client.post("/compile", json={"blob": "x" * (2 * 1024 * 1024)})

        assert response.status_code == 413
        assert response.json()["error"] == "Payload too large"
        assert _workspace_entries(settings) == []

    def test_chunked_body_over_limit_is_rejected(self, client, settings, fake_tex):
        def body():
            yield b'{"blob": "'
            for _ in range(32):
                yield b"x" * (64 * 1024)
            yield b'"}'

        response = client.post(
            "/compile",
            content=body(),
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 413
        assert response.json()["error"] == "Payload too large"
        assert fake_tex.calls(fake_tex.latexmk) == []
        assert _workspace_entries(settings) == []

    def test_chunked_body_under_limit_is_compiled(self, client):
        def body():
            yield b'{"title": '
            yield b'"Streamed"}'

        response = client.post(
            "/compile",
            content=body(),
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 200
        assert "Streamed" in compiled_source(response.content)

    def test_raw_tex(self, client):
        source = "\\documentclass{article}\\begin{document}raw\\end{document}"

        response = client.post("/compile/tex", json={"template": source})

        assert response.status_code == 200
        assert compiled_source(response.content) == source

    def test_raw_tex_requires_template(self, client):
        assert client.post("/compile/tex", json={}).status_code == 422
        assert client.post("/compile/tex", json={"template": ""}).status_code == 422

    def test_proposal(self, client):
        response = client.post("/proposal", json={"clientName": "Globex"})

        assert response.status_code == 200
        assert "Globex" in compiled_source(response.content)
        assert 'filename="proposal.pdf"' in response.headers["content-disposition"]

    def test_proposal_without_body(self, client):
        response = client.post("/proposal")

        assert response.status_code == 200
        assert "Service Proposal" in compiled_source(response.content)


class TestUploads:
    def test_compile_file(self, client, settings):
        response = client.post(
            "/compile-file",
            files={"file": ("paper.tex", DOCUMENT % b"uploaded", "application/x-tex")},
        )

        assert response.status_code == 200
        assert "uploaded" in compiled_source(response.content)
        assert _workspace_entries(settings) == []

    def test_bundle_with_assets(self, client, settings):
        files = [
            ("main", ("paper.tex", DOCUMENT % b"\\input{macros}", "application/x-tex")),
            ("assets", ("macros.tex", b"\\newcommand{\\x}{y}", "application/x-tex")),
            ("assets", ("logo.png", b"\x89PNG\r\n", "image/png")),
        ]

        response = client.post("/compile-bundle", files=files)

        assert response.status_code == 200
        listing = compiled_listing(response.content)
        assert {"doc.tex", "macros.tex", "logo.png"} <= set(listing)
        assert "paper.tex" not in listing
        assert _workspace_entries(settings) == []

    def test_bundle_requires_main(self, client):
        files = [("assets", ("macros.tex", b"x", "application/x-tex"))]

        response = client.post("/compile-bundle", files=files)

        assert response.status_code == 422

    def test_bundle_rejects_64_assets(self, client, settings, fake_tex):
        files = [("main", ("paper.tex", DOCUMENT % b"x", "application/x-tex"))]
        files += [
            ("assets", (f"a{index}.sty", b"%", "application/x-tex")) for index in range(64)
        ]

        response = client.post("/compile-bundle", files=files)

        assert response.status_code == 422
        assert "at most 63" in response.json()["detail"]
        assert fake_tex.calls(fake_tex.latexmk) == []
        assert _workspace_entries(settings) == []

    def test_bundle_rejects_path_traversal(self, client, fake_tex):
        files = [
            ("main", ("paper.tex", DOCUMENT % b"x", "application/x-tex")),
            ("assets", ("../evil.sty", b"%", "application/x-tex")),
        ]

        response = client.post("/compile-bundle", files=files)

        assert response.status_code == 422
        assert fake_tex.calls(fake_tex.latexmk) == []

    def test_oversized_upload_is_rejected(self, client):
        big = b"%" * (1024 * 1024 + 1)

        response = client.post(
            "/compile-file", files={"file": ("big.tex", big, "application/x-tex")}
        )

        assert response.status_code == 413


class TestCustomerHeaders:
    HEADER = {
        "headerTitle": "Service Agreement",
        "headerRows": [
            {
                "labelLeft": "CUSTOMER NAME",
                "valueLeft": "Wayne Enterprises",
                "labelRight": "DATE",
                "valueRight": "2026-10-01",
            }
        ],
        "products": {"smallProducts": [{"name": "Soap", "qty": 2, "total": "4.00"}]},
    }

    def _create(self, client, data=None):
        response = client.post("/customer-header", json=data or self.HEADER)
        assert response.status_code == 201
        return response

    def test_preview_is_not_stored(self, client):
        response = client.post("/customer-header/preview", json=self.HEADER)

        assert response.status_code == 200
        assert response.content.startswith(b"%PDF-")
        assert client.get("/customer-headers").json()["total"] == 0

    def test_create_and_fetch(self, client):
        created = self._create(client)
        record_id = created.headers["x-customer-header-id"]

        assert created.headers["x-customer-header-version"] == "1"
        assert created.headers["location"] == f"/customer-headers/{record_id}"
        assert created.content.startswith(b"%PDF-")

        record = client.get(f"/customer-headers/{record_id}").json()
        assert record["id"] == record_id
        assert record["version"] == 1
        assert record["pdfRef"] == f"/customer-headers/{record_id}/pdf"
        assert record["data"]["headerRows"][0]["valueLeft"] == "Wayne Enterprises"
        assert record["sizeBytes"] == len(created.content)

    def test_download_uses_customer_name(self, client):
        record_id = self._create(client).headers["x-customer-header-id"]

        response = client.get(f"/customer-headers/{record_id}/pdf")

        assert response.status_code == 200
        assert response.content.startswith(b"%PDF-")
        assert 'filename="Wayne_Enterprises.pdf"' in response.headers["content-disposition"]

    def test_update_reflects_new_data(self, client):
        record_id = self._create(client).headers["x-customer-header-id"]
        changed = {**self.HEADER, "headerTitle": "Renewed Agreement"}

        response = client.put(f"/customer-headers/{record_id}", json=changed)

        assert response.status_code == 200
        assert response.headers["x-customer-header-version"] == "2"
        assert "Renewed Agreement" in compiled_source(response.content)

        record = client.get(f"/customer-headers/{record_id}").json()
        assert record["version"] == 2
        assert record["data"]["headerTitle"] == "Renewed Agreement"

        stored = client.get(f"/customer-headers/{record_id}/pdf").content
        assert stored == response.content

    def test_failed_update_keeps_previous_version(self, client):
        created = self._create(client)
        record_id = created.headers["x-customer-header-id"]
        broken = {**self.HEADER, "headerTitle": "FORCE-COMPILE-ERROR"}

        response = client.put(f"/customer-headers/{record_id}", json=broken)

        assert response.status_code == 500
        assert response.json()["errorCode"] == "NONZERO_EXIT"

        record = client.get(f"/customer-headers/{record_id}").json()
        assert record["version"] == 1
        assert record["data"]["headerTitle"] == "Service Agreement"
        assert client.get(f"/customer-headers/{record_id}/pdf").content == created.content

    def test_missing_record(self, client):
        assert client.get("/customer-headers/nope").status_code == 404
        assert client.get("/customer-headers/nope/pdf").status_code == 404
        assert client.put("/customer-headers/nope", json=self.HEADER).status_code == 404

    def test_list_pagination(self, client):
        ids = [
            self._create(client, {**self.HEADER, "headerTitle": f"H{index}"}).headers[
                "x-customer-header-id"
            ]
            for index in range(3)
        ]

        body = client.get("/customer-headers", params={"page": 1, "limit": 2}).json()

        assert body["total"] == 3
        assert body["page"] == 1
        assert body["limit"] == 2
        assert [item["id"] for item in body["items"]] == [ids[2], ids[1]]

        last = client.get("/customer-headers", params={"page": 2, "limit": 2}).json()
        assert [item["id"] for item in last["items"]] == [ids[0]]

    def test_list_rejects_invalid_paging(self, client):
        assert client.get("/customer-headers", params={"limit": 0}).status_code == 422

    def test_status_defaults_to_saved(self, client):
        record_id = self._create(client).headers["x-customer-header-id"]

        assert client.get(f"/customer-headers/{record_id}").json()["status"] == "saved"

    def test_status_change_keeps_document(self, client):
        created = self._create(client)
        record_id = created.headers["x-customer-header-id"]
        before = client.get(f"/customer-headers/{record_id}").json()

        response = client.patch(
            f"/customer-headers/{record_id}/status", json={"status": "pending_approval"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending_approval"
        assert body["version"] == before["version"]
        assert body["data"] == before["data"]
        assert body["updatedAt"] >= before["updatedAt"]
        assert client.get(f"/customer-headers/{record_id}/pdf").content == created.content

    def test_status_rejects_unknown_value(self, client):
        record_id = self._create(client).headers["x-customer-header-id"]

        response = client.patch(
            f"/customer-headers/{record_id}/status", json={"status": "shipped"}
        )

        assert response.status_code == 422
        assert client.get(f"/customer-headers/{record_id}").json()["status"] == "saved"

    def test_status_of_missing_record(self, client):
        response = client.patch("/customer-headers/nope/status", json={"status": "draft"})

        assert response.status_code == 404
