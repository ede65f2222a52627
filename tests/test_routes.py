"""API tests with FastAPI TestClient; database, user and cipher are dependency overrides."""

import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from app.api.v1.auth import get_current_user
from app.api.v1.repository_credentials import get_cipher
from app.core.config import Settings, get_settings
from app.core.crypto import CredentialCipher, CredentialDecryptionError, EncryptionConfigError
from app.core.database import get_db
from app.main import app
from app.models import Finding, Project, RepositoryCredential, Scan
from app.schemas.auth import CurrentUser
from app.schemas.repository import CleanupResult, ValidationOutcome
from app.services.scan_runner import CredentialSnapshot, ScanStateError

MASTER_KEY = "0123456789abcdef" * 4
ORG = "org-1"
CREDS = "/api/v1/repository-credentials"
COMPARE = "/api/v1/scans/compare"
PROJECTS = "/api/v1/projects"
SCANS = "/api/v1/scans"


class ApiTestCase(unittest.TestCase):
    role = "admin"

    def setUp(self) -> None:
        self.db = MagicMock()
        self.cipher = CredentialCipher(MASTER_KEY)
        user = CurrentUser(id=5, username="alice", role=self.role, organization_id=ORG)
        app.dependency_overrides[get_db] = lambda: self.db
        app.dependency_overrides[get_current_user] = lambda: user
        app.dependency_overrides[get_cipher] = lambda: self.cipher
        app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None)
        self.addCleanup(app.dependency_overrides.clear)
        self.client = TestClient(app)

    def stored(self) -> RepositoryCredential:
        return RepositoryCredential(
            id=7,
            organization_id=ORG,
            repository_url="https://github.com/acme/repo",
            credential_type="PAT",
            encrypted_credential=self.cipher.encrypt("ghp_stored", ORG),
            validation_status="untested",
        )


class TestCredentialCrud(ApiTestCase):
    def test_list(self) -> None:
        self.db.query.return_value.filter.return_value.order_by.return_value.all.return_value = [
            self.stored()
        ]
        response = self.client.get(CREDS)
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(len(body["credentials"]), 1)
        self.assertNotIn("encrypted_credential", body["credentials"][0])

    def test_create(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = None
        self.db.refresh.side_effect = lambda row: setattr(row, "id", 11)
        response = self.client.post(
            CREDS,
            json={
                "repository_url": "https://github.com/acme/repo.git",
                "credential_type": "PAT",
                "credential": "ghp_plain",
            },
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["id"], 11)
        self.assertEqual(body["repository_url"], "https://github.com/acme/repo")
        self.assertEqual(body["validation_status"], "untested")
        self.assertNotIn("ghp_plain", response.text)

    def test_create_duplicate(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = self.stored()
        response = self.client.post(
            CREDS,
            json={
                "repository_url": "https://github.com/acme/repo/",
                "credential_type": "PAT",
                "credential": "ghp_plain",
            },
        )
        self.assertEqual(response.status_code, 409)

    def test_create_type_mismatch(self) -> None:
        response = self.client.post(
            CREDS,
            json={
                "repository_url": "git@github.com:acme/repo.git",
                "credential_type": "PAT",
                "credential": "ghp_plain",
            },
        )
        self.assertEqual(response.status_code, 400)

    def test_create_empty_secret(self) -> None:
        response = self.client.post(
            CREDS,
            json={
                "repository_url": "https://github.com/acme/repo",
                "credential_type": "PAT",
                "credential": "   ",
            },
        )
        self.assertEqual(response.status_code, 422)

    def test_encryption_unconfigured(self) -> None:
        del app.dependency_overrides[get_cipher]
        with patch(
            "app.api.v1.repository_credentials.get_credential_cipher",
            side_effect=EncryptionConfigError("ENCRYPTION_MASTER_KEY is not set"),
        ):
            response = self.client.post(
                CREDS,
                json={
                    "repository_url": "https://github.com/acme/repo",
                    "credential_type": "PAT",
                    "credential": "ghp_plain",
                },
            )
        self.assertEqual(response.status_code, 503)

    def test_get_missing(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = None
        self.assertEqual(self.client.get(f"{CREDS}/99").status_code, 404)

    def test_patch_resets_status(self) -> None:
        row = self.stored()
        row.validation_status = "valid"
        self.db.query.return_value.filter.return_value.first.return_value = row
        response = self.client.patch(f"{CREDS}/7", json={"credential": "ghp_rotated"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["validation_status"], "untested")
        self.assertEqual(self.cipher.decrypt(row.encrypted_credential, ORG), "ghp_rotated")

    def test_delete(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = self.stored()
        response = self.client.delete(f"{CREDS}/7")
        self.assertEqual(response.status_code, 204)
        self.db.delete.assert_called_once()


class TestCredentialDeleteRequiresAdmin(ApiTestCase):
    role = "member"

    def test_forbidden(self) -> None:
        self.assertEqual(self.client.delete(f"{CREDS}/7").status_code, 403)
        self.db.delete.assert_not_called()


class TestValidateEndpoint(ApiTestCase):
    def test_inline_credential(self) -> None:
        outcome = ValidationOutcome(valid=True, branches=["main"], default_branch="main")
        with patch(
            "app.api.v1.repository_credentials.validate_repository_access",
            new=AsyncMock(return_value=outcome),
        ) as validate:
            response = self.client.post(
                f"{CREDS}/validate",
                json={
                    "repository_url": "https://github.com/acme/repo",
                    "credential": {"type": "PAT", "token": "ghp_inline"},
                },
            )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["valid"])
        args = validate.call_args.args
        self.assertEqual(args, ("https://github.com/acme/repo", "PAT", "ghp_inline"))
        self.db.commit.assert_not_called()

    def test_stored_credential_records_result(self) -> None:
        row = self.stored()
        self.db.query.return_value.filter.return_value.first.return_value = row
        outcome = ValidationOutcome(
            valid=False, error="AUTH_FAILED", error_message="Authentication failed."
        )
        with patch(
            "app.api.v1.repository_credentials.get_credential_cipher", return_value=self.cipher
        ), patch(
            "app.api.v1.repository_credentials.validate_repository_access",
            new=AsyncMock(return_value=outcome),
        ) as validate:
            response = self.client.post(
                f"{CREDS}/validate",
                json={"repository_url": "https://github.com/acme/repo", "credential_id": 7},
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["error"], "AUTH_FAILED")
        self.assertEqual(validate.call_args.args[2], "ghp_stored")
        self.assertEqual(row.validation_status, "invalid")
        self.assertIsNotNone(row.last_validated_at)

    def test_stored_credential_result_recorded_off_event_loop(self) -> None:
        row = self.stored()
        self.db.query.return_value.filter.return_value.first.return_value = row
        seen = {}

        def record(db, stored, outcome, validated_by=None):
            try:
                asyncio.get_running_loop()
                seen["on_loop"] = True
            except RuntimeError:
                seen["on_loop"] = False
            return stored

        with patch(
            "app.api.v1.repository_credentials.get_credential_cipher", return_value=self.cipher
        ), patch(
            "app.api.v1.repository_credentials.validate_repository_access",
            new=AsyncMock(return_value=ValidationOutcome(valid=True, branches=[])),
        ), patch(
            "app.api.v1.repository_credentials.record_validation_result", side_effect=record
        ):
            response = self.client.post(
                f"{CREDS}/validate",
                json={"repository_url": "https://github.com/acme/repo", "credential_id": 7},
            )
        self.assertEqual(response.status_code, 200)
        self.assertIs(seen["on_loop"], False)

    def test_undecryptable_credential(self) -> None:
        row = self.stored()
        row.encrypted_credential = CredentialCipher("f" * 64).encrypt("x", ORG)
        self.db.query.return_value.filter.return_value.first.return_value = row
        with patch(
            "app.api.v1.repository_credentials.get_credential_cipher", return_value=self.cipher
        ):
            response = self.client.post(
                f"{CREDS}/validate",
                json={"repository_url": "https://github.com/acme/repo", "credential_id": 7},
            )
        self.assertEqual(response.status_code, 422)

    def test_requires_exactly_one_source(self) -> None:
        neither = self.client.post(
            f"{CREDS}/validate", json={"repository_url": "https://github.com/acme/repo"}
        )
        both = self.client.post(
            f"{CREDS}/validate",
            json={
                "repository_url": "https://github.com/acme/repo",
                "credential_id": 7,
                "credential": {"type": "PAT", "token": "ghp_inline"},
            },
        )
        self.assertEqual(neither.status_code, 422)
        self.assertEqual(both.status_code, 422)


def _scan(scan_id: int, status: str = "COMPLETED") -> Scan:
    return Scan(
        id=scan_id,
        organization_id=ORG,
        project_name="web",
        status=status,
        findings_count=0,
    )


def _finding(finding_id: int, scan_id: int, title: str, severity: str) -> Finding:
    return Finding(
        id=finding_id,
        scan_id=scan_id,
        title=title,
        category="injection",
        severity=severity,
        cwe=None,
        description="",
    )


class TestCompareScans(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.scan_query = MagicMock()
        self.finding_query = MagicMock()
        self.db.query.side_effect = lambda model: (
            self.scan_query if model is Scan else self.finding_query
        )

    def test_compare(self) -> None:
        self.scan_query.filter.return_value.first.side_effect = [_scan(1), _scan(2)]
        self.finding_query.filter.return_value.order_by.return_value.all.side_effect = [
            [_finding(1, 1, "Fixed", "high"), _finding(2, 1, "Same", "low")],
            [_finding(3, 2, "same", "LOW"), _finding(4, 2, "New", "critical")],
        ]
        response = self.client.get(COMPARE, params={"scan_a": 1, "scan_b": 2})
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([f["id"] for f in body["common_findings"]], [2])
        self.assertEqual([f["title"] for f in body["only_in_scan_a"]], ["Fixed"])
        self.assertEqual([f["title"] for f in body["only_in_scan_b"]], ["New"])
        self.assertEqual(body["summary"], {"total_common": 1, "total_only_in_a": 1, "total_only_in_b": 1})
        self.assertEqual(body["delta"]["critical_delta"], -1)
        self.assertEqual(body["delta"]["high_delta"], 1)

    def test_same_scan(self) -> None:
        response = self.client.get(COMPARE, params={"scan_a": 3, "scan_b": 3})
        self.assertEqual(response.status_code, 400)

    def test_scan_not_found(self) -> None:
        self.scan_query.filter.return_value.first.side_effect = [_scan(1), None]
        response = self.client.get(COMPARE, params={"scan_a": 1, "scan_b": 2})
        self.assertEqual(response.status_code, 404)

    def test_scan_not_completed(self) -> None:
        self.scan_query.filter.return_value.first.side_effect = [_scan(1, "RUNNING")]
        response = self.client.get(COMPARE, params={"scan_a": 1, "scan_b": 2})
        self.assertEqual(response.status_code, 400)
        self.assertIn("RUNNING", response.json()["detail"])

    def test_inline_compare(self) -> None:
        response = self.client.post(
            COMPARE,
            json={
                "findings_a": [{"title": "XSS", "category": "web", "severity": "medium"}],
                "findings_b": [
                    {"title": "xss", "category": "WEB", "severity": "Medium"},
                    {"title": "SQLi", "category": "injection", "severity": "critical"},
                ],
            },
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["common_findings"][0]["title"], "XSS")
        self.assertEqual(body["delta"]["total_delta"], -1)

    def test_inline_limit(self) -> None:
        finding = {"title": "x", "severity": "low"}
        with patch("app.api.v1.scans.MAX_INLINE_FINDINGS", 1):
            response = self.client.post(
                COMPARE, json={"findings_a": [finding, finding], "findings_b": []}
            )
        self.assertEqual(response.status_code, 422)


class TestHealth(ApiTestCase):
    def test_health(self) -> None:
        with patch("app.api.v1.health.check_db_connected", return_value=True), patch(
            "app.api.v1.health.get_credential_cipher", return_value=self.cipher
        ):
            response = self.client.get("/api/v1/health/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"], "connected")
        self.assertEqual(response.json()["encryption"], "ok")

    def test_health_without_key(self) -> None:
        with patch("app.api.v1.health.check_db_connected", return_value=False), patch(
            "app.api.v1.health.get_credential_cipher",
            side_effect=EncryptionConfigError("missing"),
        ):
            response = self.client.get("/api/v1/health/")
        self.assertEqual(response.json()["database"], "disconnected")
        self.assertEqual(response.json()["encryption"], "unconfigured")


def _project(**overrides) -> Project:
    values = dict(
        id=3,
        organization_id=ORG,
        name="web",
        description="",
        default_repository_url="https://github.com/acme/web",
        default_repository_branch="develop",
    )
    values.update(overrides)
    return Project(**values)


def _assign_id(obj) -> None:
    if getattr(obj, "id", None) is None:
        obj.id = 11


class TestProjects(ApiTestCase):
    def test_create(self) -> None:
        self.db.refresh.side_effect = _assign_id
        response = self.client.post(
            PROJECTS,
            json={"name": "web", "default_repository_url": "https://github.com/acme/web.git"},
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["id"], 11)
        self.assertEqual(body["organization_id"], ORG)
        self.assertEqual(body["default_repository_url"], "https://github.com/acme/web")

    def test_create_invalid_default_url(self) -> None:
        response = self.client.post(
            PROJECTS, json={"name": "web", "default_repository_url": "not-a-url"}
        )
        self.assertEqual(response.status_code, 400)

    def test_patch_sets_and_clears_defaults(self) -> None:
        project = _project()
        self.db.query.return_value.filter.return_value.first.return_value = project
        response = self.client.patch(
            f"{PROJECTS}/3",
            json={"default_repository_url": "git@github.com:acme/api.git", "default_repository_branch": None},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["default_repository_url"], "git@github.com:acme/api")
        self.assertIsNone(project.default_repository_branch)
        self.assertEqual(project.name, "web")

    def test_patch_missing(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = None
        response = self.client.patch(f"{PROJECTS}/3", json={"description": "x"})
        self.assertEqual(response.status_code, 404)


class TestStartScan(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.db.refresh.side_effect = _assign_id
        self.db.query.return_value.filter.return_value.first.return_value = _project()

    def test_inherits_project_repository_and_checks_out(self) -> None:
        snapshot = CredentialSnapshot(credential_id=7, credential_type="PAT", secret="ghp_x")
        with patch(
            "app.api.v1.scans.resolve_credential_snapshot", return_value=snapshot
        ) as resolve, patch("app.api.v1.scans.run_scan_checkout", new=AsyncMock()) as checkout:
            response = self.client.post(SCANS, json={"project_id": 3})
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["status"], "PENDING")
        self.assertEqual(body["project_id"], 3)
        self.assertEqual(body["repository_url"], "https://github.com/acme/web")
        self.assertEqual(body["repository_branch"], "develop")
        self.assertEqual(resolve.call_args.args[2], "https://github.com/acme/web")
        scan_id, reference, passed_snapshot = checkout.call_args.args[:3]
        self.assertEqual(scan_id, 11)
        self.assertEqual(reference.branch, "develop")
        self.assertIs(passed_snapshot, snapshot)
        self.assertNotIn("ghp_x", response.text)

    def test_without_credential_runs_without_checkout(self) -> None:
        with patch("app.api.v1.scans.resolve_credential_snapshot", return_value=None), patch(
            "app.api.v1.scans.run_scan_checkout", new=AsyncMock()
        ) as checkout:
            response = self.client.post(
                SCANS,
                json={"project_id": 3, "repository_url": "https://github.com/acme/api", "repository_branch": "dev"},
            )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["status"], "RUNNING")
        self.assertEqual(response.json()["repository_branch"], "dev")
        checkout.assert_not_called()

    def test_branch_defaults_to_main(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = _project(
            default_repository_branch=None
        )
        with patch("app.api.v1.scans.resolve_credential_snapshot", return_value=None):
            response = self.client.post(SCANS, json={"project_id": 3})
        self.assertEqual(response.json()["repository_branch"], "main")

    def test_unknown_project(self) -> None:
        self.db.query.return_value.filter.return_value.first.return_value = None
        response = self.client.post(SCANS, json={"project_id": 3})
        self.assertEqual(response.status_code, 404)

    def test_invalid_commit(self) -> None:
        response = self.client.post(SCANS, json={"project_id": 3, "repository_commit_hash": "abc"})
        self.assertEqual(response.status_code, 400)
        self.db.add.assert_not_called()

    def test_undecryptable_credential(self) -> None:
        with patch(
            "app.api.v1.scans.resolve_credential_snapshot",
            side_effect=CredentialDecryptionError("bad payload"),
        ):
            response = self.client.post(SCANS, json={"project_id": 3})
        self.assertEqual(response.status_code, 422)
        self.db.add.assert_not_called()


class TestListScans(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.query = MagicMock()
        self.query.filter.return_value = self.query
        self.query.order_by.return_value = self.query
        self.query.limit.return_value = self.query
        self.db.query.return_value = self.query

    def test_list(self) -> None:
        self.query.count.return_value = 2
        self.query.all.return_value = [_scan(5), _scan(4, "RUNNING")]
        response = self.client.get(
            SCANS,
            params={"repository_url": "https://github.com/acme/web.git", "status": "completed,running"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual([s["id"] for s in body["scans"]], [5, 4])
        self.assertIsNone(body["next_cursor"])
        self.assertEqual(body["total"], 2)
        urls = [
            getattr(c.args[0].right, "value", None)
            for c in self.query.filter.call_args_list
            if c.args[0].left.key == "repository_url"
        ]
        self.assertEqual(urls, ["https://github.com/acme/web"])

    def test_unknown_status(self) -> None:
        response = self.client.get(SCANS, params={"status": "DONE"})
        self.assertEqual(response.status_code, 400)


class TestSubmitFindings(ApiTestCase):
    def test_completes_and_removes_checkout(self) -> None:
        scan = _scan(4)
        with patch(
            "app.api.v1.scans.complete_scan", return_value=(scan, "/tmp/scan-repos/scan-4")
        ) as complete, patch(
            "app.api.v1.scans.cleanup_repository",
            new=AsyncMock(return_value=CleanupResult(success=True)),
        ) as cleanup:
            response = self.client.post(
                f"{SCANS}/4/findings",
                json={"findings": [{"title": "XSS", "severity": "high", "file_path": "a.py", "line_number": 3}]},
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "COMPLETED")
        findings = complete.call_args.args[3]
        self.assertEqual(findings[0].line_number, 3)
        cleanup.assert_awaited_once_with("/tmp/scan-repos/scan-4")

    def test_finished_scan_conflict(self) -> None:
        with patch("app.api.v1.scans.complete_scan", side_effect=ScanStateError("not running")), patch(
            "app.api.v1.scans.cleanup_repository", new=AsyncMock()
        ) as cleanup:
            response = self.client.post(f"{SCANS}/4/findings", json={"findings": []})
        self.assertEqual(response.status_code, 409)
        cleanup.assert_not_awaited()
