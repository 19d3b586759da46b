import unittest

from fastapi.testclient import TestClient

from caresync.app import create_app
from caresync.config import Settings
from caresync.dependencies import build_services
from caresync.errors import RemoteBackendError
from caresync.network import NetworkMonitor
from caresync.notifications import RecordingNotifier
from caresync.remote import InMemoryRemoteBackend
from caresync.scheduling import ManualClock, ManualScheduler
from caresync.storage import InMemoryLocalStore

LOG_MUTATION = {
    "type": "add",
    "entity": "log",
    "data": {"id": "log-1", "type": "diaper", "kind": "wet"},
    "profile_id": "baby-1",
}


class ApiTests(unittest.TestCase):
    def setUp(self):
        self.clock = ManualClock()
        self.backend = InMemoryRemoteBackend()
        self.services = build_services(
            Settings(),
            backend=self.backend,
            local_store=InMemoryLocalStore(),
            network=NetworkMonitor(False, clock=self.clock),
            clock=self.clock,
            scheduler=ManualScheduler(self.clock),
            notifier=RecordingNotifier(),
            identity="user-1",
        )
        self.services.sync.start()
        self.client = TestClient(create_app(self.services, start_timers=False))

    def tearDown(self):
        self.services.sync.stop()

    def go_online_without_identity(self):
        self.services.sync.set_identity(None)
        self.client.post("/api/network", json={"online": True})

    def test_queue_status_starts_empty(self):
        response = self.client.get("/api/queue/status")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "total": 0,
                "pending": 0,
                "failed": 0,
                "isProcessing": False,
                "priorityCount": {"high": 0, "medium": 0, "low": 0},
                "oldestOperation": None,
            },
        )

    def test_offline_mutation_is_queued(self):
        response = self.client.post("/api/mutations", json=LOG_MUTATION)

        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json(), {"synced": False, "queued": True})
        details = self.client.get("/api/queue/details").json()
        self.assertEqual(details["status"]["total"], 1)
        operation = details["operations"][0]
        self.assertEqual(operation["entity"], "log")
        self.assertEqual(operation["profileId"], "baby-1")
        self.assertEqual(operation["timestamp"], "2023-11-14T22:13:20+00:00")
        self.assertIsNone(operation["lastAttempt"])

    def test_unknown_entity_is_rejected(self):
        response = self.client.post("/api/mutations", json={**LOG_MUTATION, "entity": "photo"})

        self.assertEqual(response.status_code, 422)

    def test_coming_online_drains_queue(self):
        self.client.post("/api/mutations", json=LOG_MUTATION)

        response = self.client.post("/api/network", json={"online": True})

        self.assertEqual(response.json(), {"online": True})
        self.assertEqual(self.client.get("/api/queue/status").json()["total"], 0)
        self.assertEqual(self.backend.call_count("add_log"), 1)

    def test_online_mutation_writes_through(self):
        self.client.post("/api/network", json={"online": True})

        response = self.client.post("/api/mutations", json=LOG_MUTATION)

        self.assertEqual(response.json(), {"synced": True, "queued": False})

    def test_manual_sync(self):
        self.client.post("/api/mutations", json=LOG_MUTATION)
        self.go_online_without_identity()

        response = self.client.post("/api/sync", json={"identity": "user-1"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"success": 1, "failed": 0, "errors": []})

    def test_manual_sync_offline_sends_nothing(self):
        self.client.post("/api/mutations", json=LOG_MUTATION)

        response = self.client.post("/api/sync", json={"identity": "user-1"})

        self.assertEqual(response.json(), {"success": 0, "failed": 0, "errors": []})
        self.assertEqual(self.backend.calls, [])
        self.assertEqual(self.client.get("/api/queue/status").json()["pending"], 1)

    def test_manual_sync_without_identity(self):
        response = self.client.post("/api/sync", json={})

        self.assertEqual(response.status_code, 400)

    def test_failed_operations_can_be_retried_and_cleared(self):
        self.backend.fail(
            "add_log", RemoteBackendError("denied", code="permission-denied"), times=1
        )
        self.client.post("/api/mutations", json=LOG_MUTATION)
        self.go_online_without_identity()
        result = self.client.post("/api/sync", json={"identity": "user-1"}).json()
        self.assertEqual(result["failed"], 1)
        self.assertEqual(result["errors"], ["log add: denied"])

        self.assertEqual(self.client.post("/api/queue/retry-failed").json(), {"count": 1})
        self.assertEqual(self.client.get("/api/queue/status").json()["pending"], 1)
        self.assertEqual(self.client.post("/api/queue/clear-failed").json(), {"count": 0})

    def test_cleanup_with_custom_age(self):
        self.client.post("/api/mutations", json=LOG_MUTATION)
        self.clock.advance(120)

        self.assertEqual(self.client.post("/api/queue/cleanup").json(), {"count": 0})
        response = self.client.post("/api/queue/cleanup", json={"max_age_seconds": 60})

        self.assertEqual(response.json(), {"count": 1})

    def test_backup_list_and_restore(self):
        created = self.client.post("/api/backups")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["profiles"], 0)

        backups = self.client.get("/api/backups").json()["backups"]
        self.assertEqual(len(backups), 1)

        restored = self.client.post(
            "/api/backups/restore", json={"timestamp": backups[0]["timestamp"]}
        )
        self.assertEqual(restored.status_code, 200)
        self.assertEqual(restored.json()["timestamp"], backups[0]["timestamp"])

    def test_restore_unknown_backup(self):
        response = self.client.post(
            "/api/backups/restore", json={"timestamp": "2001-01-01T00:00:00+00:00"}
        )

        self.assertEqual(response.status_code, 404)

    def test_import_then_export(self):
        document = {
            "profiles": [{"id": "baby-1", "name": "Ada"}],
            "logs": {"baby-1": [{"id": "log-1", "type": "sleep"}]},
            "settings": {"temperatureUnit": "C"},
        }

        response = self.client.post("/api/import", json=document)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

        exported = self.client.get("/api/export")
        self.assertEqual(exported.headers["content-type"], "application/json")
        body = exported.json()
        self.assertEqual(body["profiles"], document["profiles"])
        self.assertEqual(body["settings"]["temperatureUnit"], "C")
        self.assertEqual(body["settings"]["measurementUnit"], "oz")

        self.clock.advance(1)
        summary = self.client.post("/api/backups", json={}).json()
        self.assertEqual((summary["profiles"], summary["logs"]), (1, 1))
        self.assertEqual(len(self.client.get("/api/backups").json()["backups"]), 2)

    def test_invalid_import_is_rejected(self):
        response = self.client.post("/api/import", json={"profiles": []})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.services.backups.backup_count(), 0)

    def test_non_object_import_is_rejected(self):
        for body in ([1, 2, 3], "profiles", 42):
            with self.subTest(body=body):
                response = self.client.post("/api/import", json=body)
                self.assertEqual(response.status_code, 400)

    def test_checkpoints(self):
        self.services.backups.create_checkpoint()

        checkpoints = self.client.get("/api/checkpoints").json()["checkpoints"]

        self.assertEqual(len(checkpoints), 1)
        self.assertEqual(checkpoints[0]["status"], "pending")
        self.assertEqual(checkpoints[0]["changes"], {"profiles": 0, "logs": 0, "other": 0})

    def test_recovery_info(self):
        self.client.post("/api/mutations", json=LOG_MUTATION)

        response = self.client.get("/api/recovery")

        self.assertEqual(
            response.json(),
            {"lastSyncTime": 0, "queuedItems": 1, "backupCount": 0, "isOnline": False},
        )


if __name__ == "__main__":
    unittest.main()
