import os
import tempfile
import unittest

from fastapi.testclient import TestClient

from social_backend.app import create_app
from social_backend.db import InMemoryDbClient, PostgresDbClient
from social_backend.dependencies import (
    get_db_client,
    get_identity_provider,
    get_storage_client,
)
from social_backend.identity import InMemoryIdentityProvider
from social_backend.storage import InMemoryStorageClient


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.identity = InMemoryIdentityProvider()
        self.storage = InMemoryStorageClient()

        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_identity_provider] = lambda: self.identity
        app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.client = TestClient(app)

        self.alice_token = self.identity.add_user(
            "user_alice", "alice@example.com", first_name="Alice"
        )
        self.bob_token = self.identity.add_user(
            "user_bob", "bob@example.com", first_name="Bob"
        )

    def _auth(self, token):
        return {"Authorization": f"Bearer {token}"}

    def _sync(self, token):
        response = self.client.post("/api/users/sync", headers=self._auth(token))
        return response.json()["user"]

    def test_sync_creates_then_returns_existing(self):
        first = self.client.post("/api/users/sync", headers=self._auth(self.alice_token))
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.json()["user"]["username"], "alice")
        self.assertEqual(first.json()["message"], "User created successfully")

        second = self.client.post("/api/users/sync", headers=self._auth(self.alice_token))
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json()["user"]["id"], first.json()["user"]["id"])
        self.assertEqual(second.json()["message"], "User already exists")
        self.assertEqual(len(self.db.users), 1)

    def test_protected_routes_require_session(self):
        checks = [
            ("post", "/api/users/sync"),
            ("get", "/api/users/me"),
            ("put", "/api/users/profile"),
            ("post", "/api/users/follow/abc"),
            ("get", "/api/notifications"),
        ]
        for method, path in checks:
            response = getattr(self.client, method)(path)
            self.assertEqual(response.status_code, 401, path)
            self.assertEqual(
                response.json(), {"error": "Unauthorized - you must be logged in"}
            )

        bad = self.client.get("/api/users/me", headers=self._auth("not-a-session"))
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(len(self.db.users), 0)

    def test_session_cookie_is_accepted(self):
        self._sync(self.alice_token)
        self.client.cookies.set("__session", self.alice_token)
        response = self.client.get("/api/users/me")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["email"], "alice@example.com")

    def test_get_user_profile_public(self):
        self._sync(self.alice_token)
        response = self.client.get("/api/users/profile/alice")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["first_name"], "Alice")

    def test_get_user_profile_not_found(self):
        response = self.client.get("/api/users/profile/nonexistent-handle")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "User not found"})

    def test_me_without_synced_record(self):
        response = self.client.get("/api/users/me", headers=self._auth(self.alice_token))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "User not found"})

    def test_update_profile(self):
        self._sync(self.alice_token)
        response = self.client.put(
            "/api/users/profile",
            headers=self._auth(self.alice_token),
            json={"bio": "hello there", "location": "Lisbon"},
        )
        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["bio"], "hello there")
        self.assertEqual(user["location"], "Lisbon")
        self.assertEqual(user["first_name"], "Alice")

    def test_update_profile_rejects_relationship_fields(self):
        self._sync(self.alice_token)
        response = self.client.put(
            "/api/users/profile",
            headers=self._auth(self.alice_token),
            json={"followers": ["someone"]},
        )
        self.assertEqual(response.status_code, 422)
        self.assertIn("error", response.json())

    def test_update_profile_username_conflict(self):
        self._sync(self.alice_token)
        self._sync(self.bob_token)
        response = self.client.put(
            "/api/users/profile",
            headers=self._auth(self.bob_token),
            json={"username": "alice"},
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Username already taken"})

    def test_update_profile_missing_record(self):
        response = self.client.put(
            "/api/users/profile",
            headers=self._auth(self.alice_token),
            json={"bio": "x"},
        )
        self.assertEqual(response.status_code, 404)

    def test_follow_then_unfollow(self):
        alice = self._sync(self.alice_token)
        bob = self._sync(self.bob_token)

        followed = self.client.post(
            f"/api/users/follow/{bob['id']}", headers=self._auth(self.alice_token)
        )
        self.assertEqual(followed.status_code, 200)
        self.assertEqual(followed.json(), {"message": "User followed successfully"})

        me = self.client.get("/api/users/me", headers=self._auth(self.alice_token))
        self.assertEqual(me.json()["user"]["following"], [bob["id"]])
        bob_profile = self.client.get("/api/users/profile/bob").json()["user"]
        self.assertEqual(bob_profile["followers"], [alice["id"]])

        notifications = self.client.get(
            "/api/notifications", headers=self._auth(self.bob_token)
        ).json()["notifications"]
        self.assertEqual(len(notifications), 1)
        self.assertEqual(notifications[0]["from"], alice["id"])
        self.assertEqual(notifications[0]["to"], bob["id"])
        self.assertEqual(notifications[0]["type"], "follow")

        unfollowed = self.client.post(
            f"/api/users/follow/{bob['id']}", headers=self._auth(self.alice_token)
        )
        self.assertEqual(unfollowed.json(), {"message": "User unfollowed successfully"})
        bob_profile = self.client.get("/api/users/profile/bob").json()["user"]
        self.assertEqual(bob_profile["followers"], [])
        self.assertEqual(len(self.db.notifications), 1)

    def test_follow_self_is_rejected(self):
        alice = self._sync(self.alice_token)
        response = self.client.post(
            f"/api/users/follow/{alice['id']}", headers=self._auth(self.alice_token)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {"error": "You cannot follow yourself"})

    def test_follow_unknown_target(self):
        self._sync(self.alice_token)
        response = self.client.post(
            "/api/users/follow/does-not-exist", headers=self._auth(self.alice_token)
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "User not found"})

    def test_image_upload_url(self):
        alice = self._sync(self.alice_token)
        response = self.client.post(
            "/api/users/profile/image-upload",
            headers=self._auth(self.alice_token),
            json={"kind": "avatar", "content_type": "image/png"},
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["path"].startswith(f"users/{alice['id']}/avatar/"))
        self.assertTrue(payload["path"].endswith(".png"))
        self.assertIn("op=put", payload["upload_url"])
        self.assertEqual(self.storage.presigned[payload["path"]], "image/png")

    def test_image_upload_rejects_unknown_type(self):
        self._sync(self.alice_token)
        response = self.client.post(
            "/api/users/profile/image-upload",
            headers=self._auth(self.alice_token),
            json={"kind": "avatar", "content_type": "application/pdf"},
        )
        self.assertEqual(response.status_code, 422)

    def test_unknown_route_uses_error_shape(self):
        response = self.client.get("/api/does-not-exist")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {"error": "Not Found"})

    def test_unexpected_errors_render_as_json(self):
        client = TestClient(self.client.app, raise_server_exceptions=False)

        def broken_fetch(external_id):
            raise RuntimeError("boom")

        self.identity.fetch_profile = broken_fetch
        response = client.post("/api/users/sync", headers=self._auth(self.alice_token))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {"error": "Internal server error"})


class ProfileUpdateApiTests(unittest.TestCase):
    """Profile update validation, run against the in-memory store."""

    def make_db(self):
        return InMemoryDbClient()

    def setUp(self):
        self.db = self.make_db()
        self.identity = InMemoryIdentityProvider()

        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_identity_provider] = lambda: self.identity
        app.dependency_overrides[get_storage_client] = InMemoryStorageClient
        self.client = TestClient(app)

        self.alice = {
            "Authorization": f"Bearer {self.identity.add_user('user_alice', 'alice@example.com')}"
        }
        self.bob = {
            "Authorization": f"Bearer {self.identity.add_user('user_bob', 'bob@example.com')}"
        }
        self.client.post("/api/users/sync", headers=self.alice)
        self.client.post("/api/users/sync", headers=self.bob)
        self.client.put("/api/users/profile", headers=self.alice, json={"bio": "original"})

    def test_null_bio_is_rejected_and_record_kept(self):
        response = self.client.put(
            "/api/users/profile", headers=self.alice, json={"bio": None}
        )
        self.assertEqual(response.status_code, 422)
        self.assertIn("error", response.json())

        me = self.client.get("/api/users/me", headers=self.alice)
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["bio"], "original")
        profile = self.client.get("/api/users/profile/alice")
        self.assertEqual(profile.status_code, 200)

    def test_null_username_is_rejected(self):
        response = self.client.put(
            "/api/users/profile", headers=self.alice, json={"username": None}
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(
            self.client.get("/api/users/me", headers=self.alice).json()["user"]["username"],
            "alice",
        )

    def test_empty_string_clears_bio(self):
        response = self.client.put("/api/users/profile", headers=self.alice, json={"bio": ""})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["bio"], "")

    def test_bio_change_is_not_a_conflict(self):
        response = self.client.put(
            "/api/users/profile", headers=self.bob, json={"bio": "new bio"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["bio"], "new bio")

    def test_keeping_own_username_is_not_a_conflict(self):
        response = self.client.put(
            "/api/users/profile", headers=self.alice, json={"username": "alice", "bio": "x"}
        )
        self.assertEqual(response.status_code, 200)

    def test_taken_username_is_a_conflict(self):
        response = self.client.put(
            "/api/users/profile", headers=self.bob, json={"username": "alice"}
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json(), {"error": "Username already taken"})


class SqlProfileUpdateApiTests(ProfileUpdateApiTests):
    """Same cases against the SQLAlchemy store on a SQLite file."""

    def make_db(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)
        db = PostgresDbClient(
            f"sqlite+pysqlite:///{os.path.join(self._tmpdir.name, 'social.db')}"
        )
        self.addCleanup(db.engine.dispose)
        return db


if __name__ == "__main__":
    unittest.main()
