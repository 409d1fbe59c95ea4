import tempfile
import unittest
from pathlib import Path

from cryptography.fernet import Fernet

from vps_deployer.errors import ConfigError, ConflictError, NotFoundError
from vps_deployer.store import (
    Deployment,
    DeploymentStatus,
    FernetCipher,
    JsonProjectStore,
    Project,
    ProjectStatus,
    StorageBucket,
    User,
    build_cipher,
)


def _project(subdomain: str = "demo", port: int = 3001, **fields) -> Project:
    return Project(
        user_id=fields.pop("user_id", "u1"),
        name=subdomain.title(),
        subdomain=subdomain,
        repo_url="https://github.com/alice/demo",
        port=port,
        **fields,
    )


class JsonProjectStoreTests(unittest.TestCase):
    def test_records_survive_a_reload(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = str(Path(tmpdir) / "state" / "store.json")
            store = JsonProjectStore(path)
            store.save_user(User(id="u1", github_username="alice", encrypted_github_token="enc"))
            project = store.create_project(_project(status=ProjectStatus.ACTIVE, pm2_id="demo"))
            store.create_deployment(
                Deployment(project_id=project.id, status=DeploymentStatus.FAILED, last_completed_step="install")
            )
            store.replace_env_vars(project.id, {"API_KEY": "enc-value"})

            reloaded = JsonProjectStore(path)

        self.assertEqual(reloaded.get_user("u1").github_username, "alice")
        loaded = reloaded.get_project(project.id)
        self.assertEqual(loaded.status, ProjectStatus.ACTIVE)
        self.assertEqual(loaded.pm2_id, "demo")
        (deployment,) = reloaded.list_deployments(project.id)
        self.assertEqual(deployment.status, DeploymentStatus.FAILED)
        self.assertEqual(deployment.last_completed_step, "install")
        self.assertEqual([v.encrypted_value for v in reloaded.list_env_vars(project.id)], ["enc-value"])

    def test_returned_records_are_copies(self) -> None:
        store = JsonProjectStore()
        project = store.create_project(_project())
        project.status = ProjectStatus.FAILED
        self.assertEqual(store.get_project(project.id).status, ProjectStatus.PENDING)

    def test_subdomain_and_port_are_unique(self) -> None:
        store = JsonProjectStore()
        store.create_project(_project())
        with self.assertRaises(ConflictError):
            store.create_project(_project(port=3002))
        with self.assertRaises(ConflictError):
            store.create_project(_project(subdomain="other"))

    def test_delete_cascades(self) -> None:
        store = JsonProjectStore()
        project = store.create_project(_project())
        store.create_deployment(Deployment(project_id=project.id))
        store.replace_env_vars(project.id, {"A": "1"})
        store.add_storage_bucket(StorageBucket(project_id=project.id, name="b", path="/var/www/storage/b"))

        store.delete_project(project.id)

        self.assertIsNone(store.get_project(project.id))
        self.assertEqual(store.list_deployments(project.id), [])
        self.assertEqual(store.list_env_vars(project.id), [])
        self.assertEqual(store.list_storage_buckets(project.id), [])
        with self.assertRaises(NotFoundError):
            store.delete_project(project.id)

    def test_deployments_are_listed_newest_first(self) -> None:
        store = JsonProjectStore()
        project = store.create_project(_project())
        store.create_deployment(Deployment(project_id=project.id, commit_hash="old", started_at="2024-01-01T00:00:00+00:00"))
        store.create_deployment(Deployment(project_id=project.id, commit_hash="new", started_at="2024-02-01T00:00:00+00:00"))
        self.assertEqual([d.commit_hash for d in store.list_deployments(project.id)], ["new", "old"])

    def test_updates_require_existing_rows(self) -> None:
        store = JsonProjectStore()
        with self.assertRaises(NotFoundError):
            store.update_project("missing", status=ProjectStatus.ACTIVE)
        with self.assertRaises(NotFoundError):
            store.create_deployment(Deployment(project_id="missing"))
        with self.assertRaises(NotFoundError):
            store.replace_env_vars("missing", {})

    def test_list_projects_filters_by_user(self) -> None:
        store = JsonProjectStore()
        store.create_project(_project("one", 3001))
        store.create_project(_project("two", 3002, user_id="u2"))
        self.assertEqual([p.subdomain for p in store.list_projects("u2")], ["two"])
        self.assertEqual(len(store.list_projects()), 2)

    def test_reservations(self) -> None:
        store = JsonProjectStore()
        store.create_project(_project())
        with self.assertRaises(ConflictError):
            store.reserve_port(3001)
        store.reserve_port(3002)
        with self.assertRaises(ConflictError):
            store.reserve_port(3002)
        self.assertEqual(store.claimed_ports(), {3001, 3002})
        store.release_port(3002)
        self.assertEqual(store.claimed_ports(), {3001})

        with self.assertRaises(ConflictError):
            store.reserve_subdomain("demo")
        store.reserve_subdomain("fresh")
        with self.assertRaises(ConflictError):
            store.reserve_subdomain("fresh")
        store.release_subdomain("fresh")
        self.assertEqual(store.reserved_subdomains(), set())


class CipherTests(unittest.TestCase):
    def test_round_trip_and_wrong_key(self) -> None:
        cipher = FernetCipher(Fernet.generate_key())
        token = cipher.encrypt("ghp_secret")
        self.assertNotIn("ghp_secret", token)
        self.assertEqual(cipher.decrypt(token), "ghp_secret")

        with self.assertRaises(ValueError):
            FernetCipher(Fernet.generate_key()).decrypt(token)

    def test_build_cipher_accepts_key_or_passphrase(self) -> None:
        key = Fernet.generate_key().decode()
        self.assertEqual(build_cipher(key).decrypt(FernetCipher(key).encrypt("x")), "x")

        first = build_cipher("correct horse battery staple")
        second = build_cipher("correct horse battery staple")
        self.assertEqual(second.decrypt(first.encrypt("value")), "value")

    def test_missing_or_invalid_key(self) -> None:
        with self.assertRaises(ConfigError):
            build_cipher(None)
        with self.assertRaises(ConfigError):
            FernetCipher("not-a-fernet-key")


if __name__ == "__main__":
    unittest.main()
